"""Small dense solvers and a single point-to-plane ICP step."""
from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Iterable

import numpy as np

from .geometry import Pose, normalize

CONJGRAD_EPSILON = 0.00000002
CONJGRAD_LOOP_LIMIT = 200


def conj_gradient(a, b) -> np.ndarray:
    """Solve ``a @ x = b`` for symmetric positive definite ``a``."""
    a = np.asarray(a, dtype=float)
    b = np.asarray(b, dtype=float)
    x = np.zeros_like(b)
    r = b - a @ x
    d = r.copy()
    s = float(r @ r)
    target = s * CONJGRAD_EPSILON * CONJGRAD_EPSILON
    count = 0
    while s > target and count < CONJGRAD_LOOP_LIMIT:
        count += 1
        q = a @ d
        alpha = s / float(d @ q)
        x = x + d * alpha
        if count % 10 == 0:
            r = b - a @ x
        else:
            r = r - q * alpha
        s_prev = s
        s = float(r @ r)
        d = r + d * (s / s_prev)
    return x


def cholesky(a, b) -> np.ndarray:
    """Solve ``a @ x = b`` by Cholesky factorisation.

    Returns a zero vector when ``a`` is not symmetric positive definite.
    """
    a = np.asarray(a, dtype=float)
    b = np.asarray(b, dtype=float)
    if a.ndim != 2 or a.shape[0] != a.shape[1] or b.shape != (a.shape[0],):
        raise ValueError("expected a square matrix and a matching vector")
    n = a.shape[0]
    maxd = float(np.max(np.abs(np.diag(a)))) if n else 0.0
    eps = maxd * math.sqrt(np.finfo(float).eps) / 100
    lower = np.zeros((n, n))
    spd = True
    for j in range(n):
        d = 0.0
        for k in range(j):
            s = float(lower[k, :k] @ lower[j, :k])
            if abs(lower[k, k]) > eps:
                s = (a[j, k] - s) / lower[k, k]
            else:
                s = a[j, k] - s
                spd = False
            lower[j, k] = s
            d += s * s
            spd = spd and abs(a[k, j] - a[j, k]) < eps
        d = a[j, j] - d
        spd = spd and d > eps
        lower[j, j] = math.sqrt(max(d, 0.0))
    if not spd:
        return np.zeros(n)
    z = np.linalg.solve(lower, b)
    return np.linalg.solve(lower.T, z)


@dataclass(eq=False)
class Correspondence:
    """A measured point paired with the plane it should lie on."""

    point: np.ndarray
    plane: np.ndarray

    def __post_init__(self) -> None:
        self.point = np.asarray(self.point, dtype=float)
        self.plane = np.asarray(self.plane, dtype=float)


def icp(correspondences: Iterable[Correspondence]) -> Pose:
    """One linearised point-to-plane ICP iteration.

    The returned pose moves the points toward their planes; identity when
    the system cannot be solved or nothing needs to move.
    """
    m = np.zeros((6, 6))
    b = np.zeros(6)
    for c in correspondences:
        n = c.plane[:3]
        s = float(np.dot(n, c.point) + c.plane[3])
        cvr = np.concatenate([np.cross(c.point, n), n])
        m += np.outer(cvr, cvr)
        b += cvr * s
    t = cholesky(m, b)
    if not float(t @ t):
        return Pose()
    rotation = normalize(np.append(np.sin(t[:3] / 2.0), 1.0))
    return Pose(t[3:], rotation).inverse()