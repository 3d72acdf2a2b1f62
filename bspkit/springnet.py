"""Mass-spring networks integrated with implicit (backward Euler) steps.

Stiff Hooke springs between point masses are solved with a filtered
conjugate gradient over a sparse matrix of 3x3 blocks. Pinned points are
handled by filter blocks, one-sided limits by half constraints.
"""
from __future__ import annotations

import enum
import math
from dataclasses import dataclass, field
from typing import Iterable, Optional, Sequence

import numpy as np

from .geometry import safe_normalize

IDENTITY3 = np.eye(3)
CLOTH_GRAVITY_DEFAULT = (0.0, 0.0, -10.0)
CLOTH_DT_DEFAULT = 0.016
CONJGRAD_EPSILON = 0.02
CONJGRAD_LOOP_LIMIT = 100

POINT_QUERY = -1
POINT_CLEAR = 0
POINT_SET = 1
POINT_TOGGLE = 2


class SpringType(enum.IntEnum):
    """Kind of spring; indexes the network's stiffness coefficients."""

    STRUCT = 0
    SHEAR = 1
    BEND = 2


@dataclass(eq=False)
class Block:
    """A 3x3 block at block row ``r`` and block column ``c``."""

    r: int
    c: int
    m: np.ndarray = field(default_factory=lambda: np.zeros((3, 3)))

    def __post_init__(self) -> None:
        self.m = np.asarray(self.m, dtype=float).reshape(3, 3).copy()


class BlockMatrix:
    """Sparse 3N x 3N matrix; the first ``n`` blocks form the diagonal."""

    def __init__(self, n: int = 0) -> None:
        self.n = n
        self.blocks: list[Block] = [Block(i, i) for i in range(n)]

    def zero(self) -> None:
        for block in self.blocks:
            block.m = np.zeros((3, 3))

    def init_diagonal(self, d: float) -> None:
        """Diagonal blocks become ``d * I``, all other blocks zero."""
        for block in self.blocks:
            block.m = IDENTITY3 * d if block.r == block.c else np.zeros((3, 3))

    def identity(self) -> None:
        self.init_diagonal(1.0)

    def multiply(self, v) -> np.ndarray:
        """Matrix-vector product with an ``(N, 3)`` array."""
        v = np.asarray(v, dtype=float)
        result = np.zeros_like(v)
        for block in self.blocks:
            result[block.r] += block.m @ v[block.c]
        return result

    def subtract_scaled(self, a: "BlockMatrix", s: float, b: "BlockMatrix", t: float) -> None:
        """In place ``self -= a * s + b * t``; all three must share a layout."""
        if len(a.blocks) != len(self.blocks) or len(b.blocks) != len(self.blocks):
            raise ValueError("block matrices have different layouts")
        for mine, ab, bb in zip(self.blocks, a.blocks, b.blocks):
            mine.m = mine.m - (ab.m * s + bb.m * t)


@dataclass(eq=False)
class HalfConstraint:
    """Keeps ``dot(v[vi], n) >= t`` for the solution vector."""

    n: np.ndarray
    vi: int
    t: float
    s: float = 0.0

    def __post_init__(self) -> None:
        self.n = np.asarray(self.n, dtype=float)


def _filter(v: np.ndarray, s: BlockMatrix) -> None:
    for block in s.blocks:
        v[block.r] = block.m @ v[block.r]


def _filter_half(v: np.ndarray, h: Sequence[HalfConstraint]) -> None:
    for c in h:
        d = float(np.dot(v[c.vi], c.n)) - c.t
        if d < 0.0:
            v[c.vi] = v[c.vi] + c.n * -d


def conj_gradient_filtered(x, a: BlockMatrix, b, s: BlockMatrix,
                           h: Sequence[HalfConstraint] = ()):
    """Solve ``a x = b`` starting from ``x``, subject to filter ``s`` and
    half constraints ``h``.

    Returns ``(x, converged)``; ``converged`` is false when the iteration
    limit was reached before the desired accuracy.
    """
    x = np.array(x, dtype=float)
    b = np.asarray(b, dtype=float)
    r = b - a.multiply(x)
    _filter(r, s)
    d = r.copy()
    sq = float(np.sum(r * r))
    target = sq * CONJGRAD_EPSILON * CONJGRAD_EPSILON
    count = 0
    while sq > target:
        previous_count = count
        count += 1
        if previous_count >= CONJGRAD_LOOP_LIMIT:
            break
        q = a.multiply(d)
        _filter(q, s)
        denom = float(np.sum(d * q))
        if denom == 0.0:
            return x, False
        alpha = sq / denom
        x = x + d * alpha
        _filter_half(x, h)
        if h or count % 50 == 0:
            r = b - a.multiply(x)
            _filter(r, s)
        else:
            r = r - q * alpha
        sq_prev = sq
        sq = float(np.sum(r * r))
        d = r + d * (sq / sq_prev)
        _filter(d, s)
    return x, count < CONJGRAD_LOOP_LIMIT


def dfdx_spring(direction, length: float, rest: float, k: float) -> np.ndarray:
    """Derivative of spring force with respect to position."""
    direction = np.asarray(direction, dtype=float)
    ratio = 1.0 if length == 0 else min(1.0, rest / length)
    return ((IDENTITY3 - np.outer(direction, direction)) * ratio - IDENTITY3) * -k


def dfdx_damp(direction, length: float, velocity, rest: float, damping: float) -> np.ndarray:
    """Derivative of the inner damping force with respect to position."""
    direction = np.asarray(direction, dtype=float)
    denom = max(length, rest)
    along = float(np.dot(direction, np.asarray(velocity, dtype=float)))
    factor = 0.0 if denom == 0 else -damping * -(along / denom)
    return (IDENTITY3 - np.outer(direction, direction)) * factor


def dfdv_damp(direction, damping: float) -> np.ndarray:
    """Derivative of the damping force with respect to velocity."""
    direction = np.asarray(direction, dtype=float)
    return np.outer(direction, direction) * damping


@dataclass(eq=False)
class Spring:
    """A spring between points ``a`` and ``b``.

    ``iab`` and ``iba`` index the off-diagonal blocks of the network's
    matrices; they are set when the spring joins a network.
    """

    kind: SpringType
    a: int
    b: int
    rest_length: float
    iab: int = -1
    iba: int = -1

    def __post_init__(self) -> None:
        self.kind = SpringType(self.kind)


class SpringNetwork:
    """Point masses joined by springs, advanced by :meth:`simulate`."""

    def __init__(self, n: int) -> None:
        self.X = np.zeros((n, 3))
        self.V = np.zeros((n, 3))
        self.F = np.zeros((n, 3))
        self.dV = np.zeros((n, 3))
        self.N = np.zeros((n, 3))
        self.P = np.zeros((n, 3))
        self.Xb = np.zeros((n, 3))
        self.M = np.ones(n)
        self.A = BlockMatrix(n)
        self.dFdX = BlockMatrix(n)
        self.dFdV = BlockMatrix(n)
        self.S = BlockMatrix()
        self.H: list[HalfConstraint] = []
        self.springs: list[Spring] = []
        self.tris: list[tuple[int, int, int]] = []
        self.quads: list[tuple[int, int, int, int]] = []
        self.spring_k = [100000.0, 5000.0, 1000.0]
        self.gravity = np.array(CLOTH_GRAVITY_DEFAULT)
        self.damp_spring = 10.0
        self.damp_air = 5.0
        self.dt = CLOTH_DT_DEFAULT
        self.sleepthreshold = 0.001
        self.sleepcount = 100
        self.awake = self.sleepcount
        self.bmin = np.zeros(3)
        self.bmax = np.zeros(3)
        self.wind = np.zeros(3)
        self.collision_epsilon = 0.01

    @property
    def spring_struct(self) -> float:
        return self.spring_k[SpringType.STRUCT]

    @spring_struct.setter
    def spring_struct(self, value: float) -> None:
        self.spring_k[SpringType.STRUCT] = value

    @property
    def spring_shear(self) -> float:
        return self.spring_k[SpringType.SHEAR]

    @spring_shear.setter
    def spring_shear(self, value: float) -> None:
        self.spring_k[SpringType.SHEAR] = value

    @property
    def spring_bend(self) -> float:
        return self.spring_k[SpringType.BEND]

    @spring_bend.setter
    def spring_bend(self, value: float) -> None:
        self.spring_k[SpringType.BEND] = value

    def _add_blocks(self, spring: Spring) -> None:
        spring.iab = len(self.A.blocks)
        for matrix in (self.A, self.dFdX, self.dFdV):
            matrix.blocks.append(Block(spring.a, spring.b))
        spring.iba = len(self.A.blocks)
        for matrix in (self.A, self.dFdX, self.dFdV):
            matrix.blocks.append(Block(spring.b, spring.a))

    def create_spring(self, kind, a: int, b: int,
                      rest_length: Optional[float] = None) -> Spring:
        """Add a spring; its rest length defaults to the current distance."""
        if rest_length is None:
            rest_length = float(np.linalg.norm(self.X[b] - self.X[a]))
        spring = Spring(kind, a, b, float(rest_length))
        self.springs.append(spring)
        self._add_blocks(spring)
        return spring

    def wake(self) -> None:
        self.awake = self.sleepcount

    def pre_solve_spring(self, spring: Spring) -> None:
        """Add the spring's force and force derivatives into F, dFdX, dFdV."""
        extent = self.X[spring.b] - self.X[spring.a]
        length = float(np.linalg.norm(extent))
        direction = np.zeros(3) if length == 0 else extent / length
        vel = self.V[spring.b] - self.V[spring.a]
        k = self.spring_k[spring.kind]
        f = direction * (k * (length - spring.rest_length)
                         + self.damp_spring * float(np.dot(vel, direction)))
        self.F[spring.a] += f
        self.F[spring.b] -= f
        dfdx = (dfdx_spring(direction, length, spring.rest_length, k)
                + dfdx_damp(direction, length, vel, spring.rest_length, self.damp_spring))
        dfdv = dfdv_damp(direction, self.damp_spring)
        for matrix, deriv in ((self.dFdX, dfdx), (self.dFdV, dfdv)):
            blocks = matrix.blocks
            blocks[spring.a].m = blocks[spring.a].m - deriv
            blocks[spring.b].m = blocks[spring.b].m - deriv
            blocks[spring.iab].m = blocks[spring.iab].m + deriv
            blocks[spring.iba].m = blocks[spring.iba].m + deriv

    def calc_forces(self) -> None:
        """Collect gravity, air drag and spring forces with their derivatives."""
        self.calc_normals()
        self.dFdX.zero()
        self.dFdV.init_diagonal(0.0)
        self.F = np.tile(self.gravity, (len(self.X), 1)).astype(float)
        rel = self.V - self.wind
        along = np.sum(rel * self.N, axis=1)
        self.F -= self.N * (along * self.damp_air)[:, None]
        for spring in self.springs:
            self.pre_solve_spring(spring)

    def calc_normals(self) -> None:
        """Per-point unit normals from the triangles and quads; zero where none."""
        normals = np.zeros_like(self.X)
        for i0, i1, i2 in self.tris:
            v0, v1, v2 = self.X[i0], self.X[i1], self.X[i2]
            n = np.cross(v1 - v0, v2 - v1)
            for i in (i0, i1, i2):
                normals[i] += n
        for quad in self.quads:
            v0, v1, v2 = self.X[quad[0]], self.X[quad[1]], self.X[quad[2]]
            n = np.cross(v1 - v0, v2 - v1)
            for i in quad:
                normals[i] += n
        self.N = np.array([safe_normalize(n) for n in normals]).reshape(-1, 3)

    def point_status_set(self, index: int, op: int) -> bool:
        """Query (-1), clear (0), set (1) or toggle (2) the pin of a point.

        Returns whether the point is pinned afterwards.
        """
        if index < 0 or index >= len(self.X):
            raise IndexError(f"no point with index {index}")
        status = any(block.r == index for block in self.S.blocks)
        if status and op in (POINT_CLEAR, POINT_TOGGLE):
            self.S.blocks = [block for block in self.S.blocks if block.r != index]
            status = False
        if not status and op in (POINT_SET, POINT_TOGGLE):
            self.S.blocks.insert(0, Block(index, index))
            self.V[index] = 0.0
            status = True
        self.M[index] = 0.0 if status else 1.0
        return status

    def _zero_pinned_velocity(self) -> None:
        for block in self.S.blocks:
            self.V[block.c] = 0.0

    def simulate(self) -> None:
        """Advance the network by ``dt`` with one implicit step."""
        if self.dt <= 0.0:
            return
        dt = self.dt
        self.calc_forces()
        self.dV = np.zeros_like(self.X)
        self._zero_pinned_velocity()
        self.A.identity()
        self.A.subtract_scaled(self.dFdV, dt, self.dFdX, dt * dt)
        dfdx_v = self.dFdX.multiply(self.V)
        b = self.F * dt + dfdx_v * (dt * dt)
        self.dV, _ = conj_gradient_filtered(self.dV, self.A, b, self.S, self.H)
        self.H.clear()
        self.V = self.V + self.dV
        self.X = self.X + self.V * dt
        self._zero_pinned_velocity()
        if float(np.sum(self.V * self.V)) < self.sleepthreshold:
            self.awake -= 1
        else:
            self.awake = self.sleepcount


def _init_points(points) -> np.ndarray:
    pts = np.asarray(list(points), dtype=float).reshape(-1, 3)
    return pts


def spring_network_create(points, springs: Iterable[Spring] = (),
                          tris: Iterable = (), quads: Iterable = ()) -> SpringNetwork:
    """Network from explicit points, springs, triangles and quads."""
    pts = _init_points(points)
    net = SpringNetwork(len(pts))
    net.X = pts.copy()
    for spring in springs:
        net.create_spring(spring.kind, spring.a, spring.b, spring.rest_length)
    net.tris.extend(tuple(int(i) for i in t) for t in tris)
    net.quads.extend(tuple(int(i) for i in q) for q in quads)
    return net


def spring_network_from_triangles(points, tris) -> SpringNetwork:
    """Network with structural springs on triangle edges and bend springs
    across edges shared by two triangles."""
    pts = _init_points(points)
    tris = [tuple(int(i) for i in t) for t in tris]
    net = SpringNetwork(len(pts))
    net.X = pts.copy()
    net.tris.extend(tris)
    for tri in tris:
        for j in range(3):
            net.create_spring(SpringType.STRUCT, tri[j], tri[(j + 1) % 3])
    for ta in tris:
        for ja in range(3):
            for tb in tris:
                for jb in range(3):
                    if ta[ja] == tb[(jb + 1) % 3] and ta[(ja + 1) % 3] == tb[jb]:
                        net.create_spring(SpringType.BEND, ta[(ja + 2) % 3], tb[(jb + 2) % 3])
    return net


def spring_network_rectangular(w: int, h: int, size: float) -> SpringNetwork:
    """A ``w`` by ``h`` square-spaced cloth patch with its four corners pinned."""
    if w < 2 or h < 1:
        raise ValueError("patch needs at least two columns and one row")
    pincorners = 4 + 8
    pretension = 1.0
    points = [
        (np.array([-0.5, -0.5, 0.0]) + np.array([j / (w - 1.0), i / (w - 1.0), 0.0])) * size
        for i in range(h) for j in range(w)
    ]
    r = float(np.linalg.norm(points[0] - points[1])) * pretension
    cells = [(i, j) for i in range(h) for j in range(w)]
    diag = r * math.sqrt(2.0)
    springs: list[Spring] = []
    springs += [Spring(SpringType.STRUCT, i * w + j, (i + 1) * w + j, r)
                for i, j in cells if i < h - 1]
    springs += [Spring(SpringType.STRUCT, i * w + j, i * w + j + 1, r)
                for i, j in cells if j < w - 1]
    springs += [Spring(SpringType.SHEAR, i * w + j, (i + 1) * w + j + 1, diag)
                for i, j in cells if j < w - 1 and i < h - 1]
    springs += [Spring(SpringType.SHEAR, i * w + j, (i + 1) * w + j - 1, diag)
                for i, j in cells if j > 0 and i < h - 1]
    springs += [Spring(SpringType.BEND, i * w + j, (i + 2) * w + j, r * 2.0)
                for i, j in cells if i < h - 2]
    springs += [Spring(SpringType.BEND, i * w + j, i * w + j + 2, r * 2.0)
                for i, j in cells if j < w - 2]
    quads = [
        (i * w + j, i * w + j + 1, (i + 1) * w + j + 1, (i + 1) * w + j)
        for i in range(h - 1) for j in range(w - 1)
    ]
    net = spring_network_create(points, springs, (), quads)
    if pincorners & 1:
        net.point_status_set(0, POINT_SET)
    if pincorners & 2:
        net.point_status_set(w - 1, POINT_SET)
    if pincorners & 4:
        net.point_status_set((h - 1) * w, POINT_SET)
    if pincorners & 8:
        net.point_status_set(h * w - 1, POINT_SET)
    return net