"""Vector, plane, quaternion and pose helpers used throughout the BSP code.

Vectors are numpy arrays of shape (3,). Planes are arrays ``(nx, ny, nz, w)``
with ``dot(n, p) + w == 0`` on the plane. Quaternions are ``(x, y, z, w)``.
"""
from __future__ import annotations

import enum
import math
from dataclasses import dataclass, field
from typing import Optional, Sequence

import numpy as np

PAPERWIDTH = 0.0001


class Side(enum.IntFlag):
    """Classification of a point or polygon against a plane."""

    COPLANAR = 0
    UNDER = 1
    OVER = 2
    SPLIT = 3


def _arr(v) -> np.ndarray:
    return np.asarray(v, dtype=float)


def vec3(x, y, z) -> np.ndarray:
    """Build a 3-vector."""
    return np.array([x, y, z], dtype=float)


def normalize(v) -> np.ndarray:
    """Return ``v`` scaled to unit length; zero vectors are rejected."""
    v = _arr(v)
    length = float(np.linalg.norm(v))
    if length == 0.0:
        raise ValueError("cannot normalize a zero-length vector")
    return v / length


def safe_normalize(v) -> np.ndarray:
    """Like :func:`normalize` but a zero vector comes back as zero."""
    v = _arr(v)
    length = float(np.linalg.norm(v))
    if length == 0.0:
        return np.zeros_like(v)
    return v / length


def plane_test(plane, v, epsilon: float = PAPERWIDTH) -> Side:
    """Classify point ``v`` as over, under or on ``plane``."""
    p = _arr(plane)
    a = float(np.dot(p[:3], _arr(v)) + p[3])
    if a > epsilon:
        return Side.OVER
    if a < -epsilon:
        return Side.UNDER
    return Side.COPLANAR


def plane_line_intersection(plane, v0, v1) -> np.ndarray:
    """Point where the line through ``v0`` and ``v1`` meets ``plane``."""
    p = _arr(plane)
    v0 = _arr(v0)
    dif = _arr(v1) - v0
    dn = float(np.dot(p[:3], dif))
    if dn == 0.0:
        raise ValueError("line is parallel to the plane")
    t = -(p[3] + float(np.dot(p[:3], v0))) / dn
    return v0 + dif * t


def tri_normal(v0, v1, v2) -> np.ndarray:
    """Unit normal of a counter-clockwise triangle, zero if degenerate."""
    v0, v1, v2 = _arr(v0), _arr(v1), _arr(v2)
    return safe_normalize(np.cross(v1 - v0, v2 - v1))


def line_project(v0, v1, point) -> np.ndarray:
    """Project ``point`` onto the infinite line through ``v0`` and ``v1``."""
    v0 = _arr(v0)
    d = _arr(v1) - v0
    dd = float(np.dot(d, d))
    if dd == 0.0:
        return v0.copy()
    return v0 + d * (float(np.dot(_arr(point) - v0, d)) / dd)


def gradient(v0, v1, v2, t0, t1, t2) -> np.ndarray:
    """Gradient, within the triangle's plane, of a value linear over it."""
    v0 = _arr(v0)
    e0 = _arr(v1) - v0
    e1 = _arr(v2) - v0
    d0 = t1 - t0
    d1 = t2 - t0
    g00 = float(np.dot(e0, e0))
    g01 = float(np.dot(e0, e1))
    g11 = float(np.dot(e1, e1))
    det = g00 * g11 - g01 * g01
    if not det > 0.0:
        return vec3(0, 0, 1)
    a = (d0 * g11 - d1 * g01) / det
    b = (d1 * g00 - d0 * g01) / det
    return e0 * a + e1 * b


def qmul(a, b) -> np.ndarray:
    """Hamilton product of two quaternions."""
    ax, ay, az, aw = _arr(a)
    bx, by, bz, bw = _arr(b)
    return np.array([
        ax * bw + aw * bx + ay * bz - az * by,
        ay * bw + aw * by + az * bx - ax * bz,
        az * bw + aw * bz + ax * by - ay * bx,
        aw * bw - ax * bx - ay * by - az * bz,
    ])


def qconj(q) -> np.ndarray:
    """Conjugate (inverse for unit quaternions)."""
    q = _arr(q)
    return np.array([-q[0], -q[1], -q[2], q[3]])


def qrot(q, v) -> np.ndarray:
    """Rotate vector ``v`` by unit quaternion ``q``."""
    q = _arr(q)
    v = _arr(v)
    u = q[:3]
    t = 2.0 * np.cross(u, v)
    return v + q[3] * t + np.cross(u, t)


def qnlerp(a, b, t: float) -> np.ndarray:
    """Normalized linear interpolation along the shorter arc."""
    a = _arr(a)
    b = _arr(b)
    if float(np.dot(a, b)) < 0.0:
        b = -b
    return normalize(a + (b - a) * t)


def quat_from_axis_angle(axis, angle: float) -> np.ndarray:
    """Quaternion rotating by ``angle`` radians about ``axis``."""
    n = normalize(axis)
    return np.append(n * math.sin(angle / 2.0), math.cos(angle / 2.0))


def plane_translate(plane, offset) -> np.ndarray:
    """Plane moved by ``offset``."""
    p = _arr(plane).copy()
    p[3] -= float(np.dot(p[:3], _arr(offset)))
    return p


def plane_rotate(plane, q) -> np.ndarray:
    """Plane rotated about the origin by quaternion ``q``."""
    p = _arr(plane)
    return np.append(qrot(q, p[:3]), p[3])


def plane_scale(plane, scaling) -> np.ndarray:
    """Plane after the space is scaled by a scalar or per-axis factor."""
    p = _arr(plane)
    m = p[:3] / _arr(scaling)
    length = float(np.linalg.norm(m))
    if length == 0.0:
        raise ValueError("plane has no normal")
    return np.append(m / length, p[3] / length)


def _points(points) -> np.ndarray:
    return np.asarray(list(points) if not isinstance(points, np.ndarray) else points,
                      dtype=float).reshape(-1, 3)


def max_dir(points, direction) -> int:
    """Index of the point furthest along ``direction``."""
    pts = _points(points)
    if len(pts) == 0:
        raise ValueError("no points given")
    return int(np.argmax(pts @ _arr(direction)))


def extents(points) -> tuple[np.ndarray, np.ndarray]:
    """Axis-aligned bounds ``(min, max)``; empty input gives inverted infinities."""
    pts = _points(points)
    if len(pts) == 0:
        return np.full(3, math.inf), np.full(3, -math.inf)
    return pts.min(axis=0), pts.max(axis=0)


def _poly_plane(verts: np.ndarray) -> np.ndarray:
    c = verts.mean(axis=0)
    rel = verts - c
    n = np.cross(rel, np.roll(rel, -1, axis=0)).sum(axis=0)
    if not n.any():
        return np.zeros(4)
    n = normalize(n)
    return np.append(n, -float(np.dot(c, n)))


def poly_hit_check(verts: Sequence, v0, v1) -> Optional[np.ndarray]:
    """Impact point where segment ``v0``-``v1`` passes down through the
    front of a convex polygon, or ``None`` when it does not."""
    pts = _points(verts)
    if len(pts) < 3:
        return None
    plane = _poly_plane(pts)
    v0 = _arr(v0)
    v1 = _arr(v1)
    d0 = float(np.dot(plane[:3], v0) + plane[3])
    d1 = float(np.dot(plane[:3], v1) + plane[3])
    if not (d0 > 0.0 and d1 < 0.0):
        return None
    impact = plane_line_intersection(plane, v0, v1)
    for a, b in zip(pts, np.roll(pts, -1, axis=0)):
        if float(np.dot(np.cross(b - a, impact - a), plane[:3])) < 0.0:
            return None
    return impact


@dataclass(eq=False)
class Pose:
    """Rigid transform: rotation ``orientation`` followed by ``position``."""

    position: np.ndarray = field(default_factory=lambda: np.zeros(3))
    orientation: np.ndarray = field(default_factory=lambda: np.array([0.0, 0.0, 0.0, 1.0]))

    def __post_init__(self) -> None:
        self.position = _arr(self.position).copy()
        self.orientation = _arr(self.orientation).copy()

    def transform_point(self, point) -> np.ndarray:
        return self.position + qrot(self.orientation, point)

    def transform_plane(self, plane) -> np.ndarray:
        p = _arr(plane)
        n = qrot(self.orientation, p[:3])
        return np.append(n, p[3] - float(np.dot(self.position, n)))

    def inverse(self) -> "Pose":
        q = qconj(self.orientation)
        return Pose(qrot(q, -self.position), q)

    def __mul__(self, other):
        if isinstance(other, Pose):
            return Pose(self.transform_point(other.position),
                        qmul(self.orientation, other.orientation))
        return self.transform_point(other)