"""Collision queries against BSP trees: rays, spheres, cylinders and
moving convex point sets."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Optional, Sequence

import numpy as np

from .bspnode import BSPNode
from .face import Face
from .geometry import Side, max_dir, plane_line_intersection, qnlerp, qrot

_IDENTITY_QUAT = (0.0, 0.0, 0.0, 1.0)
_ZERO3 = (0.0, 0.0, 0.0)
_NEAR_PLANE_RANGE = 5.0
_ENTRY_STEPS = 10
_EXIT_STEPS = 5


def _arr(v) -> np.ndarray:
    return np.asarray(v, dtype=float)


@dataclass(eq=False)
class HitResult:
    """Outcome of a collision query; true in a boolean context when it hit.

    ``impact`` is the first contact position, ``normal`` the surface normal
    there (``None`` when the query started inside solid), ``leaf`` the solid
    leaf reached, ``node`` the node whose plane was crossed last, ``over_leaf``
    the empty leaf visited last, ``orientation`` the orientation at impact for
    rotating queries and ``vertex`` the index of the touching vertex.
    """

    hit: bool = False
    impact: Optional[np.ndarray] = None
    normal: Optional[np.ndarray] = None
    leaf: Optional[BSPNode] = None
    node: Optional[BSPNode] = None
    over_leaf: Optional[BSPNode] = None
    orientation: Optional[np.ndarray] = None
    vertex: int = -1

    def __bool__(self) -> bool:
        return self.hit


def _child(node: BSPNode, under: bool) -> BSPNode:
    child = node.under if under else node.over
    if child is None:
        raise ValueError("interior node is missing a child")
    return child


def _side(plane: np.ndarray, v: np.ndarray) -> float:
    return float(np.dot(plane[:3], v) + plane[3])


def point_inside_face(face: Face, point) -> bool:
    """True when ``point`` lies inside the face's edges (seen along its normal)."""
    s = _arr(point)
    verts = face.vertices
    for pp1, pp2 in zip(verts, verts[1:] + verts[:1]):
        side = np.cross(pp2 - pp1, s - pp1)
        if float(np.dot(face.normal, side)) < 0.0:
            return False
    return True


def face_hit(leaf: BSPNode, plane, point) -> Optional[Face]:
    """Brep face of ``leaf`` containing ``point``, skipping faces on ``plane``."""
    plane = _arr(plane)
    for face in leaf.brep:
        if np.array_equal(face.plane, plane) or np.array_equal(face.plane, -plane):
            continue
        if point_inside_face(face, point):
            return face
    return None


class _Trace:
    def __init__(self, bypass: bool) -> None:
        self.bypass = bypass
        self.impact: Optional[np.ndarray] = None
        self.normal: Optional[np.ndarray] = None
        self.leaf: Optional[BSPNode] = None
        self.node: Optional[BSPNode] = None
        self.over_leaf: Optional[BSPNode] = None


def _hit(node: BSPNode, v0: np.ndarray, v1: np.ndarray, trace: _Trace) -> bool:
    if node.is_leaf():
        if node.leaf == Side.UNDER:
            trace.leaf = node
            trace.impact = v0
        else:
            trace.over_leaf = node
            trace.bypass = False
        return node.leaf == Side.UNDER and not trace.bypass
    f0 = _side(node.plane, v0) > 0.0
    f1 = _side(node.plane, v1) > 0.0
    if not f0 and not f1:
        return _hit(_child(node, True), v0, v1, trace)
    if f0 and f1:
        return _hit(_child(node, False), v0, v1, trace)
    vmid = plane_line_intersection(node.plane, v0, v1)
    if not f0:
        if _hit(_child(node, True), v0, vmid, trace):
            return True
        trace.normal = -node.normal
        trace.node = node
        return _hit(_child(node, False), vmid, v1, trace)
    if _hit(_child(node, False), v0, vmid, trace):
        return True
    trace.normal = node.normal.copy()
    trace.node = node
    return _hit(_child(node, True), vmid, v1, trace)


def _run_hit(node: BSPNode, v0, v1, bypass: bool) -> HitResult:
    if node is None:
        raise ValueError("cannot query an empty tree")
    trace = _Trace(bypass)
    if not _hit(node, _arr(v0), _arr(v1), trace):
        return HitResult(hit=False, over_leaf=trace.over_leaf)
    return HitResult(
        hit=True,
        impact=trace.impact.copy(),
        normal=trace.normal,
        leaf=trace.leaf,
        node=trace.node,
        over_leaf=trace.over_leaf,
    )


def hit_check(node: BSPNode, v0, v1) -> HitResult:
    """First point along segment ``v0``-``v1`` that lies in solid space."""
    return _run_hit(node, v0, v1, bypass=False)


def hit_check_solid_reenter(node: BSPNode, v0, v1) -> HitResult:
    """Like :func:`hit_check`, but a start inside solid is ignored until the
    segment has passed through empty space."""
    return _run_hit(node, v0, v1, bypass=True)


def segment_under(plane, v0, v1, nv0=_ZERO3):
    """Part of the segment on or under ``plane``.

    Returns ``(start, end, normal)`` or ``None`` when the segment lies wholly
    above. ``normal`` is the plane normal when the start was clipped,
    otherwise ``nv0``.
    """
    plane = _arr(plane)
    v0, v1, nv0 = _arr(v0), _arr(v1), _arr(nv0)
    d0 = _side(plane, v0)
    d1 = _side(plane, v1)
    if d0 > 0.0 and d1 > 0.0:
        return None
    if d0 <= 0.0 and d1 <= 0.0:
        return v0, v1, nv0
    vmid = plane_line_intersection(plane, v0, v1)
    if d0 > 0.0:
        return vmid, v1, plane[:3].copy()
    return v0, vmid, nv0


def segment_over(plane, v0, v1, nv0=_ZERO3):
    """Part of the segment on or over ``plane``; see :func:`segment_under`."""
    return segment_under(-_arr(plane), v0, v1, nv0)


def convex_hit_check(planes: Iterable, v0, v1) -> HitResult:
    """Where segment ``v0``-``v1`` first enters the convex region under all ``planes``."""
    v0, v1 = _arr(v0), _arr(v1)
    normal = np.zeros(3)
    for plane in planes:
        part = segment_under(plane, v0, v1, normal)
        if part is None:
            return HitResult(hit=False)
        v0, v1, normal = part
    return HitResult(hit=True, impact=v0.copy(), normal=normal)


def _sphere(radius: float, node: BSPNode, v0, v1, nv0):
    if node.is_leaf():
        return (v0, nv0) if node.leaf == Side.UNDER else None
    result = None
    n, w = node.normal, node.dist
    part = segment_under(np.append(n, w - radius), v0, v1, nv0)
    if part is not None:
        res = _sphere(radius, _child(node, True), *part)
        if res is not None:
            result = res
            v1 = res[0]
    part = segment_over(np.append(n, w + radius), v0, v1, nv0)
    if part is not None:
        res = _sphere(radius, _child(node, False), *part)
        if res is not None:
            result = res
    return result


def hit_check_sphere(radius: float, node: BSPNode, v0, v1, nv0=_ZERO3) -> HitResult:
    """First position of a sphere's centre moving along ``v0``-``v1`` at
    which the sphere touches solid."""
    if node is None:
        raise ValueError("cannot query an empty tree")
    res = _sphere(float(radius), node, _arr(v0), _arr(v1), _arr(nv0))
    if res is None:
        return HitResult(hit=False)
    return HitResult(hit=True, impact=res[0].copy(), normal=res[1].copy())


def tangent_point_on_cylinder(radius: float, height: float, normal) -> np.ndarray:
    """Point of an upright cylinder (base at the origin) furthest along ``normal``."""
    n = _arr(normal)
    xymag = float(np.hypot(n[0], n[1]))
    if xymag == 0.0:
        xymag = 1.0
    return np.array([
        radius * n[0] / xymag,
        radius * n[1] / xymag,
        height if n[2] > 0 else 0.0,
    ])


def _cylinder(radius: float, height: float, node: BSPNode, v0, v1, nv0):
    if node.is_leaf():
        return (v0, nv0) if node.leaf == Side.UNDER else None
    n, w = node.normal, node.dist
    offset_up = -float(np.dot(tangent_point_on_cylinder(radius, height, -n), -n))
    offset_down = float(np.dot(tangent_point_on_cylinder(radius, height, n), n))
    result = None
    part = segment_under(np.append(n, w + offset_up), v0, v1, nv0)
    if part is not None:
        res = _cylinder(radius, height, _child(node, True), *part)
        if res is not None:
            result = res
            v1 = res[0]
    part = segment_over(np.append(n, w + offset_down), v0, v1, nv0)
    if part is not None:
        res = _cylinder(radius, height, _child(node, False), *part)
        if res is not None:
            result = res
    return result


def hit_check_cylinder(radius: float, height: float, node: BSPNode, v0, v1,
                       nv0=_ZERO3) -> HitResult:
    """First position of an upright cylinder's base centre moving along
    ``v0``-``v1`` at which the cylinder touches solid."""
    if node is None:
        raise ValueError("cannot query an empty tree")
    res = _cylinder(float(radius), float(height), node, _arr(v0), _arr(v1), _arr(nv0))
    if res is None:
        return HitResult(hit=False)
    return HitResult(hit=True, impact=res[0].copy(), normal=res[1].copy())


def _lerp(a: np.ndarray, b: np.ndarray, t: float) -> np.ndarray:
    return a + (b - a) * t


def _deepest(verts: Sequence[np.ndarray], q, normal: np.ndarray) -> int:
    return max_dir([qrot(q, v) for v in verts], -normal)


def portion_under(plane, verts: Sequence, v0, v1, nv0, vertex: int, q0, q1):
    """Part of the motion of a rotating point set that reaches under ``plane``.

    The set ``verts`` moves from position ``v0`` / orientation ``q0`` to
    ``v1`` / ``q1``. Returns ``None`` when it stays above the plane, otherwise
    ``(start, end, normal, vertex, start_orientation, end_orientation)``.
    """
    plane = _arr(plane)
    n = plane[:3]
    verts = [_arr(v) for v in verts]
    v0, v1, nv0 = _arr(v0), _arr(v1), _arr(nv0)
    q0, q1 = _arr(q0), _arr(q1)

    def depth(pos, q, idx) -> float:
        return _side(plane, pos + qrot(q, verts[idx]))

    closest0: Optional[int] = None
    closest1: Optional[int] = None
    under0 = under1 = False
    d0 = _side(plane, v0)
    if d0 < 0.0:
        under0 = True
    elif d0 < _NEAR_PLANE_RANGE:
        closest0 = _deepest(verts, q0, n)
        under0 = depth(v0, q0, closest0) < 0.0
    d1 = _side(plane, v1)
    if d1 < 0.0:
        under1 = True
    elif d1 < _NEAR_PLANE_RANGE:
        closest1 = _deepest(verts, q1, n)
        under1 = depth(v1, q1, closest1) < 0.0
    if not under0 and not under1:
        return None

    if under0:
        w0, wq0, nw0, vrtw0 = v0, q0, nv0, vertex
    else:
        if closest1 is None:
            closest1 = _deepest(verts, q1, n)
        ta, tb = 0.0, 1.0
        for _ in range(_ENTRY_STEPS):
            tmid = (ta + tb) / 2.0
            if depth(_lerp(v0, v1, tmid), qnlerp(q0, q1, tmid), closest1) > 0.0:
                ta = tmid
            else:
                tb = tmid
        nw0 = n.copy()
        w0 = _lerp(v0, v1, ta)
        wq0 = qnlerp(q0, q1, ta)
        vrtw0 = closest1
        if any(depth(w0, wq0, i) <= 0.0 for i in range(len(verts))):
            return portion_under(plane, verts, v0, w0, nv0, vertex, q0, wq0)

    if under1:
        w1, wq1 = v1, q1
    else:
        if closest0 is None:
            closest0 = _deepest(verts, q0, n)
        ta, tb = 0.0, 1.0
        for _ in range(_EXIT_STEPS):
            tmid = (ta + tb) / 2.0
            if depth(_lerp(v0, v1, tmid), qnlerp(q0, q1, tmid), closest0) < 0.0:
                ta = tmid
            else:
                tb = tmid
        w1 = _lerp(v0, v1, tb)
        wq1 = qnlerp(q0, q1, tb)
    return w0, w1, nw0, vrtw0, wq0, wq1


def _convex(verts, node: BSPNode, v0, v1, q0, q1, nv0, vertex):
    if node.is_leaf():
        return (v0, q0, nv0, vertex) if node.leaf == Side.UNDER else None
    result = None
    part = portion_under(node.plane, verts, v0, v1, nv0, vertex, q0, q1)
    if part is not None:
        w0, w1, nw0, vrtw0, wq0, wq1 = part
        res = _convex(verts, _child(node, True), w0, w1, wq0, wq1, nw0, vrtw0)
        if res is not None:
            result = res
            v1, q1 = res[0], res[1]
    part = portion_under(-node.plane, verts, v0, v1, nv0, vertex, q0, q1)
    if part is not None:
        w0, w1, nw0, vrtw0, wq0, wq1 = part
        res = _convex(verts, _child(node, False), w0, w1, wq0, wq1, nw0, vrtw0)
        if res is not None:
            result = res
    return result


def hit_check_convex(verts: Sequence, node: BSPNode, v0, v1, q0=_IDENTITY_QUAT,
                     q1=_IDENTITY_QUAT, nv0=_ZERO3, vertex: int = -1) -> HitResult:
    """First pose along a linear motion at which a point set touches solid."""
    if node is None:
        raise ValueError("cannot query an empty tree")
    verts = [_arr(v) for v in verts]
    if not verts:
        raise ValueError("no vertices given")
    res = _convex(verts, node, _arr(v0), _arr(v1), _arr(q0), _arr(q1), _arr(nv0), vertex)
    if res is None:
        return HitResult(hit=False)
    impact, orientation, normal, vrt = res
    return HitResult(hit=True, impact=impact.copy(), normal=normal.copy(),
                     orientation=orientation.copy(), vertex=int(vrt))