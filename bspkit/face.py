"""Planar polygons used as boundary faces of BSP solids.

Texture coordinates are stored as a linear function of position:
``u = ot.x + dot(v, gu)`` and ``v = ot.y + dot(v, gv)``.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, Optional, Union

import numpy as np

from .bspnode import BSPNode, tree_traverse
from .geometry import (
    PAPERWIDTH,
    Side,
    gradient,
    line_project,
    normalize,
    plane_line_intersection,
    plane_rotate,
    plane_scale,
    plane_test,
    plane_translate,
    poly_hit_check,
    qrot,
    safe_normalize,
    tri_normal,
)

DEFAULT_QSNAP = 0.5


def _arr(v) -> np.ndarray:
    return np.asarray(v, dtype=float)


@dataclass(eq=False)
class Face:
    """A convex planar polygon with material id and texture mapping."""

    plane: np.ndarray = field(default_factory=lambda: np.zeros(4))
    vertices: list = field(default_factory=list)
    matid: int = 0
    gu: np.ndarray = field(default_factory=lambda: np.zeros(3))
    gv: np.ndarray = field(default_factory=lambda: np.zeros(3))
    ot: np.ndarray = field(default_factory=lambda: np.zeros(3))

    def __post_init__(self) -> None:
        self.plane = _arr(self.plane).copy()
        self.vertices = [_arr(v).copy() for v in self.vertices]
        self.gu = _arr(self.gu).copy()
        self.gv = _arr(self.gv).copy()
        self.ot = _arr(self.ot).copy()

    @property
    def normal(self) -> np.ndarray:
        return self.plane[:3]

    def copy(self) -> "Face":
        """Independent deep copy."""
        return Face(self.plane, self.vertices, self.matid, self.gu, self.gv, self.ot)


def face_split_test(face: Face, plane, epsilon: float = PAPERWIDTH) -> Side:
    """Classify the whole face against ``plane``."""
    flag = Side.COPLANAR
    for v in face.vertices:
        flag |= plane_test(plane, v, epsilon)
    return Side(flag)


def _crosses(a: Side, b: Side) -> bool:
    return (a == Side.OVER and b == Side.UNDER) or (a == Side.UNDER and b == Side.OVER)


def _face_slice(face: Face, clip) -> None:
    """Insert the points where ``clip`` crosses the face's edges."""
    verts = face.vertices
    n = len(verts)
    result: list[np.ndarray] = []
    wrap: Optional[np.ndarray] = None
    for i, v in enumerate(verts):
        nxt = verts[(i + 1) % n]
        result.append(v)
        if _crosses(plane_test(clip, v), plane_test(clip, nxt)):
            vmid = plane_line_intersection(clip, v, nxt)
            if i == n - 1:
                wrap = vmid
            else:
                result.append(vmid)
    if wrap is not None:
        result.insert(0, wrap)
    face.vertices = result


def face_clip(face: Face, clip) -> Face:
    """New face holding the part of ``face`` not over ``clip``."""
    if face_split_test(face, clip) != Side.SPLIT:
        raise ValueError("the clipping plane does not split the face")
    result = face.copy()
    _face_slice(result, clip)
    result.vertices = [v for v in result.vertices if plane_test(clip, v) != Side.OVER]
    return result


def face_area(face: Face) -> float:
    """Signed area, positive when the winding agrees with the normal."""
    verts = face.vertices
    if len(verts) < 3:
        return 0.0
    vb = verts[0]
    return sum(
        float(np.dot(face.normal, np.cross(v1 - vb, v2 - v1))) / 2.0
        for v1, v2 in zip(verts[1:-1], verts[2:])
    )


def face_center(face: Face) -> np.ndarray:
    """Average of the face's vertices."""
    if not face.vertices:
        raise ValueError("face has no vertices")
    return np.mean(face.vertices, axis=0)


def face_extract_mat_vals(face: Face, v0, v1, v2, t0, t1, t2) -> None:
    """Set the texture mapping so that vertices ``v0..v2`` get ``t0..t2``."""
    t0, t1, t2 = _arr(t0), _arr(t1), _arr(t2)
    face.gu = gradient(v0, v1, v2, t0[0], t1[0], t2[0])
    face.gv = gradient(v0, v1, v2, t0[1], t1[1], t2[1])
    face.ot[0] = t0[0] - float(np.dot(_arr(v0), face.gu))
    face.ot[1] = t0[1] - float(np.dot(_arr(v0), face.gv))


def face_new_quad(v0, v1, v2, v3) -> Face:
    """Planar quad with unit texture axes along its first edges."""
    v0, v1, v2, v3 = (_arr(v) for v in (v0, v1, v2, v3))
    face = Face(vertices=[v0, v1, v2, v3])
    n = normalize(np.cross(v1 - v0, v2 - v1) + np.cross(v3 - v2, v0 - v3))
    face.plane = np.append(n, -float(np.dot(n, (v0 + v1 + v2 + v3) / 4.0)))
    if any(plane_test(face.plane, v, PAPERWIDTH) != Side.COPLANAR for v in face.vertices):
        raise ValueError("quad vertices are not coplanar")
    face_extract_mat_vals(face, v0, v1, v3, (0, 0), (1, 0), (0, 1))
    face.gu = normalize(face.gu)
    face.gv = normalize(face.gv)
    face.ot = np.zeros(3)
    return face


def face_new_tri(v0, v1, v2) -> Face:
    """Triangle with texture axes along its first edge."""
    v0, v1, v2 = _arr(v0), _arr(v1), _arr(v2)
    face = Face(vertices=[v0, v1, v2])
    n = safe_normalize(np.cross(v1 - v0, v2 - v1))
    face.plane = np.append(n, -float(np.dot(n, (v0 + v1 + v2) / 3.0)))
    face.gu = safe_normalize(v1 - v0)
    face.gv = safe_normalize(np.cross(n, face.gu))
    return face


def face_new_tri_tex(v0, v1, v2, t0, t1, t2) -> Face:
    """Triangle whose vertices carry texture coordinates ``t0..t2``."""
    v0, v1, v2 = _arr(v0), _arr(v1), _arr(v2)
    face = Face(vertices=[v0, v1, v2])
    n = tri_normal(v0, v1, v2)
    face.plane = np.append(n, -float(np.dot(n, (v0 + v1 + v2) / 3.0)))
    face_extract_mat_vals(face, v0, v1, v2, t0, t1, t2)
    return face


def face_tex_coord(face: Face, v: Union[int, Iterable[float]]) -> np.ndarray:
    """Texture coordinate of vertex index ``v`` or of point ``v``."""
    point = face.vertices[v] if isinstance(v, (int, np.integer)) else _arr(v)
    return np.array([
        face.ot[0] + float(np.dot(point, face.gu)),
        face.ot[1] + float(np.dot(point, face.gv)),
    ])


def face_translate(face: Face, offset) -> None:
    """Move the face in place, keeping texture coordinates attached."""
    offset = _arr(offset)
    face.vertices = [v + offset for v in face.vertices]
    face.plane = plane_translate(face.plane, offset)
    face.ot[0] -= float(np.dot(offset, face.gu))
    face.ot[1] -= float(np.dot(offset, face.gv))


def face_rotate(face: Face, q) -> None:
    """Rotate the face in place about the origin."""
    face.vertices = [qrot(q, v) for v in face.vertices]
    face.plane = plane_rotate(face.plane, q)
    face.gu = qrot(q, face.gu)
    face.gv = qrot(q, face.gv)
    face.ot = qrot(q, face.ot)


def face_scale(face: Face, scaling) -> None:
    """Scale the face in place by a scalar or per-axis factor."""
    s = _arr(scaling)
    face.vertices = [v * s for v in face.vertices]
    face.plane = plane_scale(face.plane, scaling)


def face_closest_edge(face: Face, point) -> int:
    """Index of the edge (starting vertex) whose line is nearest ``point``."""
    verts = face.vertices
    if len(verts) < 3:
        raise ValueError("face needs at least three vertices")
    point = _arr(point)
    distances = [
        float(np.linalg.norm(line_project(v0, v1, point) - point))
        for v0, v1 in zip(verts, verts[1:] + verts[:1])
    ]
    return int(np.argmin(distances))


def negate_face(face: Face) -> None:
    """Flip the face in place: opposite plane, reversed winding."""
    face.plane = -face.plane
    face.vertices.reverse()


def assign_tex(face: Face, texscale: float = 1.0) -> None:
    """Planar texture projection along the dominant axis of the normal."""
    nx, ny, nz = face.normal
    if abs(nx) > abs(ny) and abs(nx) > abs(nz):
        face.gu = np.array([0.0, 1.0 if nx > 0.0 else -1.0, 0.0])
        face.gv = np.array([0.0, 0.0, 1.0])
    elif abs(ny) > abs(nz):
        face.gu = np.array([-1.0 if ny > 0.0 else 1.0, 0.0, 0.0])
        face.gv = np.array([0.0, 0.0, 1.0])
    else:
        face.gu = np.array([1.0, 0.0, 0.0])
        face.gv = np.array([0.0, 1.0 if nz > 0.0 else -1.0, 0.0])
    face.gu = face.gu * texscale
    face.gv = face.gv * texscale


def assign_tex_tree(node: Optional[BSPNode], matid: int = 0) -> None:
    """Give every brep face in the tree material ``matid`` and planar texturing."""
    for n in tree_traverse(node):
        for face in n.brep:
            face.matid = matid
            assign_tex(face)


def face_embed(node: BSPNode, face: Face) -> None:
    """Push ``face`` down the tree, storing the parts that reach solid leaves."""
    if node is None:
        raise ValueError("cannot embed into an empty tree")
    stack = [(node, face)]
    while stack:
        n, f = stack.pop()
        if n.leaf == Side.OVER:
            continue
        if n.leaf == Side.UNDER:
            n.brep.append(f)
            continue
        flag = face_split_test(f, n.plane)
        if flag == Side.UNDER:
            stack.append((n.under, f))
        elif flag == Side.OVER:
            stack.append((n.over, f))
        elif flag == Side.COPLANAR:
            towards = float(np.dot(n.normal, f.normal)) > 0
            stack.append((n.under if towards else n.over, f))
        else:
            stack.append((n.under, face_clip(f, n.plane)))
            stack.append((n.over, face_clip(f, -n.plane)))


def face_splitify_edges(root: BSPNode, quantum: float = DEFAULT_QSNAP) -> int:
    """Insert vertices wherever a brep edge crosses a tree plane.

    ``quantum`` is the snapping grid of the geometry; edges shorter than
    ``quantum / 512`` are counted as degenerate. Returns the number of
    splits plus degenerate edges seen.
    """
    check = quantum * (1.0 / 256.0 * 0.5)
    count = 0

    def splice(face: Face, vi0: int, node: BSPNode) -> None:
        nonlocal count
        if node.is_leaf():
            return
        verts = face.vertices
        vi1 = (vi0 + 1) % len(verts)
        v0, v1 = verts[vi0], verts[vi1]
        if float(np.linalg.norm(v0 - v1)) <= check:
            count += 1
        f0 = plane_test(node.plane, v0)
        f1 = plane_test(node.plane, v1)
        both = f0 | f1
        if f0 == Side.COPLANAR and f1 == Side.COPLANAR:
            before = len(verts)
            splice(face, vi0, node.under)
            k = vi0 + (len(face.vertices) - before)
            while k >= vi0:
                splice(face, k, node.over)
                k -= 1
        elif both == Side.UNDER:
            splice(face, vi0, node.under)
        elif both == Side.OVER:
            splice(face, vi0, node.over)
        else:
            count += 1
            vmid = plane_line_intersection(node.plane, v0, v1)
            face.vertices.insert(vi0 + 1, vmid)
            if f0 == Side.UNDER:
                splice(face, vi0 + 1, node.over)
                splice(face, vi0, node.under)
            else:
                splice(face, vi0 + 1, node.under)
                splice(face, vi0, node.over)

    for n in tree_traverse(root):
        for face in n.brep:
            for j in range(len(face.vertices) - 1, -1, -1):
                splice(face, j, root)
    return count


def _extract_material_face(face: Face, src: Face) -> None:
    if float(np.dot(face.normal, src.normal)) < 0.95:
        return
    if face_split_test(face, src.plane, PAPERWIDTH) != Side.COPLANAR:
        return
    interior = np.mean(face.vertices, axis=0)
    if poly_hit_check(src.vertices, interior + face.normal, interior - face.normal) is None:
        return
    face.matid = src.matid
    face.gu = src.gu.copy()
    face.gv = src.gv.copy()
    face.ot = src.ot.copy()


def extract_material(node: BSPNode, poly: Face) -> None:
    """Copy material and texturing from ``poly`` onto coincident brep faces."""
    stack = [node]
    while stack:
        n = stack.pop()
        for face in n.brep:
            _extract_material_face(face, poly)
        if n.is_leaf():
            continue
        flag = face_split_test(poly, n.plane)
        if flag == Side.COPLANAR:
            towards = float(np.dot(n.normal, poly.normal)) > 0
            stack.append(n.under if towards else n.over)
            continue
        if flag & Side.OVER:
            stack.append(n.over)
        if flag & Side.UNDER:
            stack.append(n.under)


def rip_brep(root: Optional[BSPNode]) -> list[Face]:
    """Remove and return every brep face in the tree."""
    faces: list[Face] = []
    for n in tree_traverse(root):
        faces.extend(reversed(n.brep))
        n.brep.clear()
    return faces


def _split_face(face: Face, plane: np.ndarray) -> tuple[Face, Face]:
    under = Face(face.plane, [], face.matid, face.gu, face.gv, face.ot)
    over = Face(face.plane, [], face.matid, face.gu, face.gv, face.ot)
    verts = face.vertices
    for vi, vi1 in zip(verts, verts[1:] + verts[:1]):
        vf = plane_test(plane, vi)
        vf1 = plane_test(plane, vi1)
        if vf == Side.COPLANAR:
            under.vertices.append(vi)
            over.vertices.append(vi)
            continue
        (under if vf == Side.UNDER else over).vertices.append(vi)
        if vf != vf1 and vf1 != Side.COPLANAR:
            vmid = plane_line_intersection(plane, vi, vi1)
            under.vertices.append(vmid)
            over.vertices.append(vmid)
    return under, over


def clip_faces(bsp: BSPNode, faces: Iterable[Face], position=(0.0, 0.0, 0.0)):
    """Cut ``faces`` by the tree placed at ``position``.

    Returns ``(under, over)``: the pieces inside solid cells and the pieces
    in empty cells.
    """
    position = _arr(position)
    under: list[Face] = []
    over: list[Face] = []
    for face in faces:
        stack = [(bsp, face)]
        while stack:
            n, f = stack.pop()
            if n.leaf == Side.UNDER:
                under.append(f)
                continue
            if n.leaf == Side.OVER:
                over.append(f)
                continue
            plane = np.append(n.normal, n.dist + float(np.dot(position, n.normal)))
            flag = face_split_test(f, plane)
            if flag == Side.UNDER:
                stack.append((n.under, f))
            elif flag == Side.OVER:
                stack.append((n.over, f))
            elif flag == Side.COPLANAR:
                towards = float(np.dot(n.normal, f.normal)) > 0
                stack.append((n.under if towards else n.over, f))
            else:
                fu, fo = _split_face(f, plane)
                stack.append((n.over, fo))
                stack.append((n.under, fu))
    return under, over