"""Compiling polygon soups into BSP trees and whole-tree operations."""
from __future__ import annotations

import copy
import math
from collections import Counter
from typing import Iterable, Optional

import numpy as np

from .bspnode import BSPNode, tree_traverse
from .face import (
    Face,
    face_area,
    face_clip,
    face_embed,
    face_rotate,
    face_scale,
    face_split_test,
    face_translate,
    negate_face,
    rip_brep,
)
from .geometry import PAPERWIDTH, Side, plane_rotate, plane_scale, plane_translate

FUZZYWIDTH = PAPERWIDTH * 100
FACE_TEST_LIMIT = 50
ALLOW_AXIAL = 1
FAR_POINT = np.array([999999.0, 9999999.0, 999999.0])


def reorder_faces(faces: Iterable[Face]) -> list[Face]:
    """Faces sorted by increasing area."""
    return sorted(faces, key=face_area)


def _split_counts(faces: Iterable[Face], split) -> Counter:
    return Counter(face_split_test(f, split, FUZZYWIDTH) for f in faces)


def _cost(counts: Counter) -> float:
    return float(abs(counts[Side.OVER] - counts[Side.UNDER])
                 + counts[Side.SPLIT] - counts[Side.COPLANAR])


def plane_cost(faces: Iterable[Face], split) -> float:
    """Heuristic cost of splitting ``faces`` with plane ``split``; lower is better."""
    return _cost(_split_counts(faces, np.asarray(split, dtype=float)))


def divide_polys(plane, faces: list[Face]) -> tuple[list[Face], list[Face], list[Face]]:
    """Sort faces into ``(under, over, coplanar)``, clipping those that straddle."""
    plane = np.asarray(plane, dtype=float)
    under: list[Face] = []
    over: list[Face] = []
    coplanar: list[Face] = []
    for face in reversed(faces):
        flag = face_split_test(face, plane, FUZZYWIDTH)
        if flag == Side.OVER:
            over.append(face)
        elif flag == Side.UNDER:
            under.append(face)
        elif flag == Side.COPLANAR:
            coplanar.append(face)
        else:
            over.append(face_clip(face, -plane))
            under.append(face_clip(face, plane))
    return under, over, coplanar


def _choose_split(faces: list[Face], limit: int, allow_axial: int) -> np.ndarray:
    candidates = faces[:max(limit, 0)]
    minval = math.inf
    split = np.zeros(4)
    for face in candidates:
        val = plane_cost(faces, face.plane)
        if val < minval:
            minval = val
            split = face.plane.copy()
    if not split[:3].any():
        raise ValueError("no usable splitting plane among the faces")
    if allow_axial and len(faces) > 8:
        for face in candidates:
            for v in face.vertices:
                for axis in range(3):
                    if not allow_axial & (1 << axis):
                        continue
                    plane = np.zeros(4)
                    plane[axis] = 1.0
                    plane[3] = -float(v[axis])
                    counts = _split_counts(faces, plane)
                    val = _cost(counts)
                    straddles = (counts[Side.OVER] * counts[Side.UNDER] > 0
                                 or counts[Side.SPLIT] > 0)
                    if val < minval and straddles:
                        minval = val
                        split = plane
    return split


def _compile(faces: list[Face], side: Side, limit: int, allow_axial: int) -> BSPNode:
    if not faces:
        return BSPNode(leaf=side)
    faces = reorder_faces(faces)
    split = _choose_split(faces, limit, allow_axial)
    node = BSPNode(plane=split)
    under, over, _ = divide_polys(split, faces)
    node.under = _compile(under, Side.UNDER, limit, allow_axial)
    node.over = _compile(over, Side.OVER, limit, allow_axial)
    return node


def bsp_compile(faces: Iterable[Face], side: Side = Side.COPLANAR,
                face_test_limit: int = FACE_TEST_LIMIT,
                allow_axial: int = ALLOW_AXIAL) -> BSPNode:
    """Build a BSP tree whose boundary is the closed polygon set ``faces``.

    ``face_test_limit`` bounds how many faces are tried as splitting planes;
    ``allow_axial`` is a bit mask (x=1, y=2, z=4) of axis-aligned planes also
    considered when there are more than eight faces. The input is not changed.
    """
    return _compile([f.copy() for f in faces], Side(side), face_test_limit, allow_axial)


def bsp_dup(node: Optional[BSPNode]) -> Optional[BSPNode]:
    """Deep copy of a tree."""
    if node is None:
        return None
    return BSPNode(
        plane=node.plane,
        under=bsp_dup(node.under),
        over=bsp_dup(node.over),
        leaf=node.leaf,
        convex=copy.deepcopy(node.convex),
        brep=[f.copy() for f in node.brep],
    )


def bsp_translate(node: BSPNode, translation) -> BSPNode:
    """Move the tree's planes and brep faces in place; returns ``node``."""
    offset = np.asarray(translation, dtype=float)
    for n in tree_traverse(node):
        n.plane = plane_translate(n.plane, offset)
        for face in n.brep:
            face_translate(face, offset)
    return node


def bsp_rotate(node: BSPNode, rotation) -> BSPNode:
    """Rotate the tree about the origin by quaternion ``rotation``; returns ``node``."""
    for n in tree_traverse(node):
        n.plane = plane_rotate(n.plane, rotation)
        for face in n.brep:
            face_rotate(face, rotation)
    return node


def bsp_scale(node: BSPNode, scaling) -> BSPNode:
    """Scale the tree by a scalar or per-axis factor; returns ``node``."""
    for n in tree_traverse(node):
        if n.plane[:3].any():
            n.plane = plane_scale(n.plane, scaling)
        for face in n.brep:
            face_scale(face, scaling)
    return node


def negate_tree_planes(root: Optional[BSPNode]) -> None:
    """Turn the tree inside out: flip planes, faces and leaf kinds in place."""
    for n in tree_traverse(root):
        for face in n.brep:
            negate_face(face)
        n.leaf = Side((3 - int(n.leaf)) % 3)
        n.plane = -n.plane
        n.under, n.over = n.over, n.under


def negate_tree(root: BSPNode) -> BSPNode:
    """Invert the solid and re-embed its boundary faces; returns ``root``."""
    negate_tree_planes(root)
    for face in rip_brep(root):
        face_embed(root, face)
    return root


def bsp_solid_leaves(root: Optional[BSPNode]) -> list[BSPNode]:
    """All solid (``Side.UNDER``) leaves of the tree."""
    return [n for n in tree_traverse(root) if n.leaf == Side.UNDER]


def bsp_finite(bsp: BSPNode) -> bool:
    """True when a point far from the origin lies in empty space."""
    node = bsp
    while not node.is_leaf():
        above = float(np.dot(node.plane[:3], FAR_POINT) + node.plane[3]) > 0.0
        child = node.over if above else node.under
        if child is None:
            raise ValueError("interior node is missing a child")
        node = child
    return node.leaf != Side.UNDER