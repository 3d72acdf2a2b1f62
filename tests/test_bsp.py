import math

import numpy as np
import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from bspkit.bsp import (
    FUZZYWIDTH,
    bsp_compile,
    bsp_dup,
    bsp_finite,
    bsp_rotate,
    bsp_scale,
    bsp_solid_leaves,
    bsp_translate,
    divide_polys,
    negate_tree,
    negate_tree_planes,
    plane_cost,
    reorder_faces,
)
from bspkit.bspnode import bsp_count, tree_traverse
from bspkit.face import Face, face_area, face_new_quad, face_translate
from bspkit.geometry import Side, quat_from_axis_angle


def _quad(axis, sign, half):
    b = (axis + 1) % 3
    c = (axis + 2) % 3
    corners = []
    for db, dc in [(-1, -1), (1, -1), (1, 1), (-1, 1)]:
        p = np.zeros(3)
        p[axis] = sign * half[axis]
        p[b] = db * half[b]
        p[c] = dc * half[c]
        corners.append(p)
    if sign < 0:
        corners.reverse()
    return face_new_quad(*corners)


def _box(half=(1.0, 1.0, 1.0), center=(0.0, 0.0, 0.0)):
    half = np.asarray(half, dtype=float)
    faces = [_quad(a, s, half) for a in range(3) for s in (1, -1)]
    for f in faces:
        face_translate(f, center)
    return faces


def _locate(node, point):
    p = np.asarray(point, dtype=float)
    while not node.is_leaf():
        node = node.over if float(np.dot(node.plane[:3], p) + node.plane[3]) > 0 else node.under
    return node.leaf


def test_box_faces_point_outward():
    for f in _box():
        centre = np.mean(f.vertices, axis=0)
        assert float(np.dot(f.normal, centre)) > 0


def test_reorder_faces_sorts_by_area():
    faces = _box((3.0, 1.0, 0.5))
    ordered = reorder_faces(faces)
    areas = [face_area(f) for f in ordered]
    assert areas == sorted(areas)
    assert {id(f) for f in ordered} == {id(f) for f in faces}


def test_plane_cost_of_box_face():
    faces = _box()
    plus_x = next(f for f in faces if f.normal[0] > 0.5)
    assert plane_cost(faces, plus_x.plane) == 4.0


def test_plane_cost_with_everything_on_one_side():
    faces = _box()
    assert plane_cost(faces, [1.0, 0.0, 0.0, -10.0]) == float(len(faces))


def test_divide_polys_keeps_sides():
    faces = _box()
    plane = np.array([1.0, 0.0, 0.0, 0.0])
    under, over, coplanar = divide_polys(plane, faces)
    assert coplanar == []
    assert len(under) == len(over)
    for f in over:
        assert all(v[0] >= -FUZZYWIDTH for v in f.vertices)
    for f in under:
        assert all(v[0] <= FUZZYWIDTH for v in f.vertices)


def test_compile_cube_structure():
    tree = bsp_compile(_box())
    assert bsp_count(tree) == 13
    assert len(bsp_solid_leaves(tree)) == 1


def test_compile_cube_classifies_points():
    tree = bsp_compile(_box())
    assert _locate(tree, (0, 0, 0)) == Side.UNDER
    assert _locate(tree, (0.9, -0.9, 0.5)) == Side.UNDER
    assert _locate(tree, (5, 0, 0)) == Side.OVER
    assert _locate(tree, (0, 0, -1.5)) == Side.OVER
    assert bsp_finite(tree)


def test_compile_does_not_change_input():
    faces = _box()
    before = [[v.copy() for v in f.vertices] for f in faces]
    bsp_compile(faces)
    for f, verts in zip(faces, before):
        assert len(f.vertices) == len(verts)
        for a, b in zip(f.vertices, verts):
            assert np.allclose(a, b)


def test_compile_empty_gives_leaf():
    leaf = bsp_compile([], Side.UNDER)
    assert leaf.leaf == Side.UNDER
    assert leaf.under is None and leaf.over is None


def test_compile_with_axial_planes_two_boxes():
    faces = _box(center=(-3, 0, 0)) + _box(center=(3, 0, 0))
    tree = bsp_compile(faces, allow_axial=7)
    assert _locate(tree, (-3, 0, 0)) == Side.UNDER
    assert _locate(tree, (3, 0.5, -0.5)) == Side.UNDER
    assert _locate(tree, (0, 0, 0)) == Side.OVER
    assert _locate(tree, (3, 5, 0)) == Side.OVER
    assert _locate(tree, (10, 0, 0)) == Side.OVER


def test_compile_rejects_degenerate_faces():
    bad = Face(plane=np.zeros(4), vertices=[(0, 0, 0), (1, 0, 0), (0, 1, 0)])
    with pytest.raises(ValueError):
        bsp_compile([bad])


def test_bsp_finite_rejects_incomplete_tree():
    with pytest.raises(ValueError):
        bsp_finite(bsp_compile([]))


def test_dup_is_independent():
    tree = bsp_compile(_box())
    dup = bsp_dup(tree)
    assert bsp_count(dup) == bsp_count(tree)
    dup.plane[3] = 42.0
    assert tree.plane[3] != 42.0
    assert _locate(dup.under, (0, 0, 0)) == _locate(tree.under, (0, 0, 0))


def test_dup_of_none():
    assert bsp_dup(None) is None


def test_translate_moves_solid():
    tree = bsp_translate(bsp_compile(_box()), (10, 0, 0))
    assert _locate(tree, (10, 0, 0)) == Side.UNDER
    assert _locate(tree, (0, 0, 0)) == Side.OVER


def test_rotate_turns_box():
    tree = bsp_compile(_box((2.0, 1.0, 1.0)))
    assert _locate(tree, (1.5, 0, 0)) == Side.UNDER
    bsp_rotate(tree, quat_from_axis_angle((0, 0, 1), math.pi / 2))
    assert _locate(tree, (0, 1.5, 0)) == Side.UNDER
    assert _locate(tree, (1.5, 0, 0)) == Side.OVER


def test_scale_grows_box():
    tree = bsp_compile(_box())
    assert _locate(tree, (1.5, 0, 0)) == Side.OVER
    bsp_scale(tree, 2.0)
    assert _locate(tree, (1.5, 0, 0)) == Side.UNDER
    assert _locate(tree, (2.5, 0, 0)) == Side.OVER


def test_negate_tree_planes_swaps_inside_and_outside():
    tree = bsp_compile(_box())
    empty_before = sum(1 for n in tree_traverse(tree) if n.leaf == Side.OVER)
    negate_tree_planes(tree)
    assert _locate(tree, (0, 0, 0)) == Side.OVER
    assert _locate(tree, (5, 0, 0)) == Side.UNDER
    assert len(bsp_solid_leaves(tree)) == empty_before
    assert not bsp_finite(tree)


def test_negate_tree_planes_twice_restores():
    tree = bsp_compile(_box())
    original = bsp_dup(tree)
    negate_tree_planes(tree)
    negate_tree_planes(tree)
    for a, b in zip(tree_traverse(tree), tree_traverse(original)):
        assert np.allclose(a.plane, b.plane)
        assert a.leaf == b.leaf


def test_negate_tree_reembeds_brep():
    tree = bsp_compile(_box())
    faces = _box()
    tree.brep.extend(faces)
    result = negate_tree(tree)
    assert result is tree
    assert tree.brep == []
    assert _locate(tree, (0, 0, 0)) == Side.OVER
    for leaf in tree_traverse(tree):
        if leaf.brep:
            assert leaf.leaf == Side.UNDER


@settings(max_examples=25, deadline=None)
@given(st.tuples(*[st.floats(-50, 50, allow_nan=False) for _ in range(3)]))
def test_translate_property(offset):
    tree = bsp_translate(bsp_compile(_box()), offset)
    centre = np.asarray(offset)
    assert _locate(tree, centre) == Side.UNDER
    assert _locate(tree, centre + np.array([3.0, 0.0, 0.0])) == Side.OVER