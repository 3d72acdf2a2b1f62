import numpy as np
import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from bspkit.bspnode import BSPNode
from bspkit.face import (
    Face,
    assign_tex,
    assign_tex_tree,
    clip_faces,
    extract_material,
    face_area,
    face_center,
    face_clip,
    face_closest_edge,
    face_embed,
    face_extract_mat_vals,
    face_new_quad,
    face_new_tri,
    face_new_tri_tex,
    face_rotate,
    face_scale,
    face_split_test,
    face_splitify_edges,
    face_tex_coord,
    face_translate,
    negate_face,
    rip_brep,
)
from bspkit.geometry import Side, plane_test, quat_from_axis_angle, qrot


def unit_square():
    return face_new_quad((0, 0, 0), (1, 0, 0), (1, 1, 0), (0, 1, 0))


def centered_square(z=0.0):
    return face_new_quad((-1, -1, z), (1, -1, z), (1, 1, z), (-1, 1, z))


def z_tree():
    """Solid below z=0, empty above."""
    return BSPNode(plane=(0, 0, 1, 0),
                   under=BSPNode(leaf=Side.UNDER),
                   over=BSPNode(leaf=Side.OVER))


def test_new_tri_normal():
    f = face_new_tri((0, 0, 0), (1, 0, 0), (0, 1, 0))
    assert np.allclose(f.plane, [0, 0, 1, 0])


def test_unit_square_area_and_texture():
    f = unit_square()
    assert face_area(f) == pytest.approx(1.0)
    assert np.allclose(face_tex_coord(f, 2), [1, 1])
    assert np.allclose(face_tex_coord(f, 0), [0, 0])


def test_quad_not_coplanar_raises():
    with pytest.raises(ValueError):
        face_new_quad((0, 0, 0), (1, 0, 0), (1, 1, 1), (0, 1, 0))


def test_tri_tex_reproduces_coordinates():
    verts = [(0, 0, 0), (2, 0, 1), (0, 3, 0)]
    tex = [(0.1, 0.2), (0.7, 0.3), (0.4, 0.9)]
    f = face_new_tri_tex(*verts, *tex)
    for i, t in enumerate(tex):
        assert np.allclose(face_tex_coord(f, i), t)
        assert np.allclose(face_tex_coord(f, verts[i]), t)


def test_extract_mat_vals_sets_mapping():
    f = centered_square()
    face_extract_mat_vals(f, (-1, -1, 0), (1, -1, 0), (-1, 1, 0), (0, 0), (2, 0), (0, 2))
    assert np.allclose(face_tex_coord(f, (1, -1, 0)), [2, 0])
    assert np.allclose(face_tex_coord(f, (-1, 1, 0)), [0, 2])


def test_split_test():
    f = unit_square()
    assert face_split_test(f, (0, 0, 1, -0.5)) == Side.UNDER
    assert face_split_test(f, (0, 0, 1, 0.5)) == Side.OVER
    assert face_split_test(f, (0, 0, 1, 0)) == Side.COPLANAR
    assert face_split_test(f, (1, 0, 0, -0.5)) == Side.SPLIT


def test_clip_halves_cover_area():
    f = centered_square()
    plane = np.array([1.0, 0.0, 0.0, -0.3])
    under = face_clip(f, plane)
    over = face_clip(f, -plane)
    assert face_area(under) + face_area(over) == pytest.approx(face_area(f))
    assert all(plane_test(plane, v) != Side.OVER for v in under.vertices)
    assert all(plane_test(plane, v) != Side.UNDER for v in over.vertices)
    assert len(f.vertices) == 4


def test_clip_without_split_raises():
    with pytest.raises(ValueError):
        face_clip(unit_square(), (0, 0, 1, -5))


def test_center_of_centered_square():
    assert np.allclose(face_center(centered_square()), np.zeros(3))
    with pytest.raises(ValueError):
        face_center(Face())


@settings(max_examples=30)
@given(st.tuples(*[st.floats(-50, 50)] * 3))
def test_translate_round_trip(offset):
    f = face_new_tri_tex((0, 0, 0), (1, 0, 0), (0, 1, 0), (0, 0), (1, 0), (0, 1))
    original = f.copy()
    face_translate(f, offset)
    moved = np.asarray(offset) + np.array([1.0, 0.0, 0.0])
    assert np.allclose(face_tex_coord(f, moved), face_tex_coord(original, 1), atol=1e-6)
    face_translate(f, -np.asarray(offset))
    for a, b in zip(f.vertices, original.vertices):
        assert np.allclose(a, b, atol=1e-6)
    assert np.allclose(f.plane, original.plane, atol=1e-6)


def test_rotate_keeps_plane_consistent():
    f = centered_square(0.5)
    q = quat_from_axis_angle((1, 1, 0), 0.7)
    face_rotate(f, q)
    assert face_area(f) == pytest.approx(4.0)
    assert np.allclose(f.normal, qrot(q, (0, 0, 1)))
    for v in f.vertices:
        assert plane_test(f.plane, v) == Side.COPLANAR


def test_scale_keeps_vertices_on_plane():
    f = face_new_tri((0, 0, 1), (1, 0, 1), (0, 1, 2))
    face_scale(f, (2.0, 3.0, 0.5))
    for v in f.vertices:
        assert plane_test(f.plane, v) == Side.COPLANAR
    assert np.linalg.norm(f.normal) == pytest.approx(1.0)


def test_closest_edge():
    f = centered_square()
    assert face_closest_edge(f, (0, -0.9, 0)) == 0
    assert face_closest_edge(f, (0.9, 0, 0)) == 1
    with pytest.raises(ValueError):
        face_closest_edge(Face(vertices=[(0, 0, 0), (1, 0, 0)]), (0, 0, 0))


def test_negate_twice_restores():
    f = face_new_tri((0, 0, 0), (1, 0, 0), (0, 1, 0))
    original = f.copy()
    negate_face(f)
    assert np.allclose(f.plane, -original.plane)
    assert face_area(f) == pytest.approx(face_area(original))
    negate_face(f)
    assert np.allclose(f.plane, original.plane)
    assert all(np.allclose(a, b) for a, b in zip(f.vertices, original.vertices))


def test_copy_is_independent():
    f = unit_square()
    c = f.copy()
    face_translate(c, (5, 0, 0))
    assert np.allclose(f.vertices[0], [0, 0, 0])


def test_assign_tex_planar_and_scaled():
    f = unit_square()
    assign_tex(f, 2.0)
    assert np.allclose(f.gu, [2, 0, 0])
    assert np.allclose(f.gv, [0, 2, 0])
    g = face_new_tri((0, 0, 0), (0, 1, 0), (0, 0, 1))
    assign_tex(g)
    assert np.allclose(g.gu, [0, 1, 0])
    assert np.allclose(g.gv, [0, 0, 1])


def test_assign_tex_tree_sets_matid():
    tree = z_tree()
    tree.under.brep.append(centered_square(-1))
    assign_tex_tree(tree, 7)
    assert tree.under.brep[0].matid == 7
    assert np.allclose(tree.under.brep[0].gu, [1, 0, 0])


def test_embed_routes_faces():
    tree = z_tree()
    face_embed(tree, centered_square(-1))
    face_embed(tree, centered_square(1))
    assert len(tree.under.brep) == 1
    assert tree.over.brep == []
    wall = face_new_quad((-1, 0, -1), (1, 0, -1), (1, 0, 1), (-1, 0, 1))
    face_embed(tree, wall)
    assert len(tree.under.brep) == 2
    piece = tree.under.brep[1]
    assert face_area(piece) == pytest.approx(face_area(wall) / 2)


def test_embed_empty_tree_raises():
    with pytest.raises(ValueError):
        face_embed(None, unit_square())


def test_rip_brep_empties_tree():
    tree = z_tree()
    a, b = centered_square(-1), centered_square(-2)
    tree.under.brep.extend([a, b])
    ripped = rip_brep(tree)
    assert ripped == [b, a]
    assert tree.under.brep == []


def test_clip_faces_split_and_offset():
    tree = z_tree()
    wall = face_new_quad((-1, 0, -1), (1, 0, -1), (1, 0, 1), (-1, 0, 1))
    under, over = clip_faces(tree, [wall])
    assert len(under) == 1 and len(over) == 1
    assert face_area(under[0]) + face_area(over[0]) == pytest.approx(face_area(wall))
    under, over = clip_faces(tree, [wall], position=(0, 0, 5))
    assert len(under) == 1 and over == []
    assert under[0] is wall


def test_splitify_edges_inserts_crossings():
    inner = BSPNode(plane=(0, 0, 1, 0),
                    under=BSPNode(leaf=Side.UNDER),
                    over=BSPNode(leaf=Side.OVER))
    root = BSPNode(plane=(1, 0, 0, 0), under=inner, over=BSPNode(leaf=Side.OVER))
    wall = face_new_quad((-1, 0, -1), (1, 0, -1), (1, 0, 1), (-1, 0, 1))
    inner.under.brep.append(wall)
    splits = face_splitify_edges(root)
    assert splits == len(wall.vertices) - 4
    assert any(np.allclose(v, [0, 0, -1]) for v in wall.vertices)
    assert any(np.allclose(v, [-1, 0, 0]) for v in wall.vertices)
    for v in wall.vertices:
        assert plane_test(wall.plane, v) == Side.COPLANAR


def test_extract_material_copies_onto_coincident_face():
    tree = z_tree()
    target = centered_square(-1)
    tree.under.brep.append(target)
    source = face_new_quad((-2, -2, -1), (2, -2, -1), (2, 2, -1), (-2, 2, -1))
    source.matid = 9
    source.ot = np.array([0.25, 0.5, 0.0])
    extract_material(tree, source)
    assert target.matid == 9
    assert np.allclose(target.ot, source.ot)

    elsewhere = face_new_quad((-2, -2, -3), (2, -2, -3), (2, 2, -3), (-2, 2, -3))
    elsewhere.matid = 4
    extract_material(tree, elsewhere)
    assert target.matid == 9