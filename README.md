# bspkit

Geometry tools for 3D work, built on numpy.

- **Geometry helpers** (`bspkit.geometry`): vectors, planes, quaternions
  (`qmul`, `qconj`, `qrot`, `qnlerp`, `quat_from_axis_angle`), plane
  classification (`plane_test`, returning a `Side`), plane transforms, and a
  rigid `Pose` with `transform_point`, `transform_plane`, `inverse` and `*`.
- **BSP nodes** (`bspkit.bspnode`): the `BSPNode` class, the `tree_traverse`
  pre-order walk, the `tree_back_to_front` walk as seen from a point, and
  `bsp_count`.
- **Faces** (`bspkit.face`): the `Face` class is a convex polygon that carries
  its plane, a material id and a linear texture mapping. The module builds
  faces (`face_new_quad`, `face_new_tri`, `face_new_tri_tex`), clips them
  (`face_clip`), measures them (`face_area`, `face_center`) and transforms
  them. It also embeds faces in a tree (`face_embed`), splits brep edges where
  they cross tree planes (`face_splitify_edges`), copies materials onto
  coincident brep faces (`extract_material`), removes all brep faces from a
  tree (`rip_brep`) and cuts faces through a tree (`clip_faces`).
- **BSP compilation and tree operations** (`bspkit.bsp`): `bsp_compile` turns
  a closed set of faces into a tree. The module also has `bsp_dup`,
  `bsp_translate`, `bsp_rotate`, `bsp_scale`, `negate_tree_planes` and
  `negate_tree` (turns the solid inside out), `bsp_solid_leaves` and
  `bsp_finite`.
- **Collision** (`bspkit.collide`): segment queries (`hit_check`,
  `hit_check_solid_reenter`, `convex_hit_check`), swept spheres
  (`hit_check_sphere`), upright cylinders (`hit_check_cylinder`) and moving,
  rotating point sets (`hit_check_convex`). Each query returns a `HitResult`,
  which is true in a boolean context when something was hit.
- **Spring networks** (`bspkit.springnet`): Hooke springs integrated
  implicitly with a filtered conjugate-gradient solver over a sparse
  `BlockMatrix`. Use it for cloth.
- **6D solvers and ICP** (`bspkit.linear6`): `conj_gradient` and `cholesky`
  solve small dense systems, and `icp` performs one point-to-plane ICP step
  and returns a `Pose`.

## Installation

```
pip install bspkit
```

## Example: compiling a cube

```python
from bspkit.face import face_new_quad
from bspkit.bsp import bsp_compile, bsp_solid_leaves
from bspkit.bspnode import bsp_count
from bspkit.collide import hit_check

# Six outward-facing quads of the cube [-1, 1]^3
faces = [
    face_new_quad((1, -1, -1), (1, 1, -1), (1, 1, 1), (1, -1, 1)),
    face_new_quad((-1, -1, -1), (-1, -1, 1), (-1, 1, 1), (-1, 1, -1)),
    face_new_quad((-1, 1, -1), (-1, 1, 1), (1, 1, 1), (1, 1, -1)),
    face_new_quad((-1, -1, -1), (1, -1, -1), (1, -1, 1), (-1, -1, 1)),
    face_new_quad((-1, -1, 1), (1, -1, 1), (1, 1, 1), (-1, 1, 1)),
    face_new_quad((-1, -1, -1), (-1, 1, -1), (1, 1, -1), (1, -1, -1)),
]
tree = bsp_compile(faces)
print(bsp_count(tree), len(bsp_solid_leaves(tree)))

hit = hit_check(tree, (5, 0, 0), (0, 0, 0))
if hit:
    print("hit at", hit.impact, "normal", hit.normal)
```

`bsp_compile` copies the faces it is given, so the input list is left as it
was. `face_test_limit` limits how many faces are tried as splitting planes.
`allow_axial` is a bit mask (x=1, y=2, z=4) of axis-aligned planes that are
also tried when there are more than eight faces.

## Example: a cloth patch

```python
from bspkit.springnet import spring_network_rectangular

cloth = spring_network_rectangular(9, 9, 1.0)
for _ in range(60):
    cloth.simulate()
print(cloth.X[40])
```

`spring_network_rectangular` pins the four corners of the patch. To pin a point
call `SpringNetwork.point_status_set(index, op)` with `op=1`. Use `op=0` to free
it, `op=2` to toggle it and `op=-1` to query it. The call returns whether the
point is pinned afterwards, and raises `IndexError` for an index out of range.
To build networks of other shapes, use `spring_network_create` or
`spring_network_from_triangles`.

## Example: one ICP step

```python
from bspkit.linear6 import Correspondence, icp

pairs = [
    Correspondence(point=(0.02, 0.0, 0.5), plane=(0.0, 0.0, 1.0, -0.5)),
    Correspondence(point=(0.5, 0.1, 0.0), plane=(1.0, 0.0, 0.0, -0.5)),
]
pose = icp(pairs)
```

When the system is singular or needs no motion, `icp` returns the identity
`Pose`. Too few independent correspondences make the system singular.

## Conventions

- Planes are 4-vectors `(nx, ny, nz, d)`. A point `p` is under the plane when
  `dot(n, p) + d < 0`.
- Quaternions are stored as `(x, y, z, w)`.
- `bspkit.geometry.Side` describes where geometry lies relative to a plane:
  `COPLANAR`, `UNDER`, `OVER` or `SPLIT`. Solid BSP leaves are `UNDER` and
  empty ones are `OVER`.

## What the package does not do

- It has no boolean operations between two trees, such as union or
  intersection. `negate_tree` only inverts a single solid.
- It does not compute the convex cell of each node. `BSPNode.convex` is kept
  and copied, but nothing in the package fills it in.
- It does not rebuild a brep from a tree's empty cells. Boundary faces are only
  the ones you embed with `face_embed`.
- It has no rendering, windowing, mesh loading or command-line program. It is a
  library only.

## Running the tests

```
pip install bspkit[test]
pytest
```