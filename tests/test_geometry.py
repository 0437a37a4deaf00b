"""Tests for the geometry package.

Validates vector helpers, rays, the numba intersection kernels,
bounding boxes, primitives, meshes and affine transforms.

Author: Mehmet Gümüş (github.com/SpaceEngineerSS)
"""

from __future__ import annotations

import logging

import numpy as np
import pytest

from geometry.aabb import AABB
from geometry.kernels import moller_trumbore, ray_aabb_interval
from geometry.mesh import TriangleMesh
from geometry.primitives import Plane, Sphere, Triangle
from geometry.ray import Ray
from geometry.transforms import (
    compose,
    rotation,
    scaling,
    transform_normals,
    transform_points,
    translation,
)
from geometry.vectors import as_color, as_vec3, cross, normalize, reflect, vec3
from render_engine.material import Material


# ===================================================================
# FIXTURES
# ===================================================================


@pytest.fixture
def material() -> Material:
    return Material()


@pytest.fixture
def unit_sphere(material: Material) -> Sphere:
    """Unit sphere centered at the origin."""
    return Sphere((0.0, 0.0, 0.0), 1.0, material)


@pytest.fixture
def xy_triangle(material: Material) -> Triangle:
    """A right triangle in the XY plane at z=0."""
    return Triangle((0.0, 0.0, 0.0), (1.0, 0.0, 0.0), (0.0, 1.0, 0.0), material)


@pytest.fixture
def quad_mesh(material: Material) -> TriangleMesh:
    """Unit square in the XY plane split into two triangles."""
    vertices = np.array(
        [[0.0, 0.0, 0.0], [1.0, 0.0, 0.0], [1.0, 1.0, 0.0], [0.0, 1.0, 0.0]]
    )
    faces = np.array([[0, 1, 2], [0, 2, 3]])
    return TriangleMesh(vertices, faces, material)


# ===================================================================
# VECTORS AND RAYS
# ===================================================================


class TestVectors:
    def test_normalize_zero_vector_returns_zero(self) -> None:
        np.testing.assert_array_equal(normalize(np.zeros(3)), np.zeros(3))

    def test_cross_follows_right_hand_rule(self) -> None:
        np.testing.assert_array_equal(
            cross(vec3(1, 0, 0), vec3(0, 1, 0)), vec3(0, 0, 1)
        )

    def test_reflect_about_normal(self) -> None:
        d = normalize(vec3(1.0, -1.0, 0.0))
        r = reflect(d, vec3(0.0, 1.0, 0.0))
        np.testing.assert_allclose(r, normalize(vec3(1.0, 1.0, 0.0)), atol=1e-15)

    def test_as_vec3_rejects_wrong_shape(self) -> None:
        with pytest.raises(ValueError):
            as_vec3([1.0, 2.0])

    def test_as_color_rejects_negative_channel(self) -> None:
        with pytest.raises(ValueError):
            as_color([0.1, -0.2, 0.3])


class TestRay:
    def test_direction_is_normalized(self) -> None:
        ray = Ray((0, 0, 0), (0, 3, 4))
        np.testing.assert_allclose(ray.direction, [0.0, 0.6, 0.8])
        np.testing.assert_allclose(ray.at(5.0), [0.0, 3.0, 4.0])

    def test_zero_direction_rejected(self) -> None:
        with pytest.raises(ValueError):
            Ray((0, 0, 0), (0, 0, 0))

    def test_inverse_direction_is_finite_for_axis_parallel_rays(self) -> None:
        ray = Ray((0, 0, 0), (0, 0, -1))
        assert np.all(np.isfinite(ray.inv_direction))


# ===================================================================
# KERNELS AND BOUNDING BOXES
# ===================================================================


class TestKernels:
    def test_moller_trumbore_hit(self) -> None:
        """Ray straight down onto the XY triangle."""
        t, u, v = moller_trumbore(
            vec3(0.2, 0.2, 1.0), vec3(0.0, 0.0, -1.0),
            vec3(0, 0, 0), vec3(1, 0, 0), vec3(0, 1, 0),
            1e-6, np.inf,
        )
        assert t == pytest.approx(1.0, abs=1e-12)
        assert u == pytest.approx(0.2, abs=1e-12)
        assert v == pytest.approx(0.2, abs=1e-12)

    def test_moller_trumbore_outside_window(self) -> None:
        t, _, _ = moller_trumbore(
            vec3(0.2, 0.2, 1.0), vec3(0.0, 0.0, -1.0),
            vec3(0, 0, 0), vec3(1, 0, 0), vec3(0, 1, 0),
            1e-6, 0.5,
        )
        assert t == -1.0

    def test_aabb_interval_zero_extent_box(self) -> None:
        """A flat box is still hit by a ray crossing it."""
        bmin = vec3(-1.0, -1.0, 0.0)
        bmax = vec3(1.0, 1.0, 0.0)
        ray = Ray((0.0, 0.0, 2.0), (0.0, 0.0, -1.0))
        t_near, t_far = ray_aabb_interval(
            ray.origin, ray.inv_direction, bmin, bmax, 0.0, np.inf
        )
        assert t_near <= t_far
        assert t_near == pytest.approx(2.0)

    def test_aabb_interval_miss(self) -> None:
        ray = Ray((5.0, 0.0, 2.0), (0.0, 0.0, -1.0))
        t_near, t_far = ray_aabb_interval(
            ray.origin, ray.inv_direction, vec3(-1, -1, -1), vec3(1, 1, 1), 0.0, np.inf
        )
        assert t_near > t_far


class TestAABB:
    def test_min_above_max_rejected(self) -> None:
        with pytest.raises(ValueError):
            AABB(vec3(1, 0, 0), vec3(0, 1, 1))

    def test_union_and_contains(self) -> None:
        a = AABB(vec3(0, 0, 0), vec3(1, 1, 1))
        b = AABB(vec3(2, -1, 0), vec3(3, 0, 0.5))
        u = a.union(b)
        assert u.contains(a) and u.contains(b)
        assert not a.contains(u)
        np.testing.assert_array_equal(u.minimum, [0, -1, 0])
        np.testing.assert_array_equal(u.maximum, [3, 1, 1])
        assert u.longest_axis == 0
        assert u.surface_area == pytest.approx(2.0 * (3 * 2 + 2 * 1 + 1 * 3))

    def test_union_all_empty_is_none(self) -> None:
        assert AABB.union_all([]) is None

    def test_intersect_returns_none_on_miss(self) -> None:
        box = AABB(vec3(-1, -1, -1), vec3(1, 1, 1))
        assert box.intersect(Ray((0, 5, 0), (1, 0, 0))) is None
        assert box.intersect(Ray((0, 0, 5), (0, 0, -1))) == pytest.approx((4.0, 6.0))


# ===================================================================
# PRIMITIVES
# ===================================================================


class TestSphere:
    def test_roots_and_outward_normal(self, unit_sphere: Sphere) -> None:
        ray = Ray((0.0, 0.0, 5.0), (0.0, 0.0, -1.0))
        assert unit_sphere.roots(ray) == pytest.approx((4.0, 6.0))

        hit = unit_sphere.intersect(ray)
        assert hit is not None
        assert hit.t == pytest.approx(4.0)
        np.testing.assert_allclose(hit.point, [0.0, 0.0, 1.0])
        np.testing.assert_allclose(hit.normal, [0.0, 0.0, 1.0])
        assert hit.front_face

    def test_tangent_ray_has_single_root(self, unit_sphere: Sphere) -> None:
        ray = Ray((1.0, 0.0, 5.0), (0.0, 0.0, -1.0))
        assert unit_sphere.roots(ray) == (5.0,)

    def test_ray_from_inside_hits_far_side(self, unit_sphere: Sphere) -> None:
        hit = unit_sphere.intersect(Ray((0.0, 0.0, 0.0), (0.0, 0.0, -1.0)))
        assert hit is not None
        assert hit.t == pytest.approx(1.0)
        assert not hit.front_face
        # Normal faces back against the ray
        np.testing.assert_allclose(hit.normal, [0.0, 0.0, 1.0])

    def test_sphere_behind_ray_is_missed(self, unit_sphere: Sphere) -> None:
        assert unit_sphere.intersect(Ray((0.0, 0.0, 5.0), (0.0, 0.0, 1.0))) is None

    def test_zero_radius_never_hit(self, material: Material) -> None:
        sphere = Sphere((0, 0, 0), 0.0, material)
        assert sphere.intersect(Ray((0, 0, 5), (0, 0, -1))) is None

    def test_negative_radius_rejected(self, material: Material) -> None:
        with pytest.raises(ValueError):
            Sphere((0, 0, 0), -1.0, material)


class TestTriangle:
    def test_centroid_barycentrics(self, xy_triangle: Triangle) -> None:
        c = xy_triangle.centroid
        hit = xy_triangle.intersect(Ray(c + vec3(0, 0, 1), (0, 0, -1)))
        assert hit is not None
        np.testing.assert_allclose(hit.barycentric, [1 / 3, 1 / 3, 1 / 3], atol=1e-12)
        np.testing.assert_allclose(hit.point, c, atol=1e-12)

    def test_vertex_hit_is_accepted(self, xy_triangle: Triangle) -> None:
        hit = xy_triangle.intersect(Ray((1.0, 0.0, 1.0), (0.0, 0.0, -1.0)))
        assert hit is not None
        assert hit.barycentric == pytest.approx((0.0, 1.0, 0.0))

    def test_back_face_hit_flips_normal(self, xy_triangle: Triangle) -> None:
        hit = xy_triangle.intersect(Ray((0.2, 0.2, -1.0), (0.0, 0.0, 1.0)))
        assert hit is not None
        assert not hit.front_face
        np.testing.assert_allclose(hit.normal, [0.0, 0.0, -1.0])

    def test_parallel_ray_misses(self, xy_triangle: Triangle) -> None:
        assert xy_triangle.intersect(Ray((-1.0, 0.2, 0.0), (1.0, 0.0, 0.0))) is None

    def test_degenerate_triangle_never_hit(self, material: Material) -> None:
        tri = Triangle((0, 0, 0), (1, 0, 0), (2, 0, 0), material)
        np.testing.assert_array_equal(tri.face_normal, [0.0, 0.0, 0.0])
        assert tri.intersect(Ray((0.5, 0.0, 1.0), (0.0, 0.0, -1.0))) is None

    def test_smooth_normals_are_interpolated(self, material: Material) -> None:
        normals = np.array([[0.0, 0.0, 1.0], [1.0, 0.0, 1.0], [0.0, 1.0, 1.0]])
        tri = Triangle((0, 0, 0), (1, 0, 0), (0, 1, 0), material, normals=normals)
        hit = tri.intersect(Ray((0.0, 0.0, 1.0), (0.0, 0.0, -1.0)))
        assert hit is not None
        np.testing.assert_allclose(hit.normal, [0.0, 0.0, 1.0], atol=1e-12)

        hit = tri.intersect(Ray((1 / 3, 1 / 3, 1.0), (0.0, 0.0, -1.0)))
        assert hit is not None
        assert hit.normal[0] > 0.0 and hit.normal[1] > 0.0
        assert np.linalg.norm(hit.normal) == pytest.approx(1.0)


class TestPlane:
    def test_hit_from_above(self, material: Material) -> None:
        plane = Plane((0, 0, 0), (0, 0, 2), material)
        hit = plane.intersect(Ray((3.0, -2.0, 4.0), (0.0, 0.0, -1.0)))
        assert hit is not None
        assert hit.t == pytest.approx(4.0)
        np.testing.assert_allclose(hit.normal, [0.0, 0.0, 1.0])

    def test_parallel_ray_misses(self, material: Material) -> None:
        plane = Plane((0, 0, 0), (0, 0, 1), material)
        assert plane.intersect(Ray((0.0, 0.0, 1.0), (1.0, 0.0, 0.0))) is None

    def test_plane_is_unbounded(self, material: Material) -> None:
        assert Plane((0, 0, 0), (0, 1, 0), material).bounding_box() is None

    def test_zero_normal_rejected(self, material: Material) -> None:
        with pytest.raises(ValueError):
            Plane((0, 0, 0), (0, 0, 0), material)


# ===================================================================
# MESHES
# ===================================================================


class TestTriangleMesh:
    def test_face_properties(self, quad_mesh: TriangleMesh) -> None:
        assert quad_mesh.num_faces == 2
        np.testing.assert_allclose(quad_mesh.face_areas, [0.5, 0.5])
        np.testing.assert_allclose(quad_mesh.face_normals, [[0, 0, 1], [0, 0, 1]])
        assert quad_mesh.metadata["total_surface_area"] == pytest.approx(1.0)

    def test_primitives_share_the_mesh(self, quad_mesh: TriangleMesh) -> None:
        prims = quad_mesh.primitives()
        assert len(prims) == 2
        assert all(p.mesh is quad_mesh for p in prims)
        assert prims[1].material is quad_mesh.material

    def test_face_view_matches_brute_force(self, quad_mesh: TriangleMesh) -> None:
        ray = Ray((0.8, 0.3, 2.0), (0.0, 0.0, -1.0))
        hit = quad_mesh.intersect(ray)
        assert hit is not None
        assert hit.t == pytest.approx(2.0)
        face_hits = [p.intersect(ray) for p in quad_mesh.primitives()]
        assert sum(h is not None for h in face_hits) == 1

    def test_bounding_box(self, quad_mesh: TriangleMesh) -> None:
        box = quad_mesh.bounding_box()
        np.testing.assert_array_equal(box.minimum, [0, 0, 0])
        np.testing.assert_array_equal(box.maximum, [1, 1, 0])

    def test_out_of_range_index_rejected(self, material: Material) -> None:
        with pytest.raises(ValueError, match="Face indices"):
            TriangleMesh(np.zeros((3, 3)), np.array([[0, 1, 3]]), material)

    def test_wrong_vertex_shape_rejected(self, material: Material) -> None:
        with pytest.raises(ValueError):
            TriangleMesh(np.zeros((3, 2)), np.array([[0, 1, 2]]), material)

    def test_degenerate_faces_logged(
        self, material: Material, caplog: pytest.LogCaptureFixture
    ) -> None:
        vertices = np.array([[0.0, 0.0, 0.0], [1.0, 0.0, 0.0], [2.0, 0.0, 0.0]])
        with caplog.at_level(logging.WARNING, logger="geometry.mesh"):
            mesh = TriangleMesh(vertices, np.array([[0, 1, 2]]), material)
        assert mesh.metadata["degenerate_faces"] == 1
        assert "degenerate" in caplog.text
        assert mesh.intersect(Ray((0.5, 0.0, 1.0), (0.0, 0.0, -1.0))) is None

    def test_transformed_moves_geometry(self, quad_mesh: TriangleMesh) -> None:
        moved = quad_mesh.transformed(translation((0.0, 0.0, -3.0)))
        box = moved.bounding_box()
        np.testing.assert_allclose(box.minimum, [0, 0, -3])
        # Original is untouched
        np.testing.assert_array_equal(quad_mesh.bounding_box().minimum, [0, 0, 0])


# ===================================================================
# TRANSFORMS
# ===================================================================


class TestTransforms:
    def test_rotation_about_z(self) -> None:
        p = transform_points(rotation((0, 0, 1), 90.0), np.array([[1.0, 0.0, 0.0]]))
        np.testing.assert_allclose(p, [[0.0, 1.0, 0.0]], atol=1e-15)

    def test_compose_applies_left_to_right(self) -> None:
        m = compose(scaling(2.0), translation((1.0, 0.0, 0.0)))
        p = transform_points(m, np.array([[1.0, 1.0, 1.0]]))
        np.testing.assert_allclose(p, [[3.0, 2.0, 2.0]])

    def test_normals_stay_perpendicular_under_nonuniform_scale(self) -> None:
        m = scaling((4.0, 1.0, 1.0))
        tangent = np.array([[1.0, 1.0, 0.0]])
        normal = np.array([normalize(vec3(1.0, -1.0, 0.0))])
        new_tangent = transform_points(m, tangent) - transform_points(m, np.zeros((1, 3)))
        new_normal = transform_normals(m, normal)
        assert abs(float(new_tangent[0] @ new_normal[0])) < 1e-12
        assert np.linalg.norm(new_normal[0]) == pytest.approx(1.0)

    def test_singular_matrix_rejected(self) -> None:
        with pytest.raises(ValueError):
            transform_normals(scaling((1.0, 0.0, 1.0)), np.array([[0.0, 0.0, 1.0]]))

    def test_zero_rotation_axis_rejected(self) -> None:
        with pytest.raises(ValueError):
            rotation((0, 0, 0), 45.0)
