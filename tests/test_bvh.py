"""Tests for the bounding volume hierarchy.

Checks the BVH against brute-force intersection on random scenes and
verifies the node-box containment invariant after every build.

Author: Mehmet Gümüş (github.com/SpaceEngineerSS)
"""

from __future__ import annotations

import numpy as np
import pytest

from geometry.mesh import TriangleMesh
from geometry.primitives import Plane, Sphere, Triangle
from geometry.ray import Ray
from render_engine.bvh import BVH
from render_engine.material import Material


# ===================================================================
# FIXTURES
# ===================================================================


@pytest.fixture
def material() -> Material:
    return Material()


def _random_objects(rng: np.random.Generator, count: int, material: Material) -> list:
    """Mix of spheres and triangles scattered in a 20 m cube."""
    objects: list = []
    for i in range(count):
        center = rng.uniform(-10.0, 10.0, size=3)
        if i % 2 == 0:
            objects.append(Sphere(center, rng.uniform(0.1, 1.5), material))
        else:
            corners = center + rng.uniform(-1.5, 1.5, size=(3, 3))
            objects.append(Triangle(corners[0], corners[1], corners[2], material))
    return objects


def _random_rays(rng: np.random.Generator, count: int) -> list[Ray]:
    rays = []
    for _ in range(count):
        origin = rng.uniform(-15.0, 15.0, size=3)
        target = rng.uniform(-5.0, 5.0, size=3)
        rays.append(Ray(origin, target - origin))
    return rays


def _brute_force_t(objects: list, ray: Ray, t_max: float = np.inf) -> float | None:
    best = None
    for obj in objects:
        hit = obj.intersect(ray, 1e-6, t_max)
        if hit is not None and (best is None or hit.t < best):
            best = hit.t
    return best


# ===================================================================
# CONSTRUCTION
# ===================================================================


class TestBVHBuild:
    @pytest.mark.parametrize("max_leaf", [1, 2, 4, 8])
    def test_invariants_hold_after_build(self, material: Material, max_leaf: int) -> None:
        rng = np.random.default_rng(7)
        objects = _random_objects(rng, 60, material)
        bvh = BVH.build(objects, max_leaf_objects=max_leaf)
        bvh.validate()

        stats = bvh.stats()
        assert stats["num_objects"] == 60
        assert stats["max_leaf_size"] <= max_leaf
        leaves = [n for n in bvh.iter_nodes() if n.is_leaf]
        assert sum(len(n.objects) for n in leaves) == 60
        assert bvh.num_nodes == 2 * len(leaves) - 1

    def test_every_node_box_contains_children(self, material: Material) -> None:
        rng = np.random.default_rng(11)
        bvh = BVH.build(_random_objects(rng, 50, material))
        bvh.validate()
        for node in bvh.iter_nodes():
            if node.is_leaf:
                for obj in node.objects:
                    assert node.bbox.contains(obj.bounding_box())
            else:
                assert node.bbox.contains(bvh.node(node.left).bbox)
                assert node.bbox.contains(bvh.node(node.right).bbox)

    def test_empty_build(self) -> None:
        bvh = BVH.build([])
        bvh.validate()
        assert bvh.num_nodes == 1
        root = bvh.node(0)
        assert root.is_leaf and root.objects == ()
        ray = Ray((0, 0, 0), (1, 0, 0))
        assert bvh.intersect(ray) is None
        assert not bvh.occluded(ray)
        assert bvh.depth() == 0

    def test_coincident_centroids_still_split(self, material: Material) -> None:
        spheres = [Sphere((0, 0, -5), r, material) for r in np.linspace(0.2, 2.0, 10)]
        bvh = BVH.build(spheres, max_leaf_objects=4)
        bvh.validate()
        stats = bvh.stats()
        assert stats["max_leaf_size"] <= 4
        assert stats["num_leaves"] > 1

        hit = bvh.intersect(Ray((0, 0, 0), (0, 0, -1)))
        assert hit is not None
        assert hit.t == pytest.approx(3.0)

    def test_zero_extent_boxes(self, material: Material) -> None:
        """Flat triangles and point-like spheres still build and validate."""
        flat = [
            Triangle((x, 0, 0), (x + 0.5, 0, 0), (x, 0.5, 0), material)
            for x in np.arange(0.0, 10.0, 1.0)
        ]
        points = [Sphere((x, 3.0, 0.0), 0.0, material) for x in range(6)]
        bvh = BVH.build(flat + points, max_leaf_objects=2)
        bvh.validate()

        hit = bvh.intersect(Ray((3.1, 0.1, 2.0), (0.0, 0.0, -1.0)))
        assert hit is not None
        assert hit.t == pytest.approx(2.0)
        assert bvh.intersect(Ray((2.0, 3.0, 2.0), (0.0, 0.0, -1.0))) is None

    def test_mesh_faces_are_leaf_objects(self, material: Material) -> None:
        vertices = np.array(
            [[0.0, 0.0, 0.0], [1.0, 0.0, 0.0], [1.0, 1.0, 0.0], [0.0, 1.0, 0.0]]
        )
        mesh = TriangleMesh(vertices, np.array([[0, 1, 2], [0, 2, 3]]), material)
        bvh = BVH.build(mesh.primitives(), max_leaf_objects=1)
        bvh.validate()
        assert bvh.stats()["num_leaves"] == 2
        # Faces share one box; their own centroids order them along x
        root = bvh.node(0)
        assert bvh.node(root.left).objects[0].index == 1
        assert bvh.node(root.right).objects[0].index == 0

    def test_invalid_leaf_size(self, material: Material) -> None:
        with pytest.raises(ValueError):
            BVH.build([Sphere((0, 0, 0), 1.0, material)], max_leaf_objects=0)

    def test_validate_detects_corrupted_box(self, material: Material) -> None:
        rng = np.random.default_rng(3)
        bvh = BVH.build(_random_objects(rng, 20, material))
        bvh.validate()
        assert not bvh.node(0).is_leaf
        # Shrink the root box to a point
        bvh._nodes[0, 3:6] = bvh._nodes[0, 0:3]
        with pytest.raises(ValueError):
            bvh.validate()


# ===================================================================
# QUERIES
# ===================================================================


class TestBVHQueries:
    def test_nearest_hit_matches_brute_force(self, material: Material) -> None:
        rng = np.random.default_rng(42)
        objects = _random_objects(rng, 80, material)
        bvh = BVH.build(objects)
        bvh.validate()

        num_hits = 0
        for ray in _random_rays(rng, 300):
            expected = _brute_force_t(objects, ray)
            hit = bvh.intersect(ray)
            if expected is None:
                assert hit is None
            else:
                assert hit is not None
                assert hit.t == pytest.approx(expected, abs=1e-9)
                num_hits += 1
        # The scene is dense enough that the comparison is meaningful
        assert num_hits > 10

    def test_occlusion_matches_brute_force(self, material: Material) -> None:
        rng = np.random.default_rng(5)
        objects = _random_objects(rng, 60, material)
        bvh = BVH.build(objects)
        bvh.validate()

        for ray in _random_rays(rng, 200):
            t_max = float(rng.uniform(1.0, 30.0))
            expected = _brute_force_t(objects, ray, t_max) is not None
            assert bvh.occluded(ray, 1e-6, t_max) == expected

    def test_t_window_is_respected(self, material: Material) -> None:
        sphere = Sphere((0, 0, -10), 1.0, material)
        bvh = BVH.build([sphere])
        bvh.validate()
        ray = Ray((0, 0, 0), (0, 0, -1))
        assert bvh.intersect(ray, 1e-6, 5.0) is None
        assert not bvh.occluded(ray, 1e-6, 8.0)
        assert bvh.occluded(ray, 1e-6, 9.5)

    def test_unbounded_plane_is_tested(self, material: Material) -> None:
        floor = Plane((0, -1, 0), (0, 1, 0), material)
        far_sphere = Sphere((0, -1, -50), 0.5, material)
        bvh = BVH.build([far_sphere, floor])
        bvh.validate()
        assert bvh.unbounded == [floor]
        assert bvh.bounding_box() is None

        hit = bvh.intersect(Ray((0, 0, 0), (0, -1, -1)))
        assert hit is not None
        assert hit.t == pytest.approx(np.sqrt(2.0))
        assert bvh.occluded(Ray((0, 0, 0), (0, -1, 0)), 1e-6, 2.0)

    def test_nearer_object_wins_across_subtrees(self, material: Material) -> None:
        row = [Sphere((0, 0, -z), 0.4, material) for z in range(1, 21)]
        bvh = BVH.build(row, max_leaf_objects=1)
        bvh.validate()
        hit = bvh.intersect(Ray((0, 0, 0), (0, 0, -1)))
        assert hit is not None
        assert hit.t == pytest.approx(0.6)
        hit = bvh.intersect(Ray((0, 0, -30), (0, 0, 1)))
        assert hit is not None
        assert hit.t == pytest.approx(9.6)
