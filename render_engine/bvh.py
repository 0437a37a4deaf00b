"""Bounding Volume Hierarchy over scene objects.

Builds a binary tree of axis-aligned boxes over any objects that satisfy
the ``intersect`` / ``bounding_box`` capability and answers nearest-hit
and any-hit (occlusion) queries with box pruning.

Author: Mehmet Gümüş (github.com/SpaceEngineerSS)

Design Notes
------------
- **Flattened BVH**: nodes are rows of one contiguous float64 array
  (an arena addressed by index), built once and read-only afterwards.
  The BVH references the scene objects; it never copies them.
- **Node layout** (8 doubles per node):
  ``[bbox_min_x, min_y, min_z, bbox_max_x, max_y, max_z, child_or_start, count_or_right]``
  - If ``count_or_right < 0``: leaf node → ``child_or_start`` = first slot in
    the ordered object index array, ``-count_or_right - 1`` = number of objects
    (so an empty leaf is still recognizable).
  - If ``count_or_right >= 0``: internal node → ``child_or_start`` = left child
    node index, ``count_or_right`` = right child node index.
- **Split**: longest axis of the node box, object-median of the object
  centroids along it (the box center for objects without a ``centroid``).
  Every leaf holds at most ``max_leaf_objects`` objects.
- **Unbounded objects** (planes) have no box. They are kept in a side
  list and tested against every ray before the tree is traversed.
- **Traversal**: iterative, explicit stack. The nearer child is visited
  first and the best hit distance so far clips every later box test.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Iterator, Sequence

import numpy as np

from geometry.aabb import AABB
from geometry.kernels import ray_aabb_interval
from geometry.primitives import Intersection
from geometry.ray import Ray

logger = logging.getLogger(__name__)

_DEFAULT_EPSILON: float = 1e-6
_DEFAULT_MAX_LEAF: int = 4

# ===================================================================
# NODE LAYOUT: indices into a node row
# ===================================================================
_BBOX_MIN = slice(0, 3)
_BBOX_MAX = slice(3, 6)
_CHILD_OR_START = 6
_COUNT_OR_RIGHT = 7
_NODE_SIZE = 8  # floats per node


def _object_centroid(obj: Any, box: AABB) -> np.ndarray:
    """Split key of a bounded object: its own centroid, else its box center."""
    centroid = getattr(obj, "centroid", None)
    if centroid is None:
        return box.centroid
    return np.asarray(centroid, dtype=np.float64)


@dataclass(frozen=True)
class BVHNode:
    """Read-only view of one node of the flattened tree.

    Attributes
    ----------
    index : int
        Row of this node in the node array.
    bbox : AABB
        Box enclosing everything below this node.
    is_leaf : bool
        True for leaves.
    left, right : int or None
        Child node indices (internal nodes only).
    objects : tuple
        Objects stored in the leaf (empty for internal nodes).
    """

    index: int
    bbox: AABB
    is_leaf: bool
    left: int | None
    right: int | None
    objects: tuple


class BVH:
    """Bounding volume hierarchy with nearest-hit and occlusion queries.

    Use ``BVH.build`` to construct one.
    """

    def __init__(
        self,
        objects: list,
        nodes: np.ndarray,
        ordered_indices: np.ndarray,
        unbounded: list,
    ) -> None:
        self.objects = objects
        self.unbounded = unbounded
        self._nodes = nodes
        self._ordered = ordered_indices
        self._box_min = np.ascontiguousarray(nodes[:, _BBOX_MIN])
        self._box_max = np.ascontiguousarray(nodes[:, _BBOX_MAX])

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------

    @classmethod
    def build(
        cls,
        objects: Sequence[Any],
        max_leaf_objects: int = _DEFAULT_MAX_LEAF,
    ) -> BVH:
        """Build a BVH over ``objects`` using object-median splits.

        Parameters
        ----------
        objects : sequence
            Objects with ``intersect`` and ``bounding_box`` methods.
            Objects whose ``bounding_box()`` is None are treated as unbounded.
        max_leaf_objects : int
            Maximum number of objects per leaf node. Default: 4.

        Returns
        -------
        BVH
            The finished, read-only hierarchy.

        Raises
        ------
        ValueError
            If ``max_leaf_objects < 1``.
        """
        if max_leaf_objects < 1:
            raise ValueError(f"max_leaf_objects must be >= 1, got {max_leaf_objects}")

        bounded: list = []
        unbounded: list = []
        boxes: list[AABB] = []
        for obj in objects:
            box = obj.bounding_box()
            if box is None:
                unbounded.append(obj)
            else:
                bounded.append(obj)
                boxes.append(box)

        num_objects = len(bounded)
        logger.info(
            "Building BVH for %d bounded objects (%d unbounded, max_leaf=%d)...",
            num_objects,
            len(unbounded),
            max_leaf_objects,
        )

        boxes_min = np.array([b.minimum for b in boxes], dtype=np.float64).reshape(-1, 3)
        boxes_max = np.array([b.maximum for b in boxes], dtype=np.float64).reshape(-1, 3)
        centroids = np.array(
            [_object_centroid(obj, box) for obj, box in zip(bounded, boxes)],
            dtype=np.float64,
        ).reshape(-1, 3)

        # Working index array (reordered during construction)
        indices = np.arange(num_objects, dtype=np.int64)

        # Worst case: 2*N - 1 nodes for N objects; one node for an empty set
        max_nodes = max(2 * num_objects - 1, 1)
        nodes_flat = np.zeros((max_nodes, _NODE_SIZE), dtype=np.float64)

        node_count = [0]  # Mutable counter (list for closure access)

        def _allocate_node() -> int:
            idx = node_count[0]
            node_count[0] += 1
            return idx

        def _make_leaf(node_idx: int, start: int, count: int) -> int:
            nodes_flat[node_idx, _CHILD_OR_START] = float(start)
            nodes_flat[node_idx, _COUNT_OR_RIGHT] = float(-count - 1)
            return node_idx

        def _build_recursive(start: int, end: int) -> int:
            """Recursively build the subtree over indices[start:end]. Returns node index."""
            node_idx = _allocate_node()
            count = end - start

            if count == 0:
                return _make_leaf(node_idx, start, 0)

            sub = indices[start:end]
            bbox_min = boxes_min[sub].min(axis=0)
            bbox_max = boxes_max[sub].max(axis=0)
            nodes_flat[node_idx, _BBOX_MIN] = bbox_min
            nodes_flat[node_idx, _BBOX_MAX] = bbox_max

            if count <= max_leaf_objects:
                return _make_leaf(node_idx, start, count)

            # Coincident centroids still split in half; the stable sort keeps input order
            axis = AABB(bbox_min, bbox_max).longest_axis
            order = np.argsort(centroids[sub, axis], kind="stable")
            indices[start:end] = sub[order]
            mid = (start + end) // 2

            left_idx = _build_recursive(start, mid)
            right_idx = _build_recursive(mid, end)

            nodes_flat[node_idx, _CHILD_OR_START] = float(left_idx)
            nodes_flat[node_idx, _COUNT_OR_RIGHT] = float(right_idx)
            return node_idx

        _build_recursive(0, num_objects)

        nodes = nodes_flat[: node_count[0]].copy()
        bvh = cls(bounded, nodes, indices.copy(), unbounded)

        stats = bvh.stats()
        logger.info(
            "BVH built: %d nodes (%d leaves), depth %d, largest leaf %d, "
            "%.1f KB node memory",
            stats["num_nodes"],
            stats["num_leaves"],
            stats["depth"],
            stats["max_leaf_size"],
            nodes.nbytes / 1e3,
        )
        return bvh

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def intersect(
        self,
        ray: Ray,
        t_min: float = _DEFAULT_EPSILON,
        t_max: float = np.inf,
    ) -> Intersection | None:
        """Nearest hit with ``t_min < t < t_max`` across all objects, or None."""
        best: Intersection | None = None
        best_t = float(t_max)
        t_min = float(t_min)

        for obj in self.unbounded:
            hit = obj.intersect(ray, t_min, best_t)
            if hit is not None:
                best, best_t = hit, hit.t

        if not self.objects:
            return best

        t_root = self._enter(ray, 0, t_min, best_t)
        if t_root is None:
            return best

        stack: list[tuple[int, float]] = [(0, t_root)]
        while stack:
            node_idx, t_entry = stack.pop()
            # A closer hit may have been found since this node was pushed
            if t_entry > best_t:
                continue

            child_or_start = int(self._nodes[node_idx, _CHILD_OR_START])
            count_or_right = int(self._nodes[node_idx, _COUNT_OR_RIGHT])

            if count_or_right < 0:
                count = -count_or_right - 1
                for i in self._ordered[child_or_start:child_or_start + count]:
                    hit = self.objects[i].intersect(ray, t_min, best_t)
                    if hit is not None and hit.t < best_t:
                        best, best_t = hit, hit.t
                continue

            left, right = child_or_start, count_or_right
            t_left = self._enter(ray, left, t_min, best_t)
            t_right = self._enter(ray, right, t_min, best_t)

            # Push the farther child first so the nearer one is popped next
            if t_left is not None and t_right is not None:
                if t_left <= t_right:
                    stack.append((right, t_right))
                    stack.append((left, t_left))
                else:
                    stack.append((left, t_left))
                    stack.append((right, t_right))
            elif t_left is not None:
                stack.append((left, t_left))
            elif t_right is not None:
                stack.append((right, t_right))

        return best

    def occluded(
        self,
        ray: Ray,
        t_min: float = _DEFAULT_EPSILON,
        t_max: float = np.inf,
    ) -> bool:
        """True if ANY object is hit with ``t_min < t < t_max``.

        Returns on the first hit found (early exit); used for shadow rays
        with ``t_max`` set to the light distance.
        """
        t_min = float(t_min)
        t_max = float(t_max)

        for obj in self.unbounded:
            if obj.intersect(ray, t_min, t_max) is not None:
                return True

        if not self.objects:
            return False

        stack = [0]
        while stack:
            node_idx = stack.pop()
            if self._enter(ray, node_idx, t_min, t_max) is None:
                continue

            child_or_start = int(self._nodes[node_idx, _CHILD_OR_START])
            count_or_right = int(self._nodes[node_idx, _COUNT_OR_RIGHT])

            if count_or_right < 0:
                count = -count_or_right - 1
                for i in self._ordered[child_or_start:child_or_start + count]:
                    if self.objects[i].intersect(ray, t_min, t_max) is not None:
                        return True  # Early exit, occlusion confirmed
            else:
                stack.append(child_or_start)
                stack.append(count_or_right)

        return False

    def _enter(self, ray: Ray, node_idx: int, t_min: float, t_max: float) -> float | None:
        """Entry distance of the ray into a node box, or None if missed."""
        t_near, t_far = ray_aabb_interval(
            ray.origin, ray.inv_direction,
            self._box_min[node_idx], self._box_max[node_idx],
            t_min, t_max,
        )
        if t_near > t_far:
            return None
        return t_near

    def bounding_box(self) -> AABB | None:
        """Box around all objects; None if any object is unbounded or none exist."""
        if self.unbounded or not self.objects:
            return None
        return self.node(0).bbox

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def num_nodes(self) -> int:
        return int(self._nodes.shape[0])

    def node(self, index: int) -> BVHNode:
        """Read-only view of node ``index`` (0 is the root)."""
        row = self._nodes[index]
        bbox = AABB(row[_BBOX_MIN], row[_BBOX_MAX]) if self.objects else AABB.empty()
        child_or_start = int(row[_CHILD_OR_START])
        count_or_right = int(row[_COUNT_OR_RIGHT])
        if count_or_right < 0:
            count = -count_or_right - 1
            members = tuple(
                self.objects[i] for i in self._ordered[child_or_start:child_or_start + count]
            )
            return BVHNode(index, bbox, True, None, None, members)
        return BVHNode(index, bbox, False, child_or_start, count_or_right, ())

    def iter_nodes(self) -> Iterator[BVHNode]:
        for i in range(self.num_nodes):
            yield self.node(i)

    def depth(self) -> int:
        """Number of levels below the root (a single leaf has depth 0)."""
        deepest = 0
        stack = [(0, 0)]
        while stack:
            idx, d = stack.pop()
            n = self.node(idx)
            deepest = max(deepest, d)
            if not n.is_leaf:
                stack.append((n.left, d + 1))
                stack.append((n.right, d + 1))
        return deepest

    def stats(self) -> dict[str, Any]:
        leaves = [n for n in self.iter_nodes() if n.is_leaf]
        return {
            "num_objects": len(self.objects),
            "num_unbounded": len(self.unbounded),
            "num_nodes": self.num_nodes,
            "num_leaves": len(leaves),
            "max_leaf_size": max((len(n.objects) for n in leaves), default=0),
            "depth": self.depth(),
            "root_surface_area": self.node(0).bbox.surface_area,
        }

    def validate(self) -> None:
        """Check the structural invariants of the tree.

        - every internal node box contains both child boxes;
        - every leaf box contains the boxes of its objects;
        - every bounded object is stored in exactly one leaf.

        Raises
        ------
        ValueError
            On the first violated invariant.
        """
        seen = np.zeros(len(self.objects), dtype=np.int64)
        for n in self.iter_nodes():
            if n.is_leaf:
                start = int(self._nodes[n.index, _CHILD_OR_START])
                members = self._ordered[start:start + len(n.objects)]
                for i in members:
                    seen[i] += 1
                union = AABB.union_all(self.objects[i].bounding_box() for i in members)
                if union is not None and not n.bbox.contains(union):
                    raise ValueError(f"Leaf {n.index} box does not contain its objects")
            else:
                for child in (n.left, n.right):
                    if not n.bbox.contains(self.node(child).bbox):
                        raise ValueError(
                            f"Node {n.index} box does not contain child {child}"
                        )
        if np.any(seen != 1):
            raise ValueError(
                f"{int(np.sum(seen != 1))} objects are missing from or duplicated in the leaves"
            )
