"""KD-Tree implementation for efficient spatial partitioning and nearest neighbor search."""

import numpy as np

from .errors import ConfigurationError, IndexBuildError
from .utils import time_function


class Node:
    def __init__(self):
        self.point = None
        self.index = None
        self.left = None
        self.right = None
        self.axis = None
        self.indices = None

    def set_point(self, point, index):
        self.point = point
        self.index = index

    def set_left(self, left):
        self.left = left

    def set_right(self, right):
        self.right = right

    def set_axis(self, axis):
        self.axis = axis

    def set_indices(self, indices):
        self.indices = indices

    @property
    def is_leaf(self):
        return self.indices is not None


def _merge(best_ids, best_dists, ids, dists, k):
    """Keep the k best candidates, ordered by (distance, index)."""
    all_ids = np.concatenate([best_ids, ids])
    all_dists = np.concatenate([best_dists, dists])
    order = np.lexsort((all_ids, all_dists))[:k]
    return all_ids[order], all_dists[order]


def _as_pairs(ids, dists):
    return [(int(i), float(d)) for i, d in zip(ids, dists)]


class KDTree:
    """
    Bucketed KD-Tree over a fixed reference point array.

    Leaves hold up to ``leaf_size`` point indices and are scanned with numpy;
    internal nodes hold the median point of their split. ``epsilon > 0``
    turns the search approximate: a branch is skipped unless its distance
    bound, inflated by ``1 + epsilon``, could still beat the current k-th
    neighbor.
    """

    def __init__(self, leaf_size=32, epsilon=0.0):
        self.root = None
        self.points = None
        self.leaf_size = max(1, int(leaf_size))
        self.epsilon = float(epsilon)
        if self.epsilon < 0:
            raise ValueError("epsilon must be non-negative")

    @property
    def dimension(self):
        return self.points.shape[1]

    def __len__(self):
        return 0 if self.points is None else self.points.shape[0]

    @time_function
    def build(self, points):
        """
        Build the tree over ``points`` (N, D).

        Raises:
            IndexBuildError: If ``points`` is empty
        """
        points = np.asarray(points, dtype=float)
        if points.ndim != 2 or points.shape[0] == 0:
            raise IndexBuildError("Cannot build a spatial index over an empty cloud")
        self.points = points
        indices = np.arange(points.shape[0], dtype=np.int64)
        self.root = self._build(indices, depth=0)
        return self

    def _build(self, indices, depth):
        n_points = indices.shape[0]

        # No points
        if n_points == 0:
            return None

        # Leaf: store the indices to avoid creating millions of nodes
        if n_points <= self.leaf_size:
            leaf = Node()
            leaf.set_axis(depth % self.dimension)
            leaf.set_indices(np.sort(indices))
            return leaf

        # Split on the axis of largest spread; cycling axes degrades on flat scans
        segment = self.points[indices]
        axis = int(np.argmax(segment.max(axis=0) - segment.min(axis=0)))

        median_index = n_points // 2
        # argpartition gives positions that would place kth in its final position
        order = np.argpartition(segment[:, axis], median_index)
        # Reorder this segment of indices in-place to avoid large copies
        indices[:] = indices[order]

        median_point_index = indices[median_index]

        node = Node()
        node.set_axis(axis)
        node.set_point(self.points[median_point_index], int(median_point_index))

        # Build subtrees using views (no copies) into the shared indices array
        node.set_left(self._build(indices[:median_index], depth + 1))
        node.set_right(self._build(indices[median_index + 1:], depth + 1))
        return node

    def query(self, point, k=1):
        """
        Find the ``k`` nearest reference points of ``point``.

        Returns:
            List of ``(index, distance)`` ascending by distance, ties broken
            by lower index
        """
        ids, dists = self._search(np.asarray(point, dtype=float), k)
        return _as_pairs(ids, dists)

    def query_many(self, points, k=1):
        """
        Query several points at once.

        Returns:
            Tuple of (ids, distances), both (M, k') with k' = min(k, N)
        """
        points = np.asarray(points, dtype=float)
        k = min(int(k), len(self))
        ids = np.empty((points.shape[0], k), dtype=np.int64)
        dists = np.empty((points.shape[0], k))
        for row, point in enumerate(points):
            ids[row], dists[row] = self._search(point, k)
        return ids, dists

    def _search(self, query_point, k):
        if self.root is None:
            raise IndexBuildError("Spatial index has not been built")
        if k < 1:
            raise ValueError("k must be at least 1")
        k = min(k, len(self))
        best_ids = np.empty(0, dtype=np.int64)
        best_dists = np.empty(0)
        scale = 1.0 + self.epsilon

        # Iterative traversal; each entry carries a lower bound on the
        # distance from the query to anything below that node
        stack = [(self.root, 0.0)]
        while stack:
            node, bound = stack.pop()
            if node is None:
                continue
            if best_ids.shape[0] == k and bound * scale > best_dists[-1]:
                continue

            # Leaf node: check all points in the leaf
            if node.is_leaf:
                leaf_points = self.points[node.indices]
                dists = np.linalg.norm(leaf_points - query_point, axis=1)
                best_ids, best_dists = _merge(best_ids, best_dists, node.indices, dists, k)
                continue

            # Internal node: check node point
            dist = np.linalg.norm(node.point - query_point)
            best_ids, best_dists = _merge(
                best_ids, best_dists, np.array([node.index]), np.array([dist]), k
            )

            axis = node.axis
            diff = query_point[axis] - node.point[axis]
            if diff < 0:
                near_node, far_node = node.left, node.right
            else:
                near_node, far_node = node.right, node.left

            # Far side pushed first so the near side is explored first
            stack.append((far_node, max(bound, abs(diff))))
            stack.append((near_node, bound))

        return best_ids, best_dists


class BruteForceIndex:
    """Exhaustive search; exact, and a reference for testing the tree."""

    def __init__(self, chunk_size=1024):
        self.points = None
        self.chunk_size = chunk_size

    def __len__(self):
        return 0 if self.points is None else self.points.shape[0]

    def build(self, points):
        points = np.asarray(points, dtype=float)
        if points.ndim != 2 or points.shape[0] == 0:
            raise IndexBuildError("Cannot build a spatial index over an empty cloud")
        self.points = points
        return self

    def query(self, point, k=1):
        ids, dists = self.query_many(np.asarray(point, dtype=float)[np.newaxis], k)
        return _as_pairs(ids[0], dists[0])

    def query_many(self, points, k=1):
        if self.points is None:
            raise IndexBuildError("Spatial index has not been built")
        if k < 1:
            raise ValueError("k must be at least 1")
        points = np.asarray(points, dtype=float)
        k = min(int(k), len(self))
        ids = np.empty((points.shape[0], k), dtype=np.int64)
        dists = np.empty((points.shape[0], k))
        for start in range(0, points.shape[0], self.chunk_size):
            block = points[start:start + self.chunk_size]
            all_dists = np.linalg.norm(
                block[:, np.newaxis, :] - self.points[np.newaxis, :, :], axis=2
            )
            # Stable sort keeps lower indices first among equal distances
            order = np.argsort(all_dists, axis=1, kind='stable')[:, :k]
            ids[start:start + block.shape[0]] = order
            dists[start:start + block.shape[0]] = np.take_along_axis(all_dists, order, axis=1)
        return ids, dists


INDEX_TYPES = {
    'kdtree': KDTree,
    'brute_force': BruteForceIndex,
}


def build_index(points, kind='kdtree', **params):
    """
    Build a spatial index of the given kind over ``points``.

    Args:
        points: Reference points (N, D)
        kind: 'kdtree' or 'brute_force'
        **params: Constructor parameters of the chosen index

    Returns:
        A built index exposing ``query`` and ``query_many``
    """
    try:
        index_cls = INDEX_TYPES[kind]
    except KeyError:
        raise ConfigurationError(
            f"Unknown spatial index '{kind}', expected one of {sorted(INDEX_TYPES)}"
        ) from None
    try:
        index = index_cls(**params)
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"Invalid parameters for index '{kind}': {e}") from None
    return index.build(points)

