"""Nearest neighbor matching between reading and reference clouds."""

import numpy as np

from .kdtree import build_index
from .utils import map_chunks, time_function


class Matches:
    """
    Correspondence set of one iteration.

    Row ``i`` describes reading point ``i``: ``ids[i]`` are indices of its
    k nearest reference points, ``distances[i]`` the matching distances in
    ascending order and ``weights[i]`` their weights (0 = excluded). Rows
    are never removed, so row ``i`` always refers to reading point ``i``.
    """

    def __init__(self, ids, distances, weights=None):
        self.ids = np.asarray(ids, dtype=np.int64)
        self.distances = np.asarray(distances, dtype=float)
        if weights is None:
            weights = np.ones_like(self.distances)
        self.weights = np.asarray(weights, dtype=float)
        if not (self.ids.shape == self.distances.shape == self.weights.shape):
            raise ValueError("ids, distances and weights must share one shape")
        if np.any(self.weights < 0):
            raise ValueError("weights must be non-negative")

    @property
    def knn(self):
        return self.ids.shape[1]

    def __len__(self):
        return self.ids.shape[0]

    def with_weights(self, weights):
        return Matches(self.ids, self.distances, weights)

    def valid_count(self):
        """Number of correspondences with a positive weight."""
        return int(np.count_nonzero(self.weights > 0))

    def mean_distance(self):
        return float(np.mean(self.distances)) if self.distances.size else 0.0

    def pairs(self):
        """
        Flatten to one entry per (reading point, neighbor) pair.

        Returns:
            Tuple of (reading_ids, reference_ids, distances, weights)
        """
        reading_ids = np.repeat(np.arange(len(self)), self.knn)
        return reading_ids, self.ids.ravel(), self.distances.ravel(), self.weights.ravel()


class NearestNeighborMatcher:
    """
    Matches every reading point to its ``knn`` nearest reference points.

    :meth:`init` builds the spatial index once per reference cloud; the
    index is read-only afterwards and shared by the query workers.
    """

    name = None
    index_kind = None

    def __init__(self, knn=1, n_jobs=1, **index_params):
        if int(knn) < 1:
            raise ValueError("knn must be at least 1")
        self.knn = int(knn)
        self.n_jobs = n_jobs
        self.index_params = index_params
        self.index = None

    @time_function
    def init(self, reference):
        """Build the spatial index over the reference cloud."""
        self.index = build_index(reference.points, self.index_kind, **self.index_params)
        return self

    @time_function
    def match(self, reading):
        """
        Find correspondences for every point of ``reading``.

        Returns:
            Matches with unit weights
        """
        if self.index is None:
            raise RuntimeError("Matcher used before init() was called with a reference")
        points = reading.points

        def search(chunk):
            return self.index.query_many(points[chunk], self.knn)

        results = map_chunks(search, points.shape[0], n_jobs=self.n_jobs)
        k = min(self.knn, len(self.index))
        if not results:
            return Matches(np.empty((0, k), dtype=np.int64), np.empty((0, k)))
        ids, distances = zip(*results)
        return Matches(np.concatenate(ids), np.concatenate(distances))


class KDTreeMatcher(NearestNeighborMatcher):
    """Exact (``epsilon=0``) or approximate KD-tree search."""

    name = 'kdtree'
    index_kind = 'kdtree'

    def __init__(self, knn=1, epsilon=0.0, leaf_size=32, n_jobs=1):
        if epsilon < 0:
            raise ValueError("epsilon must be non-negative")
        super().__init__(knn=knn, n_jobs=n_jobs, epsilon=epsilon, leaf_size=leaf_size)


class BruteForceMatcher(NearestNeighborMatcher):
    name = 'brute_force'
    index_kind = 'brute_force'

    def __init__(self, knn=1, n_jobs=1):
        super().__init__(knn=knn, n_jobs=n_jobs)


MATCHERS = {
    KDTreeMatcher.name: KDTreeMatcher,
    BruteForceMatcher.name: BruteForceMatcher,
}
