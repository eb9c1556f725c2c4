"""Data filters applied to point clouds before registration."""

import numpy as np
import open3d as o3d

from .errors import FilterError, MissingFeatureError
from .kdtree import KDTree


class DataPointsFilter:
    """
    Base class of the data filters.

    A filter is configured once and then maps a cloud to a new cloud in
    :meth:`apply`; it keeps no state between calls.
    """

    name = None
    required_features = ()

    def apply(self, cloud):
        for feature in self.required_features:
            if not cloud.has_feature(feature):
                raise MissingFeatureError(
                    f"Filter '{self.name}' requires the '{feature}' feature"
                )
        return self._filter(cloud)

    def _filter(self, cloud):
        raise NotImplementedError

    def __repr__(self):
        return f"{type(self).__name__}({self.name})"


class IdentityDataPointsFilter(DataPointsFilter):
    name = 'identity'

    def _filter(self, cloud):
        return cloud


class RemoveNaNDataPointsFilter(DataPointsFilter):
    """Drops points whose coordinates are not all finite."""

    name = 'remove_nan'

    def _filter(self, cloud):
        return cloud.subset(np.all(np.isfinite(cloud.points), axis=1))


class RandomSamplingDataPointsFilter(DataPointsFilter):
    """Keeps each point independently with probability ``prob``."""

    name = 'random_sampling'

    def __init__(self, prob=0.75, seed=0):
        if not 0.0 < prob <= 1.0:
            raise ValueError("prob must be in (0, 1]")
        self.prob = float(prob)
        self.seed = seed

    def _filter(self, cloud):
        rng = np.random.default_rng(self.seed)
        return cloud.subset(rng.random(len(cloud)) < self.prob)


class FixStepSamplingDataPointsFilter(DataPointsFilter):
    """Keeps one point out of every ``step``."""

    name = 'fix_step_sampling'

    def __init__(self, step=1):
        if int(step) < 1:
            raise ValueError("step must be at least 1")
        self.step = int(step)

    def _filter(self, cloud):
        return cloud.subset(np.arange(0, len(cloud), self.step))


class MaxPointCountDataPointsFilter(DataPointsFilter):
    """Randomly subsamples clouds larger than ``max_count`` down to it."""

    name = 'max_point_count'

    def __init__(self, max_count=1000, seed=0):
        if int(max_count) < 1:
            raise ValueError("max_count must be at least 1")
        self.max_count = int(max_count)
        self.seed = seed

    def _filter(self, cloud):
        if len(cloud) <= self.max_count:
            return cloud
        rng = np.random.default_rng(self.seed)
        keep = np.sort(rng.choice(len(cloud), size=self.max_count, replace=False))
        return cloud.subset(keep)


class VoxelGridDataPointsFilter(DataPointsFilter):
    """
    Downsample a point cloud using a voxel grid.

    Every occupied voxel is replaced by the mean of its points; features are
    averaged the same way (normals re-normalised) and labels take the value
    of the voxel's first point.
    """

    name = 'voxel_grid'

    def __init__(self, voxel_size=1.0):
        if voxel_size <= 0:
            raise ValueError("voxel_size must be positive")
        self.voxel_size = float(voxel_size)

    def _filter(self, cloud):
        if len(cloud) == 0:
            return cloud

        min_bound = np.min(cloud.points, axis=0)
        voxel_indices = np.floor((cloud.points - min_bound) / self.voxel_size).astype(np.int64)
        _, first, inverse, counts = np.unique(
            voxel_indices, axis=0, return_index=True, return_inverse=True, return_counts=True
        )
        inverse = inverse.reshape(-1)

        def voxel_mean(values):
            sums = np.zeros((counts.shape[0], values.shape[1]))
            np.add.at(sums, inverse, values)
            return sums / counts[:, np.newaxis]

        features = {name: voxel_mean(values) for name, values in cloud.features.items()}
        if 'normals' in features:
            norms = np.linalg.norm(features['normals'], axis=1, keepdims=True)
            features['normals'] = np.divide(
                features['normals'], norms, out=np.zeros_like(features['normals']), where=norms > 0
            )
        labels = {name: values[first] for name, values in cloud.labels.items()}
        return type(cloud)(voxel_mean(cloud.points), features, labels)


class BoundingBoxDataPointsFilter(DataPointsFilter):
    """Removes the points inside (or outside) an axis-aligned box."""

    name = 'bounding_box'

    def __init__(self, min=None, max=None, remove_inside=True):
        if min is None or max is None:
            raise ValueError("bounding_box requires 'min' and 'max' corners")
        self.min = np.asarray(min, dtype=float)
        self.max = np.asarray(max, dtype=float)
        if self.min.shape != self.max.shape or np.any(self.min > self.max):
            raise ValueError("bounding_box corners must satisfy min <= max")
        self.remove_inside = bool(remove_inside)

    def _filter(self, cloud):
        if self.min.shape[0] != cloud.dim:
            raise FilterError(
                f"Bounding box is {self.min.shape[0]}D but the cloud is {cloud.dim}D"
            )
        inside = np.all((cloud.points >= self.min) & (cloud.points <= self.max), axis=1)
        return cloud.subset(~inside if self.remove_inside else inside)


def _pca(neighborhoods):
    """
    Batched PCA of (N, k, D) neighborhoods.

    Returns:
        Tuple of (eigenvalues (N, D) ascending, eigenvectors (N, D, D))
    """
    centered = neighborhoods - neighborhoods.mean(axis=1, keepdims=True)
    cov = np.einsum('nki,nkj->nij', centered, centered) / neighborhoods.shape[1]
    return np.linalg.eigh(cov)


def _o3d_cloud(points):
    """Open3D cloud holding positions only, so no prior normal biases orientation."""
    pcd = o3d.geometry.PointCloud()
    pcd.points = o3d.utility.Vector3dVector(points)
    return pcd


def _ball_densities(n_neighbors, radius, dim):
    if dim == 3:
        volume = 4.0 / 3.0 * np.pi * radius ** 3
    else:
        volume = np.pi * radius ** 2
    return np.divide(n_neighbors, volume, out=np.full(radius.shape, np.inf), where=volume > 0)


class SurfaceNormalDataPointsFilter(DataPointsFilter):
    """
    Estimate surface normals using PCA on the ``knn`` nearest neighbors.

    Adds a ``normals`` feature (eigenvector of the smallest eigenvalue of
    the neighborhood covariance) and, optionally, ``densities`` (neighbors
    per unit volume of the ball reaching the k-th neighbor) and
    ``eigenvalues``.

    3D clouds go through Open3D (``estimate_normals``, ``estimate_covariances``
    and ``KDTreeFlann``). Open3D only handles 3D points, so 2D clouds use a
    numpy PCA over the package KD-tree; ``epsilon`` applies to that search.
    """

    name = 'surface_normal'

    def __init__(self, knn=5, epsilon=0.0, keep_densities=True, keep_eigenvalues=False):
        if int(knn) < 2:
            raise ValueError("knn must be at least 2")
        self.knn = int(knn)
        self.epsilon = float(epsilon)
        self.keep_densities = bool(keep_densities)
        self.keep_eigenvalues = bool(keep_eigenvalues)

    def _filter(self, cloud):
        if len(cloud) < cloud.dim:
            raise FilterError(
                f"Need at least {cloud.dim} points to estimate normals, got {len(cloud)}"
            )
        if cloud.dim == 3:
            normals, radius, eigenvalues = self._estimate_o3d(cloud)
        else:
            normals, radius, eigenvalues = self._estimate_2d(cloud)

        out = cloud.with_feature('normals', normals)
        if self.keep_densities:
            knn = min(self.knn, len(cloud))
            out = out.with_feature('densities', _ball_densities(knn, radius, cloud.dim))
        if self.keep_eigenvalues:
            out = out.with_feature('eigenvalues', eigenvalues)
        return out

    def _estimate_o3d(self, cloud):
        pcd = _o3d_cloud(cloud.points)
        search_param = o3d.geometry.KDTreeSearchParamKNN(knn=self.knn)
        pcd.estimate_normals(search_param=search_param)
        normals = np.asarray(pcd.normals).copy()

        eigenvalues = None
        if self.keep_eigenvalues:
            pcd.estimate_covariances(search_param=search_param)
            eigenvalues = np.linalg.eigvalsh(np.asarray(pcd.covariances))

        radius = None
        if self.keep_densities:
            tree = o3d.geometry.KDTreeFlann(pcd)
            radius = np.empty(len(cloud))
            for i, point in enumerate(cloud.points):
                _, _, sq_dists = tree.search_knn_vector_3d(point, self.knn)
                radius[i] = np.sqrt(np.max(sq_dists))
        return normals, radius, eigenvalues

    def _estimate_2d(self, cloud):
        tree = KDTree(epsilon=self.epsilon).build(cloud.points)
        ids, dists = tree.query_many(cloud.points, self.knn)
        eigenvalues, eigenvectors = _pca(cloud.points[ids])
        return eigenvectors[:, :, 0], dists[:, -1], eigenvalues


class SamplingSurfaceNormalDataPointsFilter(DataPointsFilter):
    """
    Surface reduction: recursively split the cloud at the median of its
    widest axis until each bin holds at most ``bin_size`` points, then
    replace every bin by its mean point carrying the bin's PCA normal.
    Bins with fewer than D points cannot define a surface and are dropped.
    """

    name = 'sampling_surface_normal'

    def __init__(self, bin_size=10):
        if int(bin_size) < 3:
            raise ValueError("bin_size must be at least 3")
        self.bin_size = int(bin_size)

    def _bins(self, points):
        bins = []
        stack = [np.arange(points.shape[0])]
        while stack:
            indices = stack.pop()
            if indices.shape[0] <= self.bin_size:
                bins.append(indices)
                continue
            segment = points[indices]
            axis = int(np.argmax(segment.max(axis=0) - segment.min(axis=0)))
            order = np.argsort(segment[:, axis], kind='stable')
            half = indices.shape[0] // 2
            # Right half pushed first so bins come out in a stable left-to-right order
            stack.append(indices[order[half:]])
            stack.append(indices[order[:half]])
        return bins

    def _filter(self, cloud):
        points = []
        normals = []
        features = {name: [] for name in cloud.features if name != 'normals'}
        labels = {name: [] for name in cloud.labels}
        for indices in self._bins(cloud.points):
            if indices.shape[0] < cloud.dim:
                continue
            members = cloud.points[indices]
            _, eigenvectors = _pca(members[np.newaxis])
            points.append(members.mean(axis=0))
            normals.append(eigenvectors[0, :, 0])
            for name in features:
                features[name].append(cloud.features[name][indices].mean(axis=0))
            # Labels come from the bin's lowest-index member
            first = indices.min()
            for name in labels:
                labels[name].append(cloud.labels[name][first])

        if not points:
            raise FilterError("No bin holds enough points to estimate a surface")
        out_features = {name: np.array(values) for name, values in features.items()}
        out_features['normals'] = np.array(normals)
        out_labels = {name: np.array(values) for name, values in labels.items()}
        return type(cloud)(np.array(points), out_features, out_labels)


class OrientNormalsDataPointsFilter(DataPointsFilter):
    """Flips normals so that they all face the origin (or away from it)."""

    name = 'orient_normals'
    required_features = ('normals',)

    def __init__(self, towards_origin=True):
        self.towards_origin = bool(towards_origin)

    def _filter(self, cloud):
        normals = cloud.features['normals']
        if cloud.dim == 3:
            pcd = _o3d_cloud(cloud.points)
            pcd.normals = o3d.utility.Vector3dVector(normals)
            pcd.orient_normals_towards_camera_location(camera_location=np.zeros(3))
            oriented = np.asarray(pcd.normals).copy()
            if not self.towards_origin:
                oriented = -oriented
            return cloud.with_feature('normals', oriented)

        # Open3D has no 2D clouds
        facing = np.einsum('ij,ij->i', normals, -cloud.points)
        flip = facing < 0 if self.towards_origin else facing > 0
        oriented = np.where(flip[:, np.newaxis], -normals, normals)
        return cloud.with_feature('normals', oriented)


class MaxDensityDataPointsFilter(DataPointsFilter):
    """
    Subsamples dense regions: a point whose density exceeds
    ``max_density`` is kept with probability ``max_density / density``.
    Requires the ``densities`` feature of :class:`SurfaceNormalDataPointsFilter`.
    """

    name = 'max_density'
    required_features = ('densities',)

    def __init__(self, max_density=10.0, seed=0):
        if max_density <= 0:
            raise ValueError("max_density must be positive")
        self.max_density = float(max_density)
        self.seed = seed

    def _filter(self, cloud):
        densities = cloud.features['densities'][:, 0]
        rng = np.random.default_rng(self.seed)
        keep_prob = np.minimum(1.0, self.max_density / densities)
        return cloud.subset(rng.random(len(cloud)) < keep_prob)


FILTERS = {
    cls.name: cls for cls in (
        IdentityDataPointsFilter,
        RemoveNaNDataPointsFilter,
        RandomSamplingDataPointsFilter,
        FixStepSamplingDataPointsFilter,
        MaxPointCountDataPointsFilter,
        VoxelGridDataPointsFilter,
        BoundingBoxDataPointsFilter,
        SurfaceNormalDataPointsFilter,
        SamplingSurfaceNormalDataPointsFilter,
        OrientNormalsDataPointsFilter,
        MaxDensityDataPointsFilter,
    )
}


class FilterChain:
    """Applies a sequence of filters in configured order."""

    def __init__(self, filters=()):
        self.filters = list(filters)

    def apply(self, cloud):
        for data_filter in self.filters:
            cloud = data_filter.apply(cloud)
        return cloud

    def __len__(self):
        return len(self.filters)

    def __iter__(self):
        return iter(self.filters)
