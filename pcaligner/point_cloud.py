"""Point cloud data management."""

import numpy as np
import open3d as o3d

from .errors import InvalidCloudError, MissingFeatureError
from .transforms import apply_transformation, transform_normals


class PointCloud:
    """
    An ordered set of N points in D dimensions with aligned per-point data.

    ``features`` maps a name to an (N, k) array (normals, colors, weights,
    descriptors, ...); ``labels`` maps a name to an (N,) array of scalar or
    categorical values. Every entry is aligned by row with ``points``.

    Pipeline stages treat clouds as immutable and build new ones through
    :meth:`subset`, :meth:`with_feature` and :meth:`transformed`.
    """

    def __init__(self, points, features=None, labels=None):
        """
        Initialize a point cloud.

        Args:
            points: Array-like (N, D) with D = 2 or 3
            features: Optional dict of name -> (N, k) arrays
            labels: Optional dict of name -> (N,) arrays
        """
        points = np.asarray(points, dtype=float)
        if points.ndim != 2 or points.shape[1] not in (2, 3):
            raise InvalidCloudError(
                f"Points must be an (N, 2) or (N, 3) array, got shape {points.shape}"
            )
        self.points = points

        self.features = {}
        for name, values in (features or {}).items():
            values = np.asarray(values, dtype=float)
            if values.ndim == 1:
                values = values[:, np.newaxis]
            self._check_rows(name, values)
            self.features[name] = values

        self.labels = {}
        for name, values in (labels or {}).items():
            values = np.asarray(values)
            if values.ndim != 1:
                raise InvalidCloudError(f"Label '{name}' must be one-dimensional")
            self._check_rows(name, values)
            self.labels[name] = values

    def _check_rows(self, name, values):
        if values.shape[0] != self.points.shape[0]:
            raise InvalidCloudError(
                f"'{name}' has {values.shape[0]} rows, expected {self.points.shape[0]}"
            )

    @classmethod
    def from_o3d(cls, o3d_pcd):
        """
        Build a point cloud from an Open3D PointCloud, keeping its normals
        and colors when present.
        """
        features = {}
        if o3d_pcd.has_normals():
            features['normals'] = np.asarray(o3d_pcd.normals)
        if o3d_pcd.has_colors():
            features['colors'] = np.asarray(o3d_pcd.colors)
        return cls(np.asarray(o3d_pcd.points), features=features)

    def to_o3d(self):
        """Convert a 3D cloud to an Open3D PointCloud object."""
        if self.dim != 3:
            raise InvalidCloudError("Only 3D clouds can be converted to Open3D")
        pcd = o3d.geometry.PointCloud()
        pcd.points = o3d.utility.Vector3dVector(self.points)
        if 'normals' in self.features:
            pcd.normals = o3d.utility.Vector3dVector(self.features['normals'])
        if 'colors' in self.features:
            pcd.colors = o3d.utility.Vector3dVector(self.features['colors'])
        return pcd

    @property
    def dim(self):
        return self.points.shape[1]

    def __len__(self):
        return self.points.shape[0]

    def __repr__(self):
        names = sorted(self.features) + sorted(self.labels)
        return f"PointCloud(n={len(self)}, dim={self.dim}, fields={names})"

    def has_feature(self, name):
        return name in self.features

    def get_feature(self, name):
        """Return feature ``name`` or raise :class:`MissingFeatureError`."""
        try:
            return self.features[name]
        except KeyError:
            raise MissingFeatureError(f"Point cloud has no '{name}' feature") from None

    def with_feature(self, name, values):
        """New cloud sharing this one's data, with ``name`` set to ``values``."""
        features = dict(self.features)
        features[name] = values
        return PointCloud(self.points, features, self.labels)

    def subset(self, indices):
        """
        New cloud holding the selected rows of points, features and labels.

        Args:
            indices: Integer index array or boolean mask
        """
        return PointCloud(
            self.points[indices],
            {name: values[indices] for name, values in self.features.items()},
            {name: values[indices] for name, values in self.labels.items()},
        )

    def copy(self):
        return PointCloud(
            self.points.copy(),
            {name: values.copy() for name, values in self.features.items()},
            {name: values.copy() for name, values in self.labels.items()},
        )

    def transformed(self, transformation):
        """Return a transformed copy; see :meth:`transform_inplace`."""
        out = self.copy()
        out.transform_inplace(transformation)
        return out

    def transform_inplace(self, transformation):
        """
        Apply a homogeneous transformation to positions and normals.

        Args:
            transformation: (D+1)x(D+1) transformation matrix
        """
        transformation = np.asarray(transformation, dtype=float)
        if transformation.shape != (self.dim + 1, self.dim + 1):
            raise InvalidCloudError(
                f"Cannot apply a {transformation.shape} transformation to a "
                f"{self.dim}D cloud"
            )
        self.points = apply_transformation(self.points, transformation)
        if 'normals' in self.features:
            self.features['normals'] = transform_normals(
                self.features['normals'], transformation
            )
        return self

    def centroid(self):
        return self.points.mean(axis=0)
