"""Outlier filters: weight correspondences for robust estimation in ICP."""

import numpy as np

from .errors import MissingFeatureError


class OutlierFilter:
    """
    Base class of the outlier filters.

    :meth:`compute` returns one weight per correspondence, with the shape of
    ``matches.distances``. Weights are >= 0; 0 excludes the pair from the
    minimization. Correspondences are never dropped.
    """

    name = None

    def compute(self, reading, reference, matches):
        raise NotImplementedError

    def __repr__(self):
        return f"{type(self).__name__}({self.name})"


class NullOutlierFilter(OutlierFilter):
    name = 'null'

    def compute(self, reading, reference, matches):
        return np.ones_like(matches.distances)


class TrimmedDistOutlierFilter(OutlierFilter):
    """
    Keeps only the closest ``ratio`` fraction of correspondences.

    Distances equal to the cut-off are kept as well, so identical inputs
    always produce identical weights.
    """

    name = 'trimmed'

    def __init__(self, ratio=0.85):
        if not 0.0 < ratio <= 1.0:
            raise ValueError("ratio must be in (0, 1]")
        self.ratio = float(ratio)

    def compute(self, reading, reference, matches):
        distances = matches.distances
        if distances.size == 0:
            return np.ones_like(distances)
        flat = distances.ravel()
        kth = max(0, int(np.ceil(self.ratio * flat.shape[0])) - 1)
        limit = np.partition(flat, kth)[kth]
        return (distances <= limit).astype(float)


class MedianDistOutlierFilter(OutlierFilter):
    """Rejects correspondences farther than ``factor`` times the median distance."""

    name = 'median'

    def __init__(self, factor=3.0):
        if factor <= 0:
            raise ValueError("factor must be positive")
        self.factor = float(factor)

    def compute(self, reading, reference, matches):
        distances = matches.distances
        if distances.size == 0:
            return np.ones_like(distances)
        limit = self.factor * np.median(distances)
        return (distances <= limit).astype(float)


class MaxDistOutlierFilter(OutlierFilter):
    """Rejects correspondences farther than a fixed distance."""

    name = 'max_dist'

    def __init__(self, max_dist=1.0):
        if max_dist <= 0:
            raise ValueError("max_dist must be positive")
        self.max_dist = float(max_dist)

    def compute(self, reading, reference, matches):
        return (matches.distances <= self.max_dist).astype(float)


class SurfaceNormalOutlierFilter(OutlierFilter):
    """
    Rejects pairs whose reading and reference normals differ by more than
    ``max_angle`` radians. With ``oriented=False`` the sign of the normals is
    ignored, as PCA normals have no consistent orientation.
    """

    name = 'surface_normal'

    def __init__(self, max_angle=np.pi / 4, oriented=False):
        if not 0.0 <= max_angle <= np.pi:
            raise ValueError("max_angle must be in [0, pi]")
        self.max_angle = float(max_angle)
        self.oriented = bool(oriented)

    def compute(self, reading, reference, matches):
        for side, cloud in (('reading', reading), ('reference', reference)):
            if not cloud.has_feature('normals'):
                raise MissingFeatureError(
                    f"Outlier filter '{self.name}' requires normals on the {side} cloud"
                )
        reading_normals = reading.features['normals'][:, np.newaxis, :]
        reference_normals = reference.features['normals'][matches.ids]
        cosines = np.sum(reading_normals * reference_normals, axis=2)
        if not self.oriented:
            cosines = np.abs(cosines)
        return (cosines >= np.cos(self.max_angle)).astype(float)


class HuberOutlierFilter(OutlierFilter):
    """
    Huber loss weights for robust estimation.

    Good for handling 10-20% outliers. Transitions from quadratic to linear
    penalty at the delta threshold.
    """

    name = 'huber'

    def __init__(self, delta=1.0):
        if delta <= 0:
            raise ValueError("delta must be positive")
        self.delta = float(delta)

    def compute(self, reading, reference, matches):
        residuals = matches.distances
        weights = np.ones_like(residuals)
        outlier_mask = residuals > self.delta
        weights[outlier_mask] = self.delta / residuals[outlier_mask]
        return weights


class TukeyOutlierFilter(OutlierFilter):
    """
    Tukey biweight loss weights for robust estimation.

    Very robust to severe outliers (handles 30-50% outliers). Completely
    rejects correspondences beyond threshold c.
    """

    name = 'tukey'

    def __init__(self, c=4.685):
        if c <= 0:
            raise ValueError("c must be positive")
        self.c = float(c)

    def compute(self, reading, reference, matches):
        normalized = matches.distances / self.c
        weights = np.zeros_like(normalized)
        inlier_mask = normalized <= 1.0
        weights[inlier_mask] = (1 - normalized[inlier_mask] ** 2) ** 2
        return weights


OUTLIER_FILTERS = {
    cls.name: cls for cls in (
        NullOutlierFilter,
        TrimmedDistOutlierFilter,
        MedianDistOutlierFilter,
        MaxDistOutlierFilter,
        SurfaceNormalOutlierFilter,
        HuberOutlierFilter,
        TukeyOutlierFilter,
    )
}


class OutlierFilterChain:
    """Combines several outlier filters by multiplying their weights."""

    def __init__(self, filters=()):
        self.filters = list(filters)

    def compute(self, reading, reference, matches):
        weights = np.ones_like(matches.distances)
        for outlier_filter in self.filters:
            weights = weights * outlier_filter.compute(reading, reference, matches)
        return weights

    def apply(self, reading, reference, matches):
        """Return ``matches`` re-weighted by the chain."""
        return matches.with_weights(self.compute(reading, reference, matches))

    def __len__(self):
        return len(self.filters)
