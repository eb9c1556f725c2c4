"""Exceptions raised by the registration pipeline."""


class PcalignerError(Exception):
    """Base class for every error raised by pcaligner."""


class ConfigurationError(PcalignerError, ValueError):
    """Unknown stage variant or invalid parameter in a configuration."""


class IndexBuildError(PcalignerError, IndexError):
    """A spatial index cannot be built, e.g. from an empty reference cloud."""


class FilterError(PcalignerError):
    """A data filter cannot be applied to its input cloud."""


class MissingFeatureError(FilterError):
    """A required per-point feature (normals, densities, ...) is absent."""


class InsufficientDataError(PcalignerError):
    """Too few valid correspondences to solve for a transformation."""


class NumericalInstabilityError(PcalignerError):
    """The error minimization problem is ill-conditioned."""


class InvalidCloudError(PcalignerError, ValueError):
    """A point cloud is structurally unusable (empty, wrong shape)."""


class DimensionMismatchError(InvalidCloudError):
    """Reading and reference clouds do not share the same dimension."""
