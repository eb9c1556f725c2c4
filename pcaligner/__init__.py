"""
pcaligner - Point Cloud Registration using Iterative Closest Point (ICP)

A configurable point cloud registration library featuring:
- KD-Tree with exact and approximate k-nearest neighbor search
- Data filters for sampling, surface normals and surface reduction
- Outlier filters and robust weights for noisy correspondences
- Point-to-point, similarity and point-to-plane error minimizers
- Convergence checking with a per-iteration trace
"""

from .checker import ConvergenceState, TraceEntry, TransformationChecker
from .config import ICPConfig
from .errors import (ConfigurationError, DimensionMismatchError, FilterError,
                     IndexBuildError, InsufficientDataError, InvalidCloudError,
                     MissingFeatureError, NumericalInstabilityError, PcalignerError)
from .icp import ICPRegistration, RegistrationResult, register
from .kdtree import BruteForceIndex, KDTree, build_index
from .matcher import Matches
from .point_cloud import PointCloud
from .visualization import plot_convergence

__version__ = "1.0.0"
__all__ = [
    "ICPRegistration", "RegistrationResult", "register", "ICPConfig",
    "PointCloud", "Matches", "KDTree", "BruteForceIndex", "build_index",
    "ConvergenceState", "TraceEntry", "TransformationChecker",
    "PcalignerError", "ConfigurationError", "IndexBuildError", "FilterError",
    "MissingFeatureError", "InsufficientDataError", "NumericalInstabilityError",
    "InvalidCloudError", "DimensionMismatchError", "plot_convergence",
]
