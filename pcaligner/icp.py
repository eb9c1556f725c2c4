"""Iterative Closest Point (ICP) registration."""

import logging

from .checker import ConvergenceState, TraceEntry
from .config import ICPConfig
from .errors import (DimensionMismatchError, IndexBuildError, InsufficientDataError,
                     InvalidCloudError)
from .transforms import (identity, is_rigid, orthonormalize, translation,
                         validate_transformation)
from .utils import time_function

logger = logging.getLogger(__name__)


class RegistrationResult:
    """
    Outcome of one registration run.

    Unpacks as ``transformation, state, trace``. ``transformation`` maps
    reading coordinates into the reference frame. A ``CANCELLED`` run
    carries the estimate with the lowest residual error reached so far (the
    initial guess if no iteration ran) and is flagged incomplete.
    """

    def __init__(self, transformation, state, trace):
        self.transformation = transformation
        self.state = state
        self.trace = trace

    def __iter__(self):
        return iter((self.transformation, self.state, self.trace))

    def __repr__(self):
        return (f"RegistrationResult(state={self.state.name}, "
                f"iterations={self.iterations})")

    @property
    def iterations(self):
        return len(self.trace)

    @property
    def converged(self):
        return self.state is ConvergenceState.CONVERGED_SUCCESS

    @property
    def complete(self):
        return self.state is not ConvergenceState.CANCELLED

    @property
    def residual_error(self):
        return self.trace[-1].residual_error if self.trace else None

    def transform_reading(self, reading):
        """Return a copy of ``reading`` expressed in the reference frame."""
        return reading.transformed(self.transformation)


class PreparedReference:
    """
    A filtered reference cloud shifted to its centroid, with its index.

    Working around the reference centroid keeps the rotation estimates
    well conditioned when the clouds sit far from the origin.
    """

    def __init__(self, cloud, offset):
        self.cloud = cloud
        self.offset = offset

    @property
    def dim(self):
        return self.cloud.dim


def best_estimate(trace, default):
    """Transformation of the trace entry with the lowest residual error."""
    if not trace:
        return default
    return min(trace, key=lambda entry: entry.residual_error).transformation


def _cancel_requested(cancel):
    if cancel is None:
        return False
    if hasattr(cancel, 'is_set'):
        return cancel.is_set()
    return bool(cancel())


class ICPRegistration:
    """
    ICP registration driven by an :class:`ICPConfig`.

    :meth:`register` is self-contained: every call builds its own stages,
    spatial index and convergence state. :meth:`set_reference` followed by
    :meth:`align` keeps one prepared reference and its index to register
    several readings against it; that mode is meant for a single thread.
    """

    def __init__(self, config=None):
        """
        Initialize ICP registration.

        Args:
            config: ICPConfig, configuration tree (dict) or None for defaults

        Raises:
            ConfigurationError: If the configuration is invalid
        """
        if config is None:
            config = ICPConfig.default()
        elif not isinstance(config, ICPConfig):
            config = ICPConfig(config)
        self.config = config
        self._pipeline = None
        self._reference = None

    @time_function
    def register(self, reading, reference, initial_transform=None, cancel=None):
        """
        Run ICP registration.

        Args:
            reading: PointCloud to move
            reference: PointCloud to align onto
            initial_transform: Optional initial guess, (D+1)x(D+1)
            cancel: Optional threading.Event or callable; checked before
                every iteration

        Returns:
            RegistrationResult

        Raises:
            IndexBuildError: If the reference cloud is empty
            InvalidCloudError: If the reading cloud is empty
            DimensionMismatchError: If the clouds differ in dimension
        """
        pipeline = self.config.build()
        prepared = self._prepare_reference(reference, pipeline)
        return self._run(reading, prepared, pipeline, initial_transform, cancel)

    def set_reference(self, reference):
        """Filter ``reference`` and build its spatial index for :meth:`align`."""
        pipeline = self.config.build()
        self._reference = self._prepare_reference(reference, pipeline)
        self._pipeline = pipeline
        return self

    @property
    def has_reference(self):
        return self._reference is not None

    def align(self, reading, initial_transform=None, cancel=None):
        """Register ``reading`` against the reference given to :meth:`set_reference`."""
        if self._reference is None:
            raise RuntimeError("align() requires set_reference() to be called first")
        return self._run(reading, self._reference, self._pipeline, initial_transform, cancel)

    def _prepare_reference(self, reference, pipeline):
        if len(reference) == 0:
            raise IndexBuildError("Reference cloud is empty")
        filtered = pipeline.reference_filters.apply(reference)
        if len(filtered) == 0:
            raise IndexBuildError("Reference filters removed every point")

        offset = filtered.centroid()
        centered = filtered.transformed(translation(-offset))
        pipeline.matcher.init(centered)
        logger.debug("Reference prepared: %d of %d points kept", len(centered), len(reference))
        return PreparedReference(centered, offset)

    def _run(self, reading, prepared, pipeline, initial_transform, cancel):
        if len(reading) == 0:
            raise InvalidCloudError("Reading cloud is empty")
        if reading.dim != prepared.dim:
            raise DimensionMismatchError(
                f"Reading cloud is {reading.dim}D but reference cloud is {prepared.dim}D"
            )
        dim = reading.dim

        if initial_transform is None:
            initial_transform = identity(dim)
        initial_transform = validate_transformation(initial_transform, dim)
        rigid = pipeline.error_minimizer.rigid
        if rigid and not is_rigid(initial_transform):
            raise ValueError("A rigid error minimizer needs a rigid initial transformation")

        filtered = pipeline.reading_filters.apply(reading)
        if len(filtered) == 0:
            raise InsufficientDataError("Reading filters removed every point")

        to_centered = translation(-prepared.offset)
        from_centered = translation(prepared.offset)
        reference = prepared.cloud

        checker = pipeline.checker.init(initial_transform)
        transformation = to_centered @ initial_transform
        trace = []
        state = ConvergenceState.RUNNING

        while not state.is_terminal:
            if _cancel_requested(cancel):
                state = checker.cancel()
                logger.debug("Registration cancelled after %d iterations", len(trace))
                break

            # Transform reading points
            moved = filtered.transformed(transformation)

            # Find nearest neighbors and weight them
            matches = pipeline.matcher.match(moved)
            matches = pipeline.outlier_filters.apply(moved, reference, matches)

            # Compute transformation update
            step, residual_error = pipeline.error_minimizer.compute(moved, reference, matches)
            transformation = step @ transformation
            if rigid:
                transformation = orthonormalize(transformation)

            estimate = from_centered @ transformation
            state = checker.check(estimate, residual_error)
            trace.append(TraceEntry(
                iteration=checker.iteration,
                residual_error=residual_error,
                rotation_delta=checker.rotation_delta,
                translation_delta=checker.translation_delta,
                n_matches=matches.distances.size,
                n_valid=matches.valid_count(),
                transformation=estimate,
            ))
            logger.debug(
                "Iter %3d: error=%.6g | rotation delta=%.3g | translation delta=%.3g | "
                "valid=%d/%d | state=%s",
                checker.iteration, residual_error, checker.rotation_delta,
                checker.translation_delta, trace[-1].n_valid, trace[-1].n_matches, state.name,
            )

        if state is ConvergenceState.CANCELLED:
            return RegistrationResult(best_estimate(trace, initial_transform), state, trace)
        return RegistrationResult(from_centered @ transformation, state, trace)


def register(reading, reference, config=None, initial_transform=None, cancel=None):
    """
    Register ``reading`` onto ``reference`` in one call.

    Returns:
        RegistrationResult; unpacks as ``transformation, state, trace``
    """
    return ICPRegistration(config).register(
        reading, reference, initial_transform=initial_transform, cancel=cancel
    )

