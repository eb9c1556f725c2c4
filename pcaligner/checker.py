"""Convergence checking for ICP iterations."""

from collections import namedtuple
from enum import Enum

import numpy as np

from .transforms import rotation_angle


class ConvergenceState(Enum):
    RUNNING = 'running'
    CONVERGED_SUCCESS = 'converged_success'
    # Maximum number of iterations reached
    CONVERGED_FAILURE = 'converged_failure'
    DIVERGED = 'diverged'
    # Stopped on request between two iterations
    CANCELLED = 'cancelled'

    @property
    def is_terminal(self):
        return self is not ConvergenceState.RUNNING


TraceEntry = namedtuple('TraceEntry', [
    'iteration', 'residual_error', 'rotation_delta', 'translation_delta',
    'n_matches', 'n_valid', 'transformation',
])


def _deltas(current, previous):
    """Rotation angle and translation distance between two estimates."""
    dim = current.shape[0] - 1
    relative = current[:dim, :dim] @ np.linalg.inv(previous[:dim, :dim])
    relative_transform = np.eye(dim + 1)
    relative_transform[:dim, :dim] = relative
    translation_delta = np.linalg.norm(current[:dim, dim] - previous[:dim, dim])
    return rotation_angle(relative_transform), float(translation_delta)


class TransformationChecker:
    """
    Decides after every iteration whether ICP should continue.

    Starting from ``RUNNING``, each :meth:`check` moves to:

    - ``DIVERGED`` when the residual error grew by more than
      ``max_error_increase``, or the estimate moved farther than
      ``max_rotation`` / ``max_translation`` from the initial guess;
    - ``CONVERGED_SUCCESS`` when the change between two consecutive
      estimates stayed below both epsilons for ``min_consecutive``
      iterations in a row;
    - ``CONVERGED_FAILURE`` when ``max_iterations`` iterations ran.

    Terminal states are final until :meth:`init` starts a new run.
    """

    def __init__(self, max_iterations=40, epsilon_rotation=1e-3, epsilon_translation=1e-3,
                 min_consecutive=1, max_error_increase=None, max_rotation=None,
                 max_translation=None):
        if int(max_iterations) < 1:
            raise ValueError("max_iterations must be at least 1")
        if epsilon_rotation < 0 or epsilon_translation < 0:
            raise ValueError("epsilons must be non-negative")
        if int(min_consecutive) < 1:
            raise ValueError("min_consecutive must be at least 1")
        for name, value in (('max_error_increase', max_error_increase),
                            ('max_rotation', max_rotation),
                            ('max_translation', max_translation)):
            if value is not None and value < 0:
                raise ValueError(f"{name} must be non-negative")

        self.max_iterations = int(max_iterations)
        self.epsilon_rotation = float(epsilon_rotation)
        self.epsilon_translation = float(epsilon_translation)
        self.min_consecutive = int(min_consecutive)
        self.max_error_increase = max_error_increase
        self.max_rotation = max_rotation
        self.max_translation = max_translation
        self.init(np.eye(4))

    def init(self, initial_transformation):
        """Reset the state machine for a run starting at ``initial_transformation``."""
        self.initial = np.array(initial_transformation, dtype=float)
        self.previous = self.initial
        self.previous_error = None
        self.iteration = 0
        self.streak = 0
        self.rotation_delta = np.inf
        self.translation_delta = np.inf
        self.state = ConvergenceState.RUNNING
        return self

    def cancel(self):
        if not self.state.is_terminal:
            self.state = ConvergenceState.CANCELLED
        return self.state

    def check(self, transformation, residual_error):
        """
        Record one finished iteration.

        Args:
            transformation: Running estimate after this iteration
            residual_error: Residual reported by the error minimizer

        Returns:
            The new ConvergenceState
        """
        if self.state.is_terminal:
            return self.state

        self.iteration += 1
        self.rotation_delta, self.translation_delta = _deltas(transformation, self.previous)
        self.previous = np.array(transformation, dtype=float)

        error_increase = (None if self.previous_error is None
                          else residual_error - self.previous_error)
        self.previous_error = residual_error

        if self._diverged(transformation, residual_error, error_increase):
            self.state = ConvergenceState.DIVERGED
            return self.state

        if (self.rotation_delta < self.epsilon_rotation
                and self.translation_delta < self.epsilon_translation):
            self.streak += 1
        else:
            self.streak = 0

        if self.streak >= self.min_consecutive:
            self.state = ConvergenceState.CONVERGED_SUCCESS
        elif self.iteration >= self.max_iterations:
            self.state = ConvergenceState.CONVERGED_FAILURE
        return self.state

    def _diverged(self, transformation, residual_error, error_increase):
        if not (np.isfinite(residual_error) and np.all(np.isfinite(transformation))):
            return True
        if (self.max_error_increase is not None and error_increase is not None
                and error_increase > self.max_error_increase):
            return True
        if self.max_rotation is None and self.max_translation is None:
            return False
        rotation, translation = _deltas(transformation, self.initial)
        if self.max_rotation is not None and rotation > self.max_rotation:
            return True
        return self.max_translation is not None and translation > self.max_translation
