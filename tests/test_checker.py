# test_checker.py
import numpy as np
import pytest

from pcaligner import ConvergenceState, TransformationChecker
from pcaligner.transforms import rotation_2d, translation
from tests.utils import rigid


def moved(x):
    return translation([x, 0.0])


def test_converges_when_estimate_stops_moving():
    checker = TransformationChecker(epsilon_rotation=1e-3, epsilon_translation=1e-3)
    checker.init(np.eye(3))

    assert checker.check(moved(1.0), 1.0) is ConvergenceState.RUNNING
    assert checker.translation_delta == pytest.approx(1.0)
    assert checker.check(moved(1.0), 0.5) is ConvergenceState.CONVERGED_SUCCESS
    assert checker.iteration == 2


def test_rotation_delta_blocks_convergence():
    checker = TransformationChecker(epsilon_rotation=1e-3, epsilon_translation=1e-3).init(np.eye(3))
    state = checker.check(rigid(rotation_2d(0.01), [0.0, 0.0]), 1.0)
    assert state is ConvergenceState.RUNNING
    assert checker.rotation_delta == pytest.approx(0.01)


def test_consecutive_small_steps_required():
    checker = TransformationChecker(min_consecutive=2).init(np.eye(3))
    assert checker.check(moved(1.0), 1.0) is ConvergenceState.RUNNING
    assert checker.check(moved(1.0), 1.0) is ConvergenceState.RUNNING
    assert checker.check(moved(1.0), 1.0) is ConvergenceState.CONVERGED_SUCCESS


def test_max_iterations():
    checker = TransformationChecker(max_iterations=3).init(np.eye(3))
    states = [checker.check(moved(float(i)), 1.0) for i in range(1, 4)]
    assert states == [ConvergenceState.RUNNING] * 2 + [ConvergenceState.CONVERGED_FAILURE]


def test_success_wins_over_max_iterations():
    checker = TransformationChecker(max_iterations=1).init(np.eye(3))
    assert checker.check(np.eye(3), 0.0) is ConvergenceState.CONVERGED_SUCCESS


def test_error_increase_diverges():
    checker = TransformationChecker(max_error_increase=0.1).init(np.eye(3))
    checker.check(moved(1.0), 1.0)
    assert checker.check(moved(2.0), 1.5) is ConvergenceState.DIVERGED


def test_distance_from_initial_guess_diverges():
    checker = TransformationChecker(max_translation=0.5).init(moved(3.0))
    assert checker.check(moved(4.0), 1.0) is ConvergenceState.DIVERGED


def test_non_finite_residual_diverges():
    checker = TransformationChecker().init(np.eye(3))
    assert checker.check(moved(1.0), np.nan) is ConvergenceState.DIVERGED


def test_terminal_state_is_sticky():
    checker = TransformationChecker(max_iterations=1).init(np.eye(3))
    assert checker.check(moved(5.0), 1.0) is ConvergenceState.CONVERGED_FAILURE
    assert checker.check(moved(5.0), 1.0) is ConvergenceState.CONVERGED_FAILURE
    assert checker.cancel() is ConvergenceState.CONVERGED_FAILURE
    assert checker.iteration == 1

    checker.init(np.eye(3))
    assert checker.state is ConvergenceState.RUNNING
    assert checker.iteration == 0


def test_cancel():
    checker = TransformationChecker().init(np.eye(3))
    assert checker.cancel() is ConvergenceState.CANCELLED
    assert checker.check(moved(1.0), 1.0) is ConvergenceState.CANCELLED


@pytest.mark.parametrize("params", [
    {'max_iterations': 0},
    {'epsilon_rotation': -1.0},
    {'min_consecutive': 0},
    {'max_translation': -0.1},
])
def test_invalid_parameters(params):
    with pytest.raises(ValueError):
        TransformationChecker(**params)
