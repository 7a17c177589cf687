import numpy as np
import pytest

from peakanalyzer.core.errors import FittingNonConvergence, UnknownMethodError
from peakanalyzer.peak_analysis.parameter_optimizer import (
    clip_into_bounds,
    get_available_optimizers,
    get_optimizer,
)
from peakanalyzer.peak_analysis.peak_shapes import gaussian


@pytest.fixture
def gaussian_data():
    x = np.linspace(0, 4, 201)
    y = gaussian(x, 50.0, 2.0, 0.3)
    return x, y


@pytest.mark.parametrize('name', get_available_optimizers())
def test_optimizers_recover_gaussian(gaussian_data, name):
    x, y = gaussian_data
    params = get_optimizer(name).optimize(
        gaussian, x, y, [40.0, 1.8, 0.4], ([0.0, 0.0, 1e-3], [100.0, 4.0, 4.0])
    )

    amplitude, center, sigma = params
    assert center == pytest.approx(2.0, abs=0.02)
    assert amplitude == pytest.approx(50.0, rel=0.05)
    assert sigma == pytest.approx(0.3, rel=0.05)


def test_too_few_points():
    x = np.array([0.0, 1.0])
    with pytest.raises(FittingNonConvergence):
        get_optimizer('levenberg_marquardt').optimize(
            gaussian, x, x, [1.0, 0.5, 0.1], ([0, 0, 0.01], [2, 1, 1])
        )


def test_initial_values_are_clipped_into_bounds():
    clipped = clip_into_bounds([-5.0, 0.5, 10.0], ([0.0, 0.0, 0.0], [1.0, 1.0, 1.0]))
    assert np.all(clipped > 0.0)
    assert np.all(clipped < 1.0)
    assert clipped[1] == pytest.approx(0.5)


def test_simulated_annealing_is_reproducible(gaussian_data):
    x, y = gaussian_data
    bounds = ([0.0, 0.0, 1e-3], [100.0, 4.0, 4.0])
    first = get_optimizer('simulated_annealing').optimize(gaussian, x, y, [40.0, 1.8, 0.4], bounds)
    second = get_optimizer('simulated_annealing').optimize(gaussian, x, y, [40.0, 1.8, 0.4], bounds)
    np.testing.assert_array_equal(first, second)


def test_unknown_optimizer():
    with pytest.raises(UnknownMethodError) as excinfo:
        get_optimizer('newton')
    assert excinfo.value.component == 'ParameterOptimizer'
