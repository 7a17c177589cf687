import numpy as np
import pytest

from conftest import make_curve
from peakanalyzer.core.curve import CurveType
from peakanalyzer.core.errors import ConfigValidationError, ProcessingError, UnknownMethodError
from peakanalyzer.peak_analysis import BaselineCorrector

METHODS = ['linear', 'polynomial', 'moving_average', 'asymmetric_least_squares']


@pytest.mark.parametrize('method', METHODS)
def test_corrected_plus_baseline_restores_original(baseline_curve, method):
    result = BaselineCorrector().correct(baseline_curve, method)

    restored = result.corrected_curve.y + result.baseline_curve.y
    assert np.max(np.abs(restored - baseline_curve.y)) < 1e-6
    assert result.baseline_curve.curve_type == CurveType.BASELINE
    assert result.corrected_curve.curve_type == CurveType.CORRECTED
    assert result.diagnostics['method'] == method


def test_als_removes_sloped_background(baseline_curve):
    result = BaselineCorrector().correct(baseline_curve, params={'lam': 1e6, 'p': 0.001})

    corrected = result.corrected_curve
    far = (corrected.x < 5.0) | (corrected.x > 15.0)
    # 远离峰的区域接近零，峰高基本保留
    assert np.mean(np.abs(corrected.y[far])) < 25.0
    assert corrected.y_max > 400.0


def test_als_single_iteration_still_returns_pair(baseline_curve):
    result = BaselineCorrector().correct(baseline_curve, 'asymmetric_least_squares', {'max_iterations': 1})

    assert result.diagnostics['iterations'] == 1
    assert result.diagnostics['converged'] is False
    assert result.baseline_curve.point_count == baseline_curve.point_count
    assert np.all(np.isfinite(result.baseline_curve.y))
    restored = result.corrected_curve.y + result.baseline_curve.y
    assert np.max(np.abs(restored - baseline_curve.y)) < 1e-6


def test_linear_baseline_on_pure_line():
    x = np.linspace(0, 10, 101)
    curve = make_curve(x, 2.0 * x + 5.0)
    result = BaselineCorrector().correct(curve, 'linear')
    np.testing.assert_allclose(result.corrected_curve.y, 0.0, atol=1e-9)


def test_moving_average_of_constant_is_constant(flat_curve):
    result = BaselineCorrector().correct(flat_curve, 'moving_average', {'window_size': 11})
    np.testing.assert_allclose(result.baseline_curve.y, 42.0)


def test_short_curve_gets_constant_baseline():
    curve = make_curve([0.0, 1.0], [3.0, 5.0])
    result = BaselineCorrector().correct(curve, 'polynomial')
    np.testing.assert_allclose(result.baseline_curve.y, [3.0, 3.0])


def test_derived_curves_reference_source(baseline_curve):
    result = BaselineCorrector().correct(baseline_curve, 'linear')
    assert result.corrected_curve.metadata['source_curve_id'] == baseline_curve.curve_id
    assert result.corrected_curve.metadata['baseline_curve_id'] == result.baseline_curve.curve_id


def test_input_curve_is_unchanged(baseline_curve):
    original = baseline_curve.y.copy()
    BaselineCorrector().correct(baseline_curve)
    np.testing.assert_array_equal(baseline_curve.y, original)


def test_unknown_method():
    curve = make_curve([0.0, 1.0, 2.0], [1.0, 2.0, 1.0])
    with pytest.raises(UnknownMethodError) as excinfo:
        BaselineCorrector().correct(curve, 'rolling_ball')
    assert excinfo.value.method == 'rolling_ball'


def test_empty_curve():
    with pytest.raises(ProcessingError):
        BaselineCorrector().correct(make_curve([], []), 'linear')


def test_invalid_parameters():
    curve = make_curve([0.0, 1.0, 2.0], [1.0, 2.0, 1.0])
    with pytest.raises(ConfigValidationError):
        BaselineCorrector().correct(curve, 'asymmetric_least_squares', {'p': 1.5})
