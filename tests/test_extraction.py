import numpy as np
import pytest

from peakanalyzer.core.context import ProcessingContext
from peakanalyzer.core.curve import CurveType, Spectrum, build_container
from peakanalyzer.core.errors import ConfigValidationError, ExtractionError, UnknownMethodError
from peakanalyzer.extraction import DriftTimeExtractor, TicExtractor, XicExtractor, get_extractor


def test_tic_sums_all_masses(container):
    result = TicExtractor().extract(container, {'ms_level': 1})

    curve = result.curves[0]
    assert curve.curve_type == CurveType.TIC
    assert curve.point_count == 100
    assert np.all(np.diff(curve.x) > 0)
    expected = [s.total_intensity() for s in container.spectra if s.ms_level == 1]
    np.testing.assert_allclose(curve.y, expected)
    assert curve.mz_window is None
    assert result.metadata['spectra_used'] == 100


def test_xic_restricts_mass_window(container):
    result = XicExtractor().extract(container, {'mz_range': (150.0, 250.0), 'ms_level': 1})

    curve = result.curves[0]
    expected = [s.intensity[1] for s in container.spectra if s.ms_level == 1]
    np.testing.assert_allclose(curve.y, expected)
    assert curve.mz_window == (150.0, 250.0)


def test_xic_requires_mz_range(container):
    with pytest.raises(ExtractionError):
        XicExtractor().extract(container, {'ms_level': 1})


def test_drift_time_bins_are_summed(container):
    result = DriftTimeExtractor().extract(container)

    curve = result.curves[0]
    assert curve.x_unit == "ms"
    np.testing.assert_allclose(curve.x, 1.0 + 0.5 * np.arange(10))
    ms1_total = sum(s.total_intensity() for s in container.spectra if s.drift_time is not None)
    assert curve.y.sum() == pytest.approx(ms1_total)


def test_bins_report_rounded_coordinate():
    mz = [100.0]
    spectra = [
        Spectrum(rt=0.1, ms_level=1, mz=mz, intensity=[1.0], drift_time=1.0004, index=0),
        Spectrum(rt=0.2, ms_level=1, mz=mz, intensity=[2.0], drift_time=0.9996, index=1),
        Spectrum(rt=0.3, ms_level=1, mz=mz, intensity=[4.0], drift_time=2.0006, index=2),
    ]
    curve = DriftTimeExtractor().extract(build_container(spectra)).curves[0]

    np.testing.assert_allclose(curve.x, [1.0, 2.001])
    np.testing.assert_allclose(curve.y, [3.0, 4.0])


def test_rt_range_filter(container):
    result = TicExtractor().extract(container, {'rt_range': (2.0, 3.0), 'ms_level': 1})
    assert result.curves[0].x_min >= 2.0
    assert result.curves[0].x_max <= 3.0


def test_extraction_is_deterministic(container):
    context = ProcessingContext({'cache_max_size': 2})
    context.cache_container("run", container)

    first = context.extract_curves("run", CurveType.TIC, {'ms_level': 1}).curves[0]
    second = context.extract_curves("run", CurveType.TIC, {'ms_level': 1}).curves[0]

    np.testing.assert_array_equal(first.x, second.x)
    np.testing.assert_array_equal(first.y, second.y)


def test_drift_time_filter_without_match_is_an_error(container):
    context = ProcessingContext()

    with pytest.raises(ExtractionError) as excinfo:
        context.extract_curves(container, CurveType.DRIFT_TIME, {'rt_range': (50.0, 60.0)})

    assert "no curve data found" in str(excinfo.value)
    assert excinfo.value.details['curve_type'] == CurveType.DRIFT_TIME
    assert excinfo.value.details['filter']['rt_range'] == (50.0, 60.0)


def test_extractor_returns_empty_result_without_match(container):
    result = DriftTimeExtractor().extract(container, {'ms_level': 2})
    assert result.is_empty
    assert result.peaks == []


def test_container_is_not_modified(container):
    before = len(container.curves)
    TicExtractor().extract(container)
    assert len(container.curves) == before


def test_unknown_extractor():
    with pytest.raises(UnknownMethodError) as excinfo:
        get_extractor("bpc")
    assert excinfo.value.component == "Extractor"


def test_invalid_filter_is_rejected(container):
    with pytest.raises(ConfigValidationError):
        TicExtractor().extract(container, {'rt_range': (5.0, 1.0)})
