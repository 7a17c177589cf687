import logging

import numpy as np
import pytest

from conftest import make_curve
from peakanalyzer.core.curve import Container, Curve, Peak, Spectrum, build_container
from peakanalyzer.core.errors import UnknownMethodError
from peakanalyzer.core.log import setup_logging


def test_curve_arrays_are_read_only(single_peak_curve):
    with pytest.raises(ValueError):
        single_peak_curve.y[0] = 1.0


def test_curve_length_mismatch():
    with pytest.raises(ValueError):
        Curve(curve_id="c", curve_type="tic", x=[0.0, 1.0], y=[1.0])


def test_empty_curve_ranges():
    curve = make_curve([], [])
    assert curve.is_empty
    assert np.isnan(curve.x_min)
    assert curve.total_area() == 0.0


def test_curve_dict_round_trip(single_peak_curve):
    restored = Curve.from_dict(single_peak_curve.to_dict())
    assert restored.curve_id == single_peak_curve.curve_id
    np.testing.assert_array_equal(restored.y, single_peak_curve.y)


def test_peak_updates_are_new_values():
    peak = Peak(peak_id="p", curve_id="c", center=1.0, amplitude=2.0, fwhm=0.5, metadata={'confidence': 0.9})
    changed = peak.with_metadata(asymmetry=1.3).updated(area=4.0)

    assert peak.area == 0.0
    assert 'asymmetry' not in peak.metadata
    assert changed.asymmetry == pytest.approx(1.3)
    assert changed.confidence == pytest.approx(0.9)


def test_spectrum_intensity_window():
    spectrum = Spectrum(rt=1.0, ms_level=1, mz=[100.0, 200.0, 300.0], intensity=[1.0, 2.0, 4.0])
    assert spectrum.total_intensity() == 7.0
    assert spectrum.intensity_in_range((150.0, 300.0)) == 6.0


def test_build_container_without_spectra():
    container = build_container([], source="empty.tsv")
    assert container.metadata == {'file_path': 'empty.tsv', 'spectrum_count': 0}


def test_container_copy_shares_records(container, single_peak_curve):
    copy = container.with_curves([single_peak_curve])
    assert container.curves == []
    assert copy.get_curve(single_peak_curve.curve_id) is single_peak_curve
    assert copy.spectra[0] is container.spectra[0]
    assert isinstance(copy, Container)


def test_error_carries_details():
    error = UnknownMethodError('foo', 'PeakDetector', ['simple', 'cwt'])
    assert error.to_dict()['details'] == {'method': 'foo', 'component': 'PeakDetector',
                                          'available': ['cwt', 'simple']}
    assert "foo" in str(error)


def test_setup_logging_is_idempotent():
    logger = setup_logging('DEBUG')
    handlers = len(logger.handlers)
    setup_logging('info')
    assert len(logger.handlers) == handlers
    assert logger.level == logging.INFO
