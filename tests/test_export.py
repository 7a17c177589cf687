import io
import json

import pandas as pd
import pytest

from peakanalyzer.core.errors import UnknownMethodError
from peakanalyzer.export import ExportManager
from peakanalyzer.peak_analysis import PeakAnalyzer


@pytest.fixture
def analyzed(container, two_separated_peaks_curve):
    result = PeakAnalyzer().analyze(two_separated_peaks_curve)
    return container.with_curves([two_separated_peaks_curve]).with_peaks(result.peaks)


def test_curve_tsv_is_long_format(analyzed):
    result = ExportManager().export(analyzed, 'curve_tsv')

    assert result.mime_type == 'text/tab-separated-values'
    assert result.filename == 'synthetic_curve_tsv.tsv'
    df = pd.read_csv(io.BytesIO(result.data), sep='\t')
    assert list(df.columns) == ['curve_id', 'curve_type', 'x', 'y', 'x_unit', 'y_unit']
    assert len(df) == 1001
    assert result.metadata['curve_count'] == 1


def test_curve_tsv_sampling(analyzed):
    result = ExportManager().export(analyzed, 'curve_tsv', {'max_points': 100})
    df = pd.read_csv(io.BytesIO(result.data), sep='\t')
    assert len(df) == 100


def test_peak_tsv(analyzed):
    result = ExportManager().export(analyzed, 'peak_tsv', {'filename': 'run01'})

    assert result.filename == 'run01_peak_tsv.tsv'
    df = pd.read_csv(io.BytesIO(result.data), sep='\t')
    assert list(df['peak_number']) == [1, 2]
    assert df['center'].tolist() == pytest.approx([3.0, 7.0], abs=0.01)
    assert set(df['quality_grade']) <= {'A', 'B', 'C', 'D'}


def test_json_export(analyzed):
    result = ExportManager().export(analyzed, 'json')

    assert result.mime_type == 'application/json'
    payload = json.loads(result.data.decode('utf-8'))
    assert payload['export_info']['peak_count'] == 2
    assert len(payload['curves'][0]['x']) == 1001
    assert payload['metadata']['spectrum_count'] == 200


def test_empty_container_exports(container):
    result = ExportManager().export(container, 'peak_tsv')
    df = pd.read_csv(io.BytesIO(result.data), sep='\t')
    assert len(df) == 0


def test_unknown_format(container):
    with pytest.raises(UnknownMethodError) as excinfo:
        ExportManager().export(container, 'xlsx')
    assert excinfo.value.component == 'Exporter'


def _reject_constant(name):
    raise ValueError(f"非标准JSON常量: {name}")


def test_json_export_is_strict_json(container, single_peak_curve):
    # 无噪声的孤立峰：信噪比和最近邻距离都没有定义
    result = PeakAnalyzer().analyze(single_peak_curve)
    analyzed = container.with_curves([single_peak_curve]).with_peaks(result.peaks)

    data = ExportManager().export(analyzed, 'json').data.decode('utf-8')
    payload = json.loads(data, parse_constant=_reject_constant)

    metadata = payload['peaks'][0]['metadata']
    assert metadata['signal_to_noise'] is None
    assert metadata['min_separation'] is None
    assert metadata['is_resolved'] is True


def test_json_export_replaces_non_finite_values(container, single_peak_curve):
    peak = PeakAnalyzer().analyze(single_peak_curve).peaks[0].with_metadata(
        rmse=float('nan'), limits=[float('-inf'), 1.0])
    analyzed = container.with_curves([single_peak_curve]).with_peaks([peak])

    data = ExportManager().export(analyzed, 'json').data.decode('utf-8')
    metadata = json.loads(data, parse_constant=_reject_constant)['peaks'][0]['metadata']

    assert metadata['rmse'] is None
    assert metadata['limits'] == [None, 1.0]
