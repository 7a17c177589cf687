"""
共享的合成数据夹具
"""

import numpy as np
import pandas as pd
import pytest

from peakanalyzer.core.curve import Curve, CurveType, Spectrum, build_container

SIGMA_TO_FWHM = 2.0 * np.sqrt(2.0 * np.log(2.0))


def gaussian(x, amplitude, center, fwhm):
    sigma = fwhm / SIGMA_TO_FWHM
    return amplitude * np.exp(-0.5 * ((x - center) / sigma) ** 2)


def make_curve(x, y, curve_type=CurveType.TIC, curve_id="test_curve"):
    return Curve(curve_id=curve_id, curve_type=curve_type, x=x, y=y)


@pytest.fixture
def single_peak_curve():
    x = np.linspace(0, 10, 1001)
    y = gaussian(x, 1000.0, 5.0, 0.5) + 10.0
    return make_curve(x, y)


@pytest.fixture
def two_separated_peaks_curve():
    x = np.linspace(0, 10, 1001)
    y = gaussian(x, 800.0, 3.0, 0.4) + gaussian(x, 500.0, 7.0, 0.4)
    return make_curve(x, y)


@pytest.fixture
def overlapping_curve():
    """两个等高高斯峰，中心相距0.2，FWHM 0.3"""
    x = np.linspace(0, 10, 2001)
    y = gaussian(x, 100.0, 4.9, 0.3) + gaussian(x, 100.0, 5.1, 0.3)
    return make_curve(x, y)


def with_noise(y, sigma, seed=0):
    rng = np.random.default_rng(seed)
    return y + rng.normal(0.0, sigma, len(y))


def noisy_single_peak(seed=0):
    """单峰加白噪声：A=1000, FWHM 0.5, 偏移 10, 噪声 σ=10（信噪比约100）"""
    x = np.linspace(0, 10, 1001)
    y = with_noise(gaussian(x, 1000.0, 5.0, 0.5) + 10.0, 10.0, seed)
    return make_curve(x, y, curve_id=f"noisy_{seed}")


@pytest.fixture
def noisy_single_peak_curve():
    return noisy_single_peak(seed=0)


@pytest.fixture
def noisy_two_peaks_curve():
    x = np.linspace(0, 10, 1001)
    y = with_noise(gaussian(x, 800.0, 3.0, 0.4) + gaussian(x, 500.0, 7.0, 0.4), 5.0)
    return make_curve(x, y)


@pytest.fixture
def noisy_overlapping_curve():
    """overlapping_curve 加 σ=1 的白噪声"""
    x = np.linspace(0, 10, 2001)
    y = with_noise(gaussian(x, 100.0, 4.9, 0.3) + gaussian(x, 100.0, 5.1, 0.3), 1.0)
    return make_curve(x, y)


@pytest.fixture
def flat_curve():
    x = np.linspace(0, 10, 501)
    return make_curve(x, np.full_like(x, 42.0))


@pytest.fixture
def baseline_curve():
    """倾斜基线上的单峰"""
    x = np.linspace(0, 20, 801)
    y = gaussian(x, 500.0, 10.0, 1.0) + 20.0 + 3.0 * x
    return make_curve(x, y)


def _spectra():
    """
    200 张谱图：rt 0~9.95，奇数扫描为 MS2，
    MS1 谱图带漂移时间（10 个取值循环），m/z 100/200/300 三个离子
    """
    spectra = []
    mz = np.array([100.0, 200.0, 300.0])
    for i in range(200):
        rt = i * 0.05
        ms_level = 2 if i % 2 else 1
        scale = float(gaussian(rt, 1000.0, 5.0, 1.0)) + 1.0
        intensity = np.array([scale, 2.0 * scale, 0.5])
        drift_time = 1.0 + 0.5 * ((i // 2) % 10) if ms_level == 1 else None
        spectra.append(Spectrum(rt=rt, ms_level=ms_level, mz=mz, intensity=intensity,
                                drift_time=drift_time, index=i))
    return spectra


@pytest.fixture
def container():
    return build_container(_spectra(), source="synthetic.tsv")


@pytest.fixture
def table_file(tmp_path):
    """与 container 夹具相同数据的长格式TSV文件"""
    rows = []
    for i, spectrum in enumerate(_spectra()):
        for mz, intensity in zip(spectrum.mz, spectrum.intensity):
            rows.append({
                'scan': i,
                'rt': spectrum.rt,
                'ms_level': spectrum.ms_level,
                'mz': mz,
                'intensity': intensity,
                'drift_time': spectrum.drift_time,
            })
    path = tmp_path / "run01.tsv"
    pd.DataFrame(rows).to_csv(path, sep='\t', index=False)
    return path
