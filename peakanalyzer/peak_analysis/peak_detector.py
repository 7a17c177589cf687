"""
峰检测模块 - 使用scipy进行峰检测
"""

import logging
from typing import Any, Dict, List, Optional, Tuple

import numpy as np
from scipy import signal

from ..core.config import DetectionConfig, validate_config
from ..core.curve import Curve, Peak, new_id
from ..core.errors import UnknownMethodError
from .peak_shapes import half_max_metrics

logger = logging.getLogger(__name__)

# 各检测方法的置信度
DETECTION_CONFIDENCE = {
    'simple': 0.8,
    'peak_finder': 0.9,
    'cwt': 0.95,
}

# 肩峰的二阶导数极值至少为区域最大值的比例
SHOULDER_MIN_RATIO = 0.1

# 选定窗口时区域曲率峰值须达到曲率噪声阈值的倍数
SHOULDER_WINDOW_MARGIN = 2.0


def estimate_noise(y: np.ndarray) -> float:
    """基于一阶差分中位绝对偏差的噪声估计"""
    if len(y) < 3:
        return 0.0
    diff = np.diff(y)
    mad = np.median(np.abs(diff - np.median(diff)))
    return float(mad / (0.6745 * np.sqrt(2.0)))


def estimate_baseline_level(y: np.ndarray) -> float:
    return float(np.percentile(y, 10)) if len(y) else 0.0


class PeakDetector:
    """峰检测器 - 提供多种峰检测算法"""

    def __init__(self, method: str = 'peak_finder'):
        self.detection_methods = {
            'simple': self._detect_peaks_simple,
            'peak_finder': self._detect_peaks_scipy,
            'cwt': self._detect_peaks_cwt,
        }
        if method not in self.detection_methods:
            raise UnknownMethodError(method, "PeakDetector", list(self.detection_methods))
        self.method = method

    def detect_peaks(self, curve: Curve, config: Any = None) -> List[Peak]:
        """
        检测候选峰

        参数:
        - curve: 输入曲线
        - config: DetectionConfig 或等价字典；其中的 method 被构造时的方法覆盖

        返回:
        - 候选峰列表（按中心排序），没有峰时为空列表
        """
        config = validate_config('detection', config)
        if curve.point_count < 3:
            return []

        x = np.asarray(curve.x, dtype=float)
        y = np.asarray(curve.y, dtype=float)

        base = estimate_baseline_level(y)
        span = float(np.max(y)) - base
        if span <= 0:
            logger.debug("曲线 %s 无信号跨度，跳过检测", curve.curve_id)
            return []

        noise = estimate_noise(y)
        threshold = max(base + config.threshold_multiplier * noise, base + config.sensitivity * span)

        indices = self.detection_methods[self.method](x, y, threshold, noise, config)
        peaks = self._create_peaks_from_indices(curve, x, y, indices, noise, base, config)

        if config.resolve_shoulders:
            peaks = self._resolve_shoulders(curve, x, y, peaks, noise, config)

        peaks.sort(key=lambda p: p.center)
        logger.debug("曲线 %s 检测到 %d 个候选峰 (方法=%s, 阈值=%.4g)",
                     curve.curve_id, len(peaks), self.method, threshold)
        return peaks

    def _detect_peaks_simple(self, x: np.ndarray, y: np.ndarray, threshold: float,
                             noise: float, config: DetectionConfig) -> List[int]:
        """阈值以上每个连续区域取最高点"""
        above = y > threshold
        indices = []
        i = 0
        while i < len(above):
            if above[i]:
                j = i
                while j < len(above) and above[j]:
                    j += 1
                region_max = i + int(np.argmax(y[i:j]))
                # 区域贴边且单调时不是局部极大
                if 0 < region_max < len(y) - 1:
                    indices.append(region_max)
                i = j
            else:
                i += 1
        return indices

    def _detect_peaks_scipy(self, x: np.ndarray, y: np.ndarray, threshold: float,
                            noise: float, config: DetectionConfig) -> List[int]:
        """使用scipy.signal.find_peaks检测峰"""
        # 突出度是两点之差，其噪声为 sqrt(2) 倍单点噪声
        prominence = max(config.threshold_multiplier * noise * np.sqrt(2.0), (np.max(y) - np.min(y)) * 0.01)
        peaks_idx, _ = signal.find_peaks(y, height=threshold, prominence=prominence)
        return [int(i) for i in peaks_idx]

    def _detect_peaks_cwt(self, x: np.ndarray, y: np.ndarray, threshold: float,
                          noise: float, config: DetectionConfig) -> List[int]:
        """使用连续小波变换检测峰"""
        widths = np.arange(config.cwt_min_width, config.cwt_max_width + 1)
        peaks_idx = signal.find_peaks_cwt(y, widths)
        # CWT 给出的位置可能偏离局部极大，在邻域内校正
        refined = []
        radius = max(1, config.cwt_min_width)
        for idx in peaks_idx:
            lo, hi = max(0, idx - radius), min(len(y), idx + radius + 1)
            best = lo + int(np.argmax(y[lo:hi]))
            if y[best] > threshold and best not in refined:
                refined.append(best)
        return refined

    def _create_peaks_from_indices(self, curve: Curve, x: np.ndarray, y: np.ndarray,
                                   indices: List[int], noise: float, base: float,
                                   config: DetectionConfig) -> List[Peak]:
        """从峰索引创建候选Peak对象，并按宽度约束过滤"""
        peaks = []
        for idx in indices:
            left_hw, right_hw = half_max_metrics(x, y, idx)
            fwhm = left_hw + right_hw
            if fwhm <= 0:
                fwhm = self._sample_spacing(x)
            if fwhm < config.min_peak_width or fwhm > config.max_peak_width:
                logger.debug("候选峰 x=%.4f 宽度 %.4g 超出限制，丢弃", x[idx], fwhm)
                continue

            amplitude = float(y[idx])
            peaks.append(Peak(
                peak_id=new_id("peak"),
                curve_id=curve.curve_id,
                center=float(x[idx]),
                amplitude=amplitude,
                fwhm=float(fwhm),
                start=float(x[idx] - left_hw),
                end=float(x[idx] + right_hw),
                metadata={
                    'detection_method': self.method,
                    'confidence': DETECTION_CONFIDENCE[self.method],
                    # 无噪声时信噪比没有定义
                    'signal_to_noise': (amplitude - base) / noise if noise > 0 else None,
                    'left_hwhm': left_hw,
                    'right_hwhm': right_hw,
                    'asymmetry': right_hw / left_hw if left_hw > 0 else 1.0,
                    'detected_center': float(x[idx]),
                    'shoulder': False,
                },
            ))
        return peaks

    def _resolve_shoulders(self, curve: Curve, x: np.ndarray, y: np.ndarray, peaks: List[Peak],
                           noise: float, config: DetectionConfig) -> List[Peak]:
        """
        在每个候选峰的半高区域内寻找二阶导数极小值；找到两个及以上显著的
        极小值时用这些肩峰替换原候选峰

        二阶导数由 Savitzky-Golay 滤波给出。窗口从5点起逐级加宽，上限为候选峰
        FWHM 一半对应的点数；曲率噪声由信号噪声经滤波系数传播得到，
        只有超过 threshold_multiplier 倍曲率噪声的极值才算肩峰。
        """
        dx = self._sample_spacing(x)
        curvatures: Dict[int, np.ndarray] = {}

        resolved: List[Peak] = []
        for peak in peaks:
            lo = int(np.searchsorted(x, peak.start, side='left'))
            hi = int(np.searchsorted(x, peak.end, side='right'))
            found = self._significant_curvature(y, lo, hi, peak.fwhm, dx, noise, config, curvatures)
            if found is None:
                resolved.append(peak)
                continue
            region, floor, window = found

            # 肩峰间距至少为复合峰宽的四分之一
            min_distance = max(1, window // 2, int(len(region) / 4))
            idx, _ = signal.find_peaks(region,
                                       height=max(np.max(region) * SHOULDER_MIN_RATIO, floor),
                                       prominence=floor,
                                       distance=min_distance)
            if len(idx) < 2:
                resolved.append(peak)
                continue

            share_fwhm = max(peak.fwhm / len(idx), dx)
            for i in idx:
                pos = lo + int(i)
                resolved.append(peak.updated(
                    peak_id=new_id("peak"),
                    center=float(x[pos]),
                    amplitude=float(y[pos]),
                    fwhm=share_fwhm,
                    start=float(x[pos] - share_fwhm / 2),
                    end=float(x[pos] + share_fwhm / 2),
                ).with_metadata(
                    shoulder=True,
                    detected_center=float(x[pos]),
                    asymmetry=1.0,
                    left_hwhm=share_fwhm / 2,
                    right_hwhm=share_fwhm / 2,
                    parent_center=peak.center,
                    shoulder_window=window,
                ))
            logger.debug("x=%.4f 处的候选峰拆分为 %d 个肩峰 (窗口=%d)", peak.center, len(idx), window)
        return resolved

    def _significant_curvature(self, y: np.ndarray, lo: int, hi: int, fwhm: float, dx: float,
                               noise: float, config: DetectionConfig,
                               curvatures: Dict[int, np.ndarray]) -> Optional[Tuple[np.ndarray, float, int]]:
        """
        选取区域曲率峰值显著高于噪声阈值的最小窗口

        返回:
        - (区域内的负二阶导数, 曲率噪声阈值, 窗口点数)；任何窗口下都不显著时为 None
        """
        for window in self._savgol_windows(fwhm, dx, len(y)):
            if window not in curvatures:
                curvatures[window] = -signal.savgol_filter(y, window, polyorder=2, deriv=2)
            region = curvatures[window][lo:hi]
            if len(region) < 3:
                return None
            coeffs = signal.savgol_coeffs(window, polyorder=2, deriv=2)
            floor = config.threshold_multiplier * noise * float(np.sqrt(np.sum(coeffs ** 2)))
            peak_curvature = float(np.max(region))
            if peak_curvature > 0 and peak_curvature > SHOULDER_WINDOW_MARGIN * floor:
                return region, floor, window
        return None

    @staticmethod
    def _sample_spacing(x: np.ndarray) -> float:
        if len(x) < 2:
            return 1.0
        return float(np.median(np.diff(x)))

    @staticmethod
    def _savgol_windows(fwhm: float, dx: float, n_points: int) -> List[int]:
        """候选窗口点数：从5点起逐级加倍至 FWHM/2 对应的点数，均为奇数且小于曲线点数"""
        limit = int(round(fwhm / 2.0 / dx)) if dx > 0 else 0
        if limit % 2 == 0:
            limit += 1
        windows = []
        window = 5
        while window < n_points:
            windows.append(window)
            if window >= limit:
                break
            window = min(2 * window - 1, limit)
        return windows

    def get_available_methods(self) -> List[str]:
        """获取可用的检测方法"""
        return list(self.detection_methods.keys())

    @staticmethod
    def get_method_parameters(method: str) -> Dict[str, Any]:
        """获取方法的参数说明"""
        common = {
            'sensitivity': 'float, 动态阈值占信号跨度比例',
            'threshold_multiplier': 'float, 噪声阈值倍数',
            'min_peak_width': 'float, 最小FWHM',
            'max_peak_width': 'float, 最大FWHM',
        }
        param_info = {
            'simple': dict(common),
            'peak_finder': dict(common),
            'cwt': {**common, 'cwt_min_width': 'int, 最小小波宽度', 'cwt_max_width': 'int, 最大小波宽度'},
        }
        return param_info.get(method, {})
