"""
重叠峰处理 - 把重叠区域的总强度重新分配给各组分

每个处理器对一个重叠簇求出各组分的模型参数，再按各组分在区域内的
模型积分占比分配区域总面积，因此簇内面积之和等于区域积分。
"""

import logging
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np
from scipy import signal
from scipy.integrate import trapezoid

from ..core.config import OverlapConfig
from ..core.curve import Curve, Peak
from ..core.errors import FittingNonConvergence, UnknownMethodError
from .peak_detector import estimate_noise
from .peak_fitter import PeakFitter, calculate_r_squared
from .peak_shapes import SIGMA_TO_FWHM, gaussian, model_area, shape_metrics

logger = logging.getLogger(__name__)

# auto 选择阈值
LIGHT_OVERLAP_RATIO = 0.5
LOW_SNR = 10.0

Component = Tuple[str, List[float]]


def overlap_ratio(first: Peak, second: Peak) -> float:
    """两峰重叠比：max(0, 平均FWHM - 中心距) / 平均FWHM"""
    avg_width = (first.fwhm + second.fwhm) / 2.0
    if avg_width <= 0:
        return 0.0
    distance = abs(first.center - second.center)
    return max(0.0, avg_width - distance) / avg_width


def find_overlap_clusters(peaks: Sequence[Peak], tolerance: float) -> List[List[Peak]]:
    """按重叠比传递聚类；返回按中心排序的簇（包括单峰簇）"""
    ordered = sorted(peaks, key=lambda p: p.center)
    parent = list(range(len(ordered)))

    def find(i):
        while parent[i] != i:
            parent[i] = parent[parent[i]]
            i = parent[i]
        return i

    for i in range(len(ordered)):
        for j in range(i + 1, len(ordered)):
            if overlap_ratio(ordered[i], ordered[j]) > tolerance:
                parent[find(j)] = find(i)

    groups: Dict[int, List[Peak]] = {}
    for i, peak in enumerate(ordered):
        groups.setdefault(find(i), []).append(peak)
    return sorted(groups.values(), key=lambda g: g[0].center)


def max_overlap_ratio(peaks: Sequence[Peak]) -> float:
    best = 0.0
    for i in range(len(peaks)):
        for j in range(i + 1, len(peaks)):
            best = max(best, overlap_ratio(peaks[i], peaks[j]))
    return best


def select_overlap_method(max_ratio: float, snr: float) -> str:
    """auto 模式：按最大重叠比和信噪比选择处理方法"""
    if max_ratio < LIGHT_OVERLAP_RATIO:
        return 'fbf'
    if snr < LOW_SNR:
        return 'extreme_overlap'
    return 'sharpen_cwt'


def _ricker(points: int, width: float) -> np.ndarray:
    """Ricker（墨西哥帽）小波"""
    t = np.arange(points) - (points - 1) / 2.0
    a = 2.0 / (np.sqrt(3.0 * width) * np.pi ** 0.25)
    return a * (1 - (t / width) ** 2) * np.exp(-0.5 * (t / width) ** 2)


def _multi_gaussian(x, *params):
    y = np.zeros_like(x, dtype=float)
    for i in range(0, len(params), 3):
        y = y + gaussian(x, params[i], params[i + 1], params[i + 2])
    return y


class OverlapProcessor:
    """重叠处理器基类"""

    name = ""
    description = ""

    def __init__(self, fitter: Optional[PeakFitter] = None, config: Optional[OverlapConfig] = None):
        self.fitter = fitter or PeakFitter()
        self.config = config or OverlapConfig()

    def process(self, curve: Curve, peaks: List[Peak]) -> List[Peak]:
        """对所有重叠簇进行处理；非重叠峰原样返回"""
        result: List[Peak] = []
        for cluster in find_overlap_clusters(peaks, self.config.overlap_tolerance):
            if len(cluster) < 2:
                result.extend(cluster)
                continue
            result.extend(self.resolve_cluster(curve, cluster))
        return sorted(result, key=lambda p: p.center)

    def resolve_cluster(self, curve: Curve, cluster: List[Peak]) -> List[Peak]:
        """
        分解一个重叠簇

        参数:
        - curve: 原始曲线
        - cluster: 按中心排序的重叠峰

        返回:
        - 标记 overlap_resolved 的新峰列表
        """
        x_r, y_r, region = self._region_data(curve, cluster)
        seeds = self._seeds(x_r, y_r, cluster)

        converged = True
        try:
            components = self._fit_components(x_r, y_r, seeds)
        except FittingNonConvergence as e:
            logger.warning("重叠簇 [%.4f, %.4f] %s 分解未收敛: %s", region[0], region[1], self.name, e)
            converged = False
            components = [('gaussian', [a, c, w / SIGMA_TO_FWHM]) for a, c, w in seeds]

        return self._partition(curve, cluster, components, x_r, y_r, region, converged)

    def _region_data(self, curve: Curve, cluster: List[Peak]) -> Tuple[np.ndarray, np.ndarray, Tuple[float, float]]:
        ext = self.config.region_extension
        lo = max(curve.x_min, min(p.center - ext * p.fwhm for p in cluster))
        hi = min(curve.x_max, max(p.center + ext * p.fwhm for p in cluster))
        mask = (curve.x >= lo) & (curve.x <= hi)
        return np.asarray(curve.x[mask]), np.asarray(curve.y[mask]), (float(lo), float(hi))

    def _seeds(self, x_r: np.ndarray, y_r: np.ndarray, cluster: List[Peak]) -> List[Tuple[float, float, float]]:
        """组分初值 (幅度, 中心, FWHM)；优先使用检测时的位置"""
        seeds = []
        for peak in cluster:
            center = float(peak.metadata.get('detected_center', peak.center))
            fwhm = float(min(peak.fwhm, peak.metadata.get('detected_fwhm', peak.fwhm)))
            amplitude = float(np.interp(center, x_r, y_r)) if len(x_r) else peak.amplitude
            seeds.append((max(amplitude, 0.0) * 0.7, center, max(fwhm, 1e-9)))

        # 中心重合的初值向两侧拉开
        seeds.sort(key=lambda s: s[1])
        for i in range(1, len(seeds)):
            a, c, w = seeds[i]
            if c - seeds[i - 1][1] < w / 8:
                seeds[i] = (a, seeds[i - 1][1] + w / 4, w)
        return seeds

    def _fit_components(self, x_r: np.ndarray, y_r: np.ndarray,
                        seeds: List[Tuple[float, float, float]]) -> List[Component]:
        raise NotImplementedError

    def _joint_gaussian(self, x_r: np.ndarray, y_r: np.ndarray,
                        seeds: List[Tuple[float, float, float]]) -> List[Component]:
        """多高斯联合拟合"""
        lower_1, upper_1 = self.fitter.get_parameter_bounds(x_r, y_r, 'gaussian')
        p0, lower, upper = [], [], []
        for a, c, w in seeds:
            p0.extend([a, c, w / SIGMA_TO_FWHM])
            lower.extend(lower_1)
            upper.extend(upper_1)

        popt = self.fitter.optimizer.optimize(
            _multi_gaussian, x_r, y_r, p0, (lower, upper), self.fitter.max_iterations
        )
        return [('gaussian', [float(v) for v in popt[i:i + 3]]) for i in range(0, len(popt), 3)]

    def _partition(self, curve: Curve, cluster: List[Peak], components: List[Component],
                   x_r: np.ndarray, y_r: np.ndarray, region: Tuple[float, float],
                   converged: bool) -> List[Peak]:
        """按组分在区域内的积分占比分配区域面积"""
        region_integral = float(trapezoid(y_r, x_r)) if len(x_r) > 1 else 0.0
        profiles = [self.fitter.evaluate(model, params, x_r) for model, params in components]
        integrals = np.array([float(trapezoid(p, x_r)) if len(x_r) > 1 else 0.0 for p in profiles])
        if np.sum(integrals) > 0:
            shares = integrals / np.sum(integrals)
        else:
            shares = np.full(len(components), 1.0 / len(components))

        total = np.sum(profiles, axis=0) if profiles else np.zeros_like(y_r)
        joint_r2 = calculate_r_squared(y_r, total) if len(y_r) else 0.0

        order = sorted(range(len(components)), key=lambda i: components[i][1][1])
        resolved = []
        for peak, i in zip(sorted(cluster, key=lambda p: p.center), order):
            model, params = components[i]
            shape = shape_metrics(model, params)
            center = float(np.clip(shape['center'], curve.x_min, curve.x_max))
            fwhm = shape['fwhm'] if shape['fwhm'] > 0 else peak.fwhm
            metadata = {
                'overlap_method': self.name,
                'overlap_region': region,
                'region_integral': region_integral,
                'cluster_size': len(cluster),
                'overlap_converged': converged,
                'component_model': model,
                'component_parameters': list(params),
                'component_area': model_area(model, params),
                'asymmetry': shape['asymmetry'],
                'rsquared_raw': joint_r2,
            }
            if not converged:
                metadata['fit_converged'] = False
            resolved.append(peak.updated(
                center=center,
                amplitude=shape['amplitude'],
                fwhm=fwhm,
                area=float(region_integral * shares[i]),
                rsquared=float(min(max(joint_r2, 0.0), 1.0)),
                start=max(curve.x_min, shape['start']),
                end=min(curve.x_max, shape['end']),
                overlap_resolved=True,
            ).with_metadata(**metadata))

        logger.debug("%s 分解 %d 个重叠峰, 区域积分 %.4g", self.name, len(cluster), region_integral)
        return resolved


class NoOverlapProcessor(OverlapProcessor):
    """不处理重叠"""

    name = "none"
    description = "不进行重叠峰处理"

    def process(self, curve: Curve, peaks: List[Peak]) -> List[Peak]:
        return sorted(peaks, key=lambda p: p.center)


class FBFProcessor(OverlapProcessor):
    """前向-后向拟合：依次对扣除其余组分后的残差拟合单峰"""

    name = "fbf"
    description = "前向-后向逐峰残差拟合"

    def _fit_components(self, x_r, y_r, seeds):
        params = [[a, c, w / SIGMA_TO_FWHM] for a, c, w in seeds]
        n = len(params)
        failures = 0

        for order in (range(n), reversed(range(n))):
            for i in order:
                others = sum(
                    (gaussian(x_r, *params[j]) for j in range(n) if j != i),
                    np.zeros_like(x_r),
                )
                residual = y_r - others
                a, c, s = params[i]
                try:
                    fit = self.fitter.fit_window(x_r, residual, 'gaussian', c, a, s * SIGMA_TO_FWHM)
                except FittingNonConvergence:
                    failures += 1
                    continue
                params[i] = list(fit.parameters)

        if failures >= 2 * n:
            raise FittingNonConvergence("前向-后向拟合所有组分均失败", method=self.name)
        return [('gaussian', p) for p in params]


class SharpenCWTProcessor(OverlapProcessor):
    """二阶导数锐化 + Ricker 小波响应重新定位组分中心，再联合高斯拟合"""

    name = "sharpen_cwt"
    description = "锐化-小波辅助分离"

    def _fit_components(self, x_r, y_r, seeds):
        centers = self._sharpened_centers(x_r, y_r, seeds)
        if centers is not None:
            seeds = [(float(np.interp(c, x_r, y_r)) * 0.7, c, w) for (_, _, w), c in zip(seeds, centers)]
        return self._joint_gaussian(x_r, y_r, seeds)

    def _sharpened_centers(self, x_r, y_r, seeds) -> Optional[List[float]]:
        if len(x_r) < 7:
            return None
        dx = float(np.median(np.diff(x_r)))
        sigma = float(np.median([w for _, _, w in seeds])) / SIGMA_TO_FWHM
        sigma_pts = max(sigma / dx, 1.0)

        d2 = signal.savgol_filter(y_r, 5, polyorder=2, deriv=2, delta=dx)
        sharpened = y_r - self.config.sharpen_factor * sigma ** 2 * d2

        width = max(sigma_pts / 2.0, 1.0)
        kernel = _ricker(min(len(x_r), int(10 * width) | 1), width)
        response = np.convolve(sharpened, kernel, mode='same')

        idx, _ = signal.find_peaks(response, height=np.max(response) * 0.1)
        if len(idx) != len(seeds):
            return None
        return [float(x_r[i]) for i in idx]


class EMGNLLSProcessor(OverlapProcessor):
    """多个指数修饰高斯的联合非线性最小二乘"""

    name = "emg_nlls"
    description = "EMG 非线性最小二乘分解"

    def _fit_components(self, x_r, y_r, seeds):
        p0, lower, upper = [], [], []
        lower_1, upper_1 = self.fitter.get_parameter_bounds(x_r, y_r, 'emg')
        for a, c, w in seeds:
            p0.extend(self.fitter.estimate_initial_params(x_r, y_r, 'emg', c, a, w))
            lower.extend(lower_1)
            upper.extend(upper_1)

        emg = self.fitter.models['emg']

        def multi_emg(x, *params):
            y = np.zeros_like(x, dtype=float)
            for i in range(0, len(params), 4):
                y = y + emg(x, *params[i:i + 4])
            return y

        popt = self.fitter.optimizer.optimize(multi_emg, x_r, y_r, p0, (lower, upper), self.fitter.max_iterations)
        return [('emg', [float(v) for v in popt[i:i + 4]]) for i in range(0, len(popt), 4)]


class ExtremeOverlapProcessor(OverlapProcessor):
    """极端重叠：所有组分共享同一宽度，减少自由度"""

    name = "extreme_overlap"
    description = "共享宽度的联合高斯分解"

    def _fit_components(self, x_r, y_r, seeds):
        lower_1, upper_1 = self.fitter.get_parameter_bounds(x_r, y_r, 'gaussian')
        n = len(seeds)
        p0, lower, upper = [], [], []
        for a, c, _ in seeds:
            p0.extend([a, c])
            lower.extend(lower_1[:2])
            upper.extend(upper_1[:2])
        p0.append(float(np.median([w for _, _, w in seeds])) / SIGMA_TO_FWHM)
        lower.append(lower_1[2])
        upper.append(upper_1[2])

        def shared_width(x, *params):
            sigma = params[-1]
            y = np.zeros_like(x, dtype=float)
            for i in range(n):
                y = y + gaussian(x, params[2 * i], params[2 * i + 1], sigma)
            return y

        popt = self.fitter.optimizer.optimize(shared_width, x_r, y_r, p0, (lower, upper), self.fitter.max_iterations)
        sigma = float(popt[-1])
        return [('gaussian', [float(popt[2 * i]), float(popt[2 * i + 1]), sigma]) for i in range(n)]


class AutoOverlapProcessor(OverlapProcessor):
    """按每个簇的重叠程度和信噪比自动选择处理器"""

    name = "auto"
    description = "自动选择重叠峰处理方法"

    def process(self, curve: Curve, peaks: List[Peak]) -> List[Peak]:
        noise = estimate_noise(np.asarray(curve.y))
        result: List[Peak] = []
        for cluster in find_overlap_clusters(peaks, self.config.overlap_tolerance):
            if len(cluster) < 2:
                result.extend(cluster)
                continue
            amplitude = max(p.amplitude for p in cluster)
            snr = amplitude / noise if noise > 0 else float('inf')
            method = select_overlap_method(max_overlap_ratio(cluster), snr)
            logger.debug("auto: 簇大小 %d, 信噪比 %.3g → %s", len(cluster), snr, method)
            processor = OVERLAP_PROCESSORS[method](self.fitter, self.config)
            result.extend(processor.resolve_cluster(curve, cluster))
        return sorted(result, key=lambda p: p.center)


OVERLAP_PROCESSORS = {
    NoOverlapProcessor.name: NoOverlapProcessor,
    FBFProcessor.name: FBFProcessor,
    SharpenCWTProcessor.name: SharpenCWTProcessor,
    EMGNLLSProcessor.name: EMGNLLSProcessor,
    ExtremeOverlapProcessor.name: ExtremeOverlapProcessor,
    AutoOverlapProcessor.name: AutoOverlapProcessor,
}


def get_overlap_processor(name: str, fitter: Optional[PeakFitter] = None,
                          config: Optional[OverlapConfig] = None) -> OverlapProcessor:
    """按名称创建重叠处理器"""
    if name not in OVERLAP_PROCESSORS:
        raise UnknownMethodError(name, "OverlapProcessor", list(OVERLAP_PROCESSORS))
    return OVERLAP_PROCESSORS[name](fitter, config)
