"""
峰拟合器 - 使用数学模型拟合峰形
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

import numpy as np

from ..core.curve import Curve, Peak
from ..core.errors import FittingNonConvergence, UnknownMethodError
from .parameter_optimizer import ParameterOptimizer, get_optimizer
from .peak_shapes import (
    MODEL_FUNCTIONS,
    PARAMETER_NAMES,
    SIGMA_TO_FWHM,
    model_area,
    shape_metrics,
)

logger = logging.getLogger(__name__)

MIN_FIT_POINTS = 5

# Pearson IV 形状参数范围：m 越大越接近高斯，|ν| 越大越偏斜
PEARSON_IV_INITIAL_M = 2.0
PEARSON_IV_M_RANGE = (1.0, 50.0)
PEARSON_IV_NU_LIMIT = 2.0


@dataclass
class FitResult:
    """单峰拟合结果"""

    model: str
    parameters: List[float]
    parameter_names: List[str]
    rsquared_raw: float
    rmse: float
    center: float
    amplitude: float
    fwhm: float
    area: float
    asymmetry: float
    start: float
    end: float
    window: Tuple[float, float]
    extras: Dict[str, Any] = field(default_factory=dict)

    @property
    def rsquared(self) -> float:
        """夹到 [0,1] 的拟合优度"""
        return float(min(max(self.rsquared_raw, 0.0), 1.0))


def calculate_r_squared(y_observed: np.ndarray, y_fitted: np.ndarray) -> float:
    """计算R平方值（未截断，退化拟合可能为负）"""
    ss_res = float(np.sum((y_observed - y_fitted) ** 2))
    ss_tot = float(np.sum((y_observed - np.mean(y_observed)) ** 2))

    if ss_tot == 0:
        return 1.0 if ss_res == 0 else 0.0

    return 1.0 - ss_res / ss_tot


class PeakFitter:
    """峰拟合器 - 提供多种峰形拟合功能"""

    def __init__(self, model: str = 'gaussian', optimizer: Any = 'levenberg_marquardt',
                 max_iterations: int = 200, extend_range: float = 3.0):
        """
        参数:
        - model: 拟合模型名称
        - optimizer: 优化器名称或 ParameterOptimizer 实例
        - max_iterations: 最大迭代次数
        - extend_range: 拟合窗口相对 FWHM 的扩展倍数
        """
        self.models = dict(MODEL_FUNCTIONS)
        if model not in self.models:
            raise UnknownMethodError(model, "FittingMethod", list(self.models))
        self.model = model
        self.optimizer: ParameterOptimizer = (
            get_optimizer(optimizer) if isinstance(optimizer, str) else optimizer
        )
        self.max_iterations = max_iterations
        self.extend_range = extend_range

    def fit_peak(self, curve: Curve, peak: Peak, model: Optional[str] = None) -> FitResult:
        """
        拟合单个峰

        参数:
        - curve: 所属曲线
        - peak: 候选峰（center/amplitude/fwhm 作为初值）
        - model: 覆盖默认模型

        返回:
        - FitResult；不收敛时抛出 FittingNonConvergence
        """
        model = model or self.model
        if model not in self.models:
            raise UnknownMethodError(model, "FittingMethod", list(self.models))

        x_data, y_data = self._extract_peak_data(curve, peak)
        if len(x_data) < max(MIN_FIT_POINTS, len(PARAMETER_NAMES[model]) + 1):
            raise FittingNonConvergence(
                f"峰 {peak.peak_id} 拟合窗口内数据点不足 ({len(x_data)})",
                peak_id=peak.peak_id, method=model,
            )

        try:
            result = self.fit_window(x_data, y_data, model, peak.center, peak.amplitude, peak.fwhm)
        except FittingNonConvergence as e:
            raise FittingNonConvergence(e.message, peak_id=peak.peak_id, method=model) from e

        if not (curve.x_min <= result.center <= curve.x_max):
            raise FittingNonConvergence(
                f"峰 {peak.peak_id} 拟合中心 {result.center:.4f} 超出曲线范围",
                peak_id=peak.peak_id, method=model,
            )
        return result

    def fit_window(self, x_data: np.ndarray, y_data: np.ndarray, model: str,
                   center: float, amplitude: float, fwhm: float) -> FitResult:
        """在给定数据窗口上拟合单峰模型"""
        model_func = self.models[model]

        # 初始参数估计
        initial_params = self.estimate_initial_params(x_data, y_data, model, center, amplitude, fwhm)

        # 参数边界
        bounds = self.get_parameter_bounds(x_data, y_data, model)

        popt = self.optimizer.optimize(
            model_func, x_data, y_data, initial_params, bounds, self.max_iterations
        )

        # 计算拟合质量
        y_fitted = model_func(x_data, *popt)
        r_squared = calculate_r_squared(y_data, y_fitted)
        rmse = float(np.sqrt(np.mean((y_data - y_fitted) ** 2)))

        shape = self._interpret_parameters(model, popt)
        return FitResult(
            model=model,
            parameters=[float(p) for p in popt],
            parameter_names=self._get_parameter_names(model),
            rsquared_raw=float(r_squared),
            rmse=rmse,
            center=shape['center'],
            amplitude=shape['amplitude'],
            fwhm=shape['fwhm'],
            area=shape['area'],
            asymmetry=shape['asymmetry'],
            start=shape['start'],
            end=shape['end'],
            window=(float(x_data[0]), float(x_data[-1])),
            extras={'optimizer': self.optimizer.name},
        )

    def evaluate(self, model: str, parameters: List[float], x: np.ndarray) -> np.ndarray:
        """计算模型在x上的值"""
        return self.models[model](np.asarray(x, dtype=float), *parameters)

    def _extract_peak_data(self, curve: Curve, peak: Peak) -> Tuple[np.ndarray, np.ndarray]:
        """提取峰周围的数据"""
        span = curve.x_max - curve.x_min
        extend_width = max(peak.fwhm * self.extend_range, span * 0.005)
        mask = (curve.x >= peak.center - extend_width) & (curve.x <= peak.center + extend_width)
        return np.asarray(curve.x[mask]), np.asarray(curve.y[mask])

    def estimate_initial_params(self, x_data: np.ndarray, y_data: np.ndarray, model: str,
                                 center: float, amplitude: float, fwhm: float) -> List[float]:
        """估计初始参数"""
        span = float(x_data[-1] - x_data[0])
        fwhm = fwhm if fwhm > 0 else span / 4
        amplitude = amplitude if amplitude > 0 else float(np.max(y_data))
        sigma = fwhm / SIGMA_TO_FWHM

        if model == 'gaussian':
            return [amplitude, center, sigma]
        elif model == 'lorentzian':
            return [amplitude, center, fwhm / 2]
        elif model == 'pseudo_voigt':
            return [amplitude, center, fwhm, 0.5]
        elif model == 'emg':
            # 面积参数化，mu 略偏左于顶点
            tau = sigma * 0.5
            return [amplitude * sigma * np.sqrt(2 * np.pi), center - tau, sigma, tau]
        elif model == 'bi_gaussian':
            return [amplitude, center, sigma, sigma]
        elif model == 'pearson_iv':
            # m=2、ν=0 时 FWHM = 2w·sqrt(√2 - 1)
            m = PEARSON_IV_INITIAL_M
            return [amplitude, center, fwhm / (2 * np.sqrt(2 ** (1 / m) - 1)), m, 0.0]
        elif model == 'voigt_exponential_tail':
            return [amplitude, center, sigma, sigma * 0.1, sigma]
        raise UnknownMethodError(model, "FittingMethod", list(self.models))

    def get_parameter_bounds(self, x_data: np.ndarray, y_data: np.ndarray,
                              model: str) -> Tuple[List[float], List[float]]:
        """获取参数边界（全部有限）"""
        x_min, x_max = float(np.min(x_data)), float(np.max(x_data))
        span = max(x_max - x_min, 1e-9)
        y_max = float(np.max(y_data))
        amp_max = y_max * 2 if y_max > 0 else 1.0
        width_min = span * 1e-4

        if model == 'gaussian':
            return [0, x_min, width_min], [amp_max, x_max, span]
        elif model == 'lorentzian':
            return [0, x_min, width_min], [amp_max, x_max, span]
        elif model == 'pseudo_voigt':
            return [0, x_min, width_min, 0.0], [amp_max, x_max, span * 2, 1.0]
        elif model == 'emg':
            return [0, x_min - span, width_min, width_min], [amp_max * span * 2, x_max, span, span * 5]
        elif model == 'bi_gaussian':
            return [0, x_min, width_min, width_min], [amp_max, x_max, span, span]
        elif model == 'pearson_iv':
            return ([0, x_min, width_min, PEARSON_IV_M_RANGE[0], -PEARSON_IV_NU_LIMIT],
                    [amp_max, x_max, span, PEARSON_IV_M_RANGE[1], PEARSON_IV_NU_LIMIT])
        elif model == 'voigt_exponential_tail':
            return [0, x_min, width_min, 0.0, width_min], [amp_max, x_max, span, span, span * 5]
        raise UnknownMethodError(model, "FittingMethod", list(self.models))

    def _get_parameter_names(self, model: str) -> List[str]:
        """获取参数名称"""
        return list(PARAMETER_NAMES[model])

    def _interpret_parameters(self, model: str, params: np.ndarray) -> Dict[str, float]:
        """解释拟合参数：顶点、高度、FWHM、面积、不对称因子"""
        result = shape_metrics(model, params)
        result['area'] = model_area(model, params)
        if model == 'gaussian':
            # 解析值
            result['fwhm'] = float(params[2] * SIGMA_TO_FWHM)
            result['center'] = float(params[1])
            result['amplitude'] = float(params[0])
        return result

    def get_available_models(self) -> List[str]:
        """获取可用的拟合模型"""
        return list(self.models.keys())

    @staticmethod
    def get_model_description(model: str) -> Dict[str, Any]:
        """获取模型描述"""
        descriptions = {
            'gaussian': {
                'name': '高斯模型',
                'equation': 'A * exp(-0.5 * ((x - μ) / σ)²)',
                'best_for': '对称峰形',
            },
            'lorentzian': {
                'name': '洛伦兹模型',
                'equation': 'A * γ² / ((x - x₀)² + γ²)',
                'best_for': '宽峰或长尾峰',
            },
            'pseudo_voigt': {
                'name': '伪Voigt模型',
                'equation': 'A * ((1-η) G(x; w) + η L(x; w))',
                'best_for': '介于高斯和洛伦兹之间的峰形',
            },
            'emg': {
                'name': '指数修饰高斯',
                'equation': 'S * EMG(x; μ, σ, τ)',
                'best_for': '拖尾峰',
            },
            'bi_gaussian': {
                'name': '双高斯',
                'equation': 'A * exp(-0.5 * ((x - μ) / σ_{L,R})²)',
                'best_for': '不对称峰',
            },
            'pearson_iv': {
                'name': 'Pearson IV',
                'equation': 'A * (1 + z²)^(-m) * exp(-ν·arctan z) / 顶点值',
                'best_for': '偏斜且尾部较重的峰',
            },
            'voigt_exponential_tail': {
                'name': 'Voigt + 指数尾',
                'equation': 'A * (V(x; σ, γ) / V(0) + 0.1 * exp(-(x - x₀)/τ) * (1 - exp(-(x - x₀)²/2σ²)))',
                'best_for': '带拖尾的洛伦兹/高斯混合峰',
            },
        }
        return descriptions.get(model, {'name': '未知模型'})
