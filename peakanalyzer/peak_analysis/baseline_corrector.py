"""
基线校正 - 曲线 → (基线曲线, 校正曲线)

校正值不做非负截断，保证 corrected + baseline == original。
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Tuple

import numpy as np
from scipy import sparse
from scipy.sparse.linalg import spsolve

from ..core.config import BaselineConfig, validate_config
from ..core.curve import Curve, CurveType
from ..core.errors import ProcessingError, UnknownMethodError

logger = logging.getLogger(__name__)

POLYNOMIAL_MAX_ROUNDS = 50


@dataclass
class BaselineResult:
    """基线校正结果"""

    baseline_curve: Curve
    corrected_curve: Curve
    diagnostics: Dict[str, Any] = field(default_factory=dict)


class BaselineCorrector:
    """基线校正器 - 提供线性、多项式、移动平均和ALS方法"""

    def __init__(self):
        self.methods: Dict[str, Callable[[np.ndarray, np.ndarray, BaselineConfig], Tuple[np.ndarray, Dict[str, Any]]]] = {
            'linear': self._linear_baseline,
            'polynomial': self._polynomial_baseline,
            'moving_average': self._moving_average_baseline,
            'asymmetric_least_squares': self._als_baseline,
        }

    def correct(self, curve: Curve, method: str = None, params: Any = None) -> BaselineResult:
        """
        基线校正

        参数:
        - curve: 输入曲线（不会被修改）
        - method: 方法名，为 None 时使用 params 中的 method
        - params: BaselineConfig 或等价字典

        返回:
        - BaselineResult(baseline_curve, corrected_curve, diagnostics)
        """
        payload = params.model_dump() if hasattr(params, 'model_dump') else dict(params or {})
        if method is not None:
            payload['method'] = method
        config = validate_config('baseline', payload)

        if config.method not in self.methods:
            raise UnknownMethodError(config.method, "Baseline", list(self.methods))
        if curve.is_empty:
            raise ProcessingError("无法对空曲线进行基线校正", {'curve_id': curve.curve_id})

        x = np.asarray(curve.x, dtype=float)
        y = np.asarray(curve.y, dtype=float)

        if len(y) < 3:
            baseline = np.full_like(y, np.min(y))
            diagnostics = {'iterations': 0, 'converged': True}
        else:
            baseline, diagnostics = self.methods[config.method](x, y, config)

        corrected = y - baseline
        diagnostics = {'method': config.method, **diagnostics}
        logger.debug("基线校正 %s: %s", config.method, diagnostics)

        baseline_curve = curve.derive(CurveType.BASELINE, baseline, baseline_method=config.method)
        corrected_curve = curve.derive(
            CurveType.CORRECTED, corrected,
            baseline_method=config.method,
            baseline_curve_id=baseline_curve.curve_id,
        )
        return BaselineResult(baseline_curve, corrected_curve, diagnostics)

    def _linear_baseline(self, x: np.ndarray, y: np.ndarray,
                         config: BaselineConfig) -> Tuple[np.ndarray, Dict[str, Any]]:
        """线性基线：通过两端点和最低10%强度点拟合直线"""
        low_count = max(2, len(y) // 10)
        anchors = set(np.argsort(y, kind='stable')[:low_count].tolist())
        anchors.update((0, len(y) - 1))
        idx = np.array(sorted(anchors))

        coeffs = np.polyfit(x[idx], y[idx], 1)
        return np.polyval(coeffs, x), {'iterations': 1, 'converged': True, 'anchors': len(idx)}

    def _polynomial_baseline(self, x: np.ndarray, y: np.ndarray,
                             config: BaselineConfig) -> Tuple[np.ndarray, Dict[str, Any]]:
        """多项式基线：迭代拟合并把信号截断到包络以下"""
        degree = min(config.degree, len(y) - 1)
        # 归一化x避免高次多项式病态
        span = x[-1] - x[0] if x[-1] != x[0] else 1.0
        xn = (x - x[0]) / span

        envelope = y.copy()
        baseline = np.polyval(np.polyfit(xn, envelope, degree), xn)
        converged = False
        rounds = 1
        for rounds in range(1, POLYNOMIAL_MAX_ROUNDS + 1):
            envelope = np.minimum(envelope, baseline)
            updated = np.polyval(np.polyfit(xn, envelope, degree), xn)
            change = np.linalg.norm(updated - baseline) / max(np.linalg.norm(baseline), 1e-12)
            baseline = updated
            if change < config.tolerance:
                converged = True
                break

        return baseline, {'iterations': rounds, 'converged': converged, 'degree': degree}

    def _moving_average_baseline(self, x: np.ndarray, y: np.ndarray,
                                 config: BaselineConfig) -> Tuple[np.ndarray, Dict[str, Any]]:
        """居中移动平均；边缘处窗口收缩"""
        half = config.window_size // 2
        n = len(y)
        cumsum = np.concatenate(([0.0], np.cumsum(y)))
        idx = np.arange(n)
        lo = np.maximum(0, idx - half)
        hi = np.minimum(n, idx + half + 1)
        baseline = (cumsum[hi] - cumsum[lo]) / (hi - lo)
        return baseline, {'iterations': 1, 'converged': True, 'window_size': config.window_size}

    def _als_baseline(self, x: np.ndarray, y: np.ndarray,
                      config: BaselineConfig) -> Tuple[np.ndarray, Dict[str, Any]]:
        """
        不对称最小二乘基线

        基线以上的点权重为 p，以下的点权重为 1-p，二阶差分惩罚由 lam 控制。
        达到 max_iterations 仍未收敛时返回最后一次估计并标记 converged=False。
        """
        n = len(y)
        D = sparse.diags([1.0, -2.0, 1.0], [0, -1, -2], shape=(n, n - 2), format='csc')
        penalty = config.lam * (D @ D.T)
        w = np.ones(n)

        z = y.copy()
        converged = False
        iterations = 0
        for iterations in range(1, config.max_iterations + 1):
            W = sparse.diags(w, 0, shape=(n, n), format='csc')
            z_new = spsolve((W + penalty).tocsc(), w * y)
            change = np.linalg.norm(z_new - z) / max(np.linalg.norm(z), 1e-12)
            z = z_new
            w = config.p * (y > z) + (1 - config.p) * (y <= z)
            if iterations > 1 and change < config.tolerance:
                converged = True
                break

        if not converged:
            logger.debug("ALS 在 %d 次迭代内未收敛", iterations)
        return np.asarray(z, dtype=float), {'iterations': iterations, 'converged': converged}

    def get_available_methods(self) -> List[str]:
        """获取可用的基线方法"""
        return list(self.methods.keys())
