"""
参数优化器 - 拟合模型的数值求解后端

所有优化器都接受有限边界，并在失败时抛出 FittingNonConvergence。
"""

import logging
import warnings
from typing import Callable, Dict, List, Sequence, Tuple

import numpy as np
from scipy import optimize

from ..core.errors import FittingNonConvergence, UnknownMethodError

logger = logging.getLogger(__name__)

ModelFunc = Callable[..., np.ndarray]
Bounds = Tuple[Sequence[float], Sequence[float]]

# grid_search 每次最多评估的网格点数
GRID_MAX_EVALUATIONS = 20000
ANNEALING_MAX_ITERATIONS = 100


def clip_into_bounds(p0: Sequence[float], bounds: Bounds) -> np.ndarray:
    """把初值夹到边界内部（留一点余量）"""
    lower = np.asarray(bounds[0], dtype=float)
    upper = np.asarray(bounds[1], dtype=float)
    margin = (upper - lower) * 1e-6
    return np.clip(np.asarray(p0, dtype=float), lower + margin, upper - margin)


class ParameterOptimizer:
    """优化器基类"""

    name = ""
    description = ""

    def optimize(self, func: ModelFunc, x: np.ndarray, y: np.ndarray,
                 p0: Sequence[float], bounds: Bounds, max_iterations: int = 200) -> np.ndarray:
        """
        求解模型参数

        参数:
        - func: 模型函数 func(x, *params)
        - x, y: 拟合数据
        - p0: 初始参数
        - bounds: (下界, 上界)
        - max_iterations: 最大迭代次数

        返回:
        - 最优参数数组
        """
        if len(x) < len(p0):
            raise FittingNonConvergence(
                f"数据点({len(x)})少于参数个数({len(p0)})", method=self.name
            )
        p0 = clip_into_bounds(p0, bounds)
        with warnings.catch_warnings():
            warnings.simplefilter("ignore")
            try:
                params = self._solve(func, x, y, p0, bounds, max_iterations)
            except (ValueError, RuntimeError, np.linalg.LinAlgError) as e:
                raise FittingNonConvergence(f"{self.name} 求解失败: {e}", method=self.name) from e

        params = np.asarray(params, dtype=float)
        if not np.all(np.isfinite(params)):
            raise FittingNonConvergence(f"{self.name} 得到非有限参数", method=self.name)
        return params

    def _solve(self, func, x, y, p0, bounds, max_iterations) -> np.ndarray:
        raise NotImplementedError

    @staticmethod
    def _residual(func, x, y):
        def residual(params):
            return func(x, *params) - y
        return residual

    @staticmethod
    def _normalized_objective(func, x, y, lower, scale):
        """在 [0,1] 归一化参数空间中的相对残差平方和"""
        denom = max(float(np.sum((y - np.mean(y)) ** 2)), float(np.sum(y ** 2)) * 1e-12, 1e-300)

        def objective(u):
            residual = func(x, *(lower + u * scale)) - y
            value = float(np.sum(residual ** 2)) / denom
            return value if np.isfinite(value) else 1e300
        return objective


class LevenbergMarquardtOptimizer(ParameterOptimizer):
    """Levenberg-Marquardt；解超出边界时改用信赖域反射法"""

    name = "levenberg_marquardt"
    description = "Levenberg-Marquardt 非线性最小二乘"

    def _solve(self, func, x, y, p0, bounds, max_iterations):
        residual = self._residual(func, x, y)
        max_nfev = max_iterations * (len(p0) + 1)
        lower, upper = np.asarray(bounds[0], float), np.asarray(bounds[1], float)

        result = optimize.least_squares(residual, p0, method='lm', max_nfev=max_nfev)
        if result.status > 0 and np.all(result.x >= lower) and np.all(result.x <= upper):
            return result.x

        logger.debug("LM 解越界或未收敛(status=%s)，改用 trf", result.status)
        result = optimize.least_squares(residual, p0, method='trf', bounds=(lower, upper), max_nfev=max_nfev)
        if result.status <= 0:
            raise FittingNonConvergence(f"达到最大函数评估次数 {max_nfev}", method=self.name)
        return result.x


class GradientDescentOptimizer(ParameterOptimizer):
    """有界拟牛顿梯度下降（L-BFGS-B）"""

    name = "gradient_descent"
    description = "L-BFGS-B 有界梯度下降"

    def _solve(self, func, x, y, p0, bounds, max_iterations):
        lower, upper = np.asarray(bounds[0], float), np.asarray(bounds[1], float)
        scale = upper - lower
        objective = self._normalized_objective(func, x, y, lower, scale)
        u0 = (p0 - lower) / scale

        result = optimize.minimize(
            objective, u0, method='L-BFGS-B',
            bounds=[(0.0, 1.0)] * len(u0),
            options={'maxiter': max_iterations},
        )
        if not result.success and result.nit >= max_iterations:
            raise FittingNonConvergence(f"{max_iterations} 次迭代内未收敛: {result.message}", method=self.name)
        return lower + result.x * scale


class SimulatedAnnealingOptimizer(ParameterOptimizer):
    """模拟退火（dual annealing，固定随机种子保证可复现）"""

    name = "simulated_annealing"
    description = "全局模拟退火 + 局部精修"

    def __init__(self, seed: int = 0):
        self.seed = seed

    def _solve(self, func, x, y, p0, bounds, max_iterations):
        lower, upper = np.asarray(bounds[0], float), np.asarray(bounds[1], float)
        scale = upper - lower
        objective = self._normalized_objective(func, x, y, lower, scale)
        u0 = (p0 - lower) / scale

        result = optimize.dual_annealing(
            objective,
            bounds=[(0.0, 1.0)] * len(u0),
            maxiter=min(max_iterations, ANNEALING_MAX_ITERATIONS),
            seed=self.seed,
            x0=u0,
        )
        return lower + result.x * scale


class GridSearchOptimizer(ParameterOptimizer):
    """网格搜索 + 最小二乘精修"""

    name = "grid_search"
    description = "有界网格搜索后用信赖域反射法精修"

    def _solve(self, func, x, y, p0, bounds, max_iterations):
        lower, upper = np.asarray(bounds[0], float), np.asarray(bounds[1], float)
        scale = upper - lower
        objective = self._normalized_objective(func, x, y, lower, scale)
        n_points = max(2, int(GRID_MAX_EVALUATIONS ** (1.0 / len(p0))))

        u_best = optimize.brute(
            objective,
            ranges=[(0.0, 1.0)] * len(p0),
            Ns=n_points,
            finish=None,
        )
        start = clip_into_bounds(lower + np.atleast_1d(u_best) * scale, bounds)
        # 网格最优点不如初值时从初值出发
        if objective((p0 - lower) / scale) < objective((start - lower) / scale):
            start = p0

        result = optimize.least_squares(
            self._residual(func, x, y), start, method='trf',
            bounds=(lower, upper), max_nfev=max_iterations * (len(p0) + 1),
        )
        return result.x


OPTIMIZERS: Dict[str, type] = {
    LevenbergMarquardtOptimizer.name: LevenbergMarquardtOptimizer,
    GradientDescentOptimizer.name: GradientDescentOptimizer,
    SimulatedAnnealingOptimizer.name: SimulatedAnnealingOptimizer,
    GridSearchOptimizer.name: GridSearchOptimizer,
}


def get_optimizer(name: str) -> ParameterOptimizer:
    """按名称创建优化器"""
    if name not in OPTIMIZERS:
        raise UnknownMethodError(name, "ParameterOptimizer", list(OPTIMIZERS))
    return OPTIMIZERS[name]()


def get_available_optimizers() -> List[str]:
    return list(OPTIMIZERS.keys())
