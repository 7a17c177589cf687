"""
峰形函数与半峰宽计算
"""

from typing import Dict, Tuple

import numpy as np
from scipy.special import erfcx, gammaln, loggamma, voigt_profile
from scipy.stats import exponnorm

SIGMA_TO_FWHM = 2.0 * np.sqrt(2.0 * np.log(2.0))
LN2 = np.log(2.0)

# Voigt 指数尾的起始高度占峰高的比例
TAIL_HEIGHT_RATIO = 0.1


def gaussian(x, amplitude, center, sigma):
    """高斯模型"""
    return amplitude * np.exp(-0.5 * ((x - center) / sigma) ** 2)


def lorentzian(x, amplitude, center, gamma):
    """洛伦兹模型"""
    return amplitude * gamma ** 2 / ((x - center) ** 2 + gamma ** 2)


def pseudo_voigt(x, amplitude, center, width, eta):
    """伪Voigt模型：同一FWHM的高斯与洛伦兹线性混合"""
    u = (x - center) / width
    g = np.exp(-4.0 * LN2 * u ** 2)
    lor = 1.0 / (1.0 + 4.0 * u ** 2)
    return amplitude * ((1.0 - eta) * g + eta * lor)


def emg(x, area, mu, sigma, tau):
    """指数修饰高斯模型（面积参数化）"""
    return area * exponnorm.pdf(x, tau / sigma, loc=mu, scale=sigma)


def bi_gaussian(x, amplitude, center, sigma_left, sigma_right):
    """双高斯模型：左右两侧宽度不同"""
    sigma = np.where(x < center, sigma_left, sigma_right)
    return amplitude * np.exp(-0.5 * ((x - center) / sigma) ** 2)


def _pearson_iv_z(x, center, width, m, nu):
    # center 为众数位置，z 以分布的 λ 为原点
    return (x - center) / width - nu / (2.0 * m)


def _pearson_iv_log_mode(m, nu):
    """众数处 log[(1+z²)^(-m) exp(-ν·arctan z)]"""
    return -m * np.log1p(nu ** 2 / (4.0 * m ** 2)) + nu * np.arctan(nu / (2.0 * m))


def pearson_iv(x, amplitude, center, width, m, nu):
    """
    Pearson IV 模型（按顶点高度参数化）

    A * [(1+z²)^(-m) exp(-ν·arctan z)] / [众数处同一表达式]，z = (x-center)/width - ν/(2m)
    m 控制尾部衰减，ν 控制偏斜；m=1、ν=0 时为洛伦兹峰
    """
    z = _pearson_iv_z(np.asarray(x, dtype=float), center, width, m, nu)
    log_value = -m * np.log1p(z ** 2) - nu * np.arctan(z)
    return amplitude * np.exp(log_value - _pearson_iv_log_mode(m, nu))


def voigt_exponential_tail(x, amplitude, center, sigma, gamma, tau):
    """
    Voigt峰加右侧指数尾

    Voigt 部分按顶点高度归一化；尾部在中心处为零并平滑升起，
    起始高度为 TAIL_HEIGHT_RATIO * A，按 τ 指数衰减
    """
    x = np.asarray(x, dtype=float)
    u = x - center
    core = voigt_profile(u, sigma, gamma) / voigt_profile(0.0, sigma, gamma)
    right = np.clip(u, 0.0, None)
    tail = TAIL_HEIGHT_RATIO * np.exp(-right / tau) * (1.0 - np.exp(-0.5 * (right / sigma) ** 2))
    return amplitude * (core + tail)


MODEL_FUNCTIONS = {
    'gaussian': gaussian,
    'lorentzian': lorentzian,
    'pseudo_voigt': pseudo_voigt,
    'emg': emg,
    'bi_gaussian': bi_gaussian,
    'pearson_iv': pearson_iv,
    'voigt_exponential_tail': voigt_exponential_tail,
}

PARAMETER_NAMES = {
    'gaussian': ['amplitude', 'center', 'sigma'],
    'lorentzian': ['amplitude', 'center', 'gamma'],
    'pseudo_voigt': ['amplitude', 'center', 'width', 'eta'],
    'emg': ['area', 'mu', 'sigma', 'tau'],
    'bi_gaussian': ['amplitude', 'center', 'sigma_left', 'sigma_right'],
    'pearson_iv': ['amplitude', 'center', 'width', 'm', 'nu'],
    'voigt_exponential_tail': ['amplitude', 'center', 'sigma', 'gamma', 'tau'],
}


def model_support(model: str, params) -> Tuple[float, float]:
    """包含峰主体的x范围，用于在稠密网格上求形状参数"""
    if model == 'gaussian':
        _, c, s = params
        return c - 8 * s, c + 8 * s
    if model == 'lorentzian':
        _, c, g = params
        return c - 20 * g, c + 20 * g
    if model == 'pseudo_voigt':
        _, c, w, _ = params
        return c - 10 * w, c + 10 * w
    if model == 'emg':
        _, mu, s, t = params
        return mu - 8 * s, mu + 8 * s + 20 * t
    if model == 'bi_gaussian':
        _, c, sl, sr = params
        return c - 8 * sl, c + 8 * sr
    if model == 'pearson_iv':
        _, c, w, m, nu = params
        # 偏斜放大的一侧降到 10% 以下所需的 |z|
        reach = np.sqrt((10.0 * np.exp(np.pi * abs(nu))) ** (1.0 / m) - 1.0)
        half = w * (reach + abs(nu) / (2.0 * m) + 1.0)
        return c - half, c + half
    if model == 'voigt_exponential_tail':
        _, c, s, g, t = params
        return c - 8 * s - 20 * g, c + 8 * s + 20 * g + 20 * t
    raise KeyError(model)


def model_area(model: str, params) -> float:
    """模型的解析面积"""
    if model == 'gaussian':
        a, _, s = params
        return float(a * s * np.sqrt(2 * np.pi))
    if model == 'lorentzian':
        a, _, g = params
        return float(np.pi * a * g)
    if model == 'pseudo_voigt':
        a, _, w, eta = params
        return float(a * w * ((1 - eta) * np.sqrt(np.pi / (4 * LN2)) + eta * np.pi / 2))
    if model == 'emg':
        return float(params[0])
    if model == 'bi_gaussian':
        a, _, sl, sr = params
        return float(a * np.sqrt(np.pi / 2) * (sl + sr))
    if model == 'pearson_iv':
        a, _, w, m, nu = params
        # ∫(1+z²)^(-m) exp(-ν·arctan z) dz = π Γ(2m-1) / (2^(2m-2) |Γ(m+iν/2)|²)，需 m > 1/2
        log_integral = (np.log(np.pi) + gammaln(2 * m - 1) - (2 * m - 2) * LN2
                        - 2.0 * np.real(loggamma(m + 0.5j * nu)))
        return float(a * w * np.exp(log_integral - _pearson_iv_log_mode(m, nu)))
    if model == 'voigt_exponential_tail':
        a, _, s, g, t = params
        core = 1.0 / voigt_profile(0.0, s, g)
        # ∫₀^∞ e^(-u/τ)(1 - e^(-u²/2σ²)) du
        tail = t - s * np.sqrt(np.pi / 2) * erfcx(s / (t * np.sqrt(2.0)))
        return float(a * (core + TAIL_HEIGHT_RATIO * tail))
    raise KeyError(model)


def half_max_metrics(x: np.ndarray, y: np.ndarray, peak_idx: int,
                     level: float = 0.5) -> Tuple[float, float]:
    """
    在指定数据上求峰两侧与 level*峰高 的交点距离

    返回:
    - (左半宽, 右半宽)；找不到交点时以数据边缘代替
    """
    height = y[peak_idx]
    target = height * level
    center = x[peak_idx]

    if height <= 0:
        return float(center - x[0]), float(x[-1] - center)

    left = x[0]
    for i in range(peak_idx, 0, -1):
        if y[i - 1] <= target:
            # 线性插值找到精确交点
            t = (y[i] - target) / (y[i] - y[i - 1])
            left = x[i] - t * (x[i] - x[i - 1])
            break

    right = x[-1]
    for i in range(peak_idx, len(y) - 1):
        if y[i + 1] <= target:
            t = (y[i] - target) / (y[i] - y[i + 1])
            right = x[i] + t * (x[i + 1] - x[i])
            break

    return float(center - left), float(right - center)


def shape_metrics(model: str, params, points: int = 4001) -> Dict[str, float]:
    """
    在稠密网格上计算拟合峰的顶点、FWHM、不对称因子和10%边界
    """
    lo, hi = model_support(model, params)
    grid = np.linspace(lo, hi, points)
    values = MODEL_FUNCTIONS[model](grid, *params)
    idx = int(np.argmax(values))

    left_hw, right_hw = half_max_metrics(grid, values, idx)
    left_10, right_10 = half_max_metrics(grid, values, idx, level=0.1)
    apex = float(grid[idx])

    return {
        'center': apex,
        'amplitude': float(values[idx]),
        'fwhm': left_hw + right_hw,
        'left_hwhm': left_hw,
        'right_hwhm': right_hw,
        'asymmetry': right_hw / left_hw if left_hw > 0 else 1.0,
        'start': apex - left_10,
        'end': apex + right_10,
    }
