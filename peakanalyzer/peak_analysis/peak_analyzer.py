"""
峰分析器 - 检测 → 拟合 → 重叠处理 → 评分

单个峰拟合失败只影响该峰（记录在元数据中并降低质量分数），
不会中断整条曲线的分析。
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import numpy as np
from scipy.integrate import trapezoid

from ..core.config import PeakAnalysisConfig, validate_config
from ..core.curve import Curve, CurveType, Peak
from ..core.errors import FittingNonConvergence, ProcessingError
from .overlap_resolver import OverlapProcessor, get_overlap_processor
from .peak_detector import PeakDetector
from .peak_fitter import PeakFitter
from .quality_scorer import QualityScorer

logger = logging.getLogger(__name__)

MIN_FWHM = 1e-9


@dataclass
class AnalysisResult:
    """单条曲线的分析结果"""

    curve_id: str
    peaks: List[Peak] = field(default_factory=list)
    fitted_curve: Optional[Curve] = None
    success: bool = True
    diagnostics: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'curve_id': self.curve_id,
            'success': self.success,
            'peaks': [p.to_dict() for p in self.peaks],
            'fitted_curve': self.fitted_curve.to_dict() if self.fitted_curve else None,
            'diagnostics': dict(self.diagnostics),
        }


class PeakAnalyzer:
    """峰分析器 - 组合检测器、拟合器、重叠处理器和评分器"""

    def __init__(self, config: Any = None,
                 detector: Optional[PeakDetector] = None,
                 fitter: Optional[PeakFitter] = None,
                 overlap_processor: Optional[OverlapProcessor] = None):
        """
        参数:
        - config: PeakAnalysisConfig 或等价字典
        - detector/fitter/overlap_processor: 直接注入的组件，覆盖配置中的方法名

        未知的方法名在构造时抛出 UnknownMethodError。
        """
        self.config: PeakAnalysisConfig = validate_config('peak_analysis', config)
        fitting = self.config.fitting

        self.detector = detector or PeakDetector(self.config.detection.method)
        self.fitter = fitter or PeakFitter(
            fitting.method, fitting.optimizer, fitting.max_iterations, fitting.extend_range
        )
        self.overlap_processor = overlap_processor or get_overlap_processor(
            self.config.overlap.method, self.fitter, self.config.overlap
        )
        self.scorer = QualityScorer(self.config.scoring)

    def analyze(self, curve: Curve, candidates: Optional[List[Peak]] = None) -> AnalysisResult:
        """
        分析单条曲线

        参数:
        - curve: 输入曲线
        - candidates: 已有的候选峰；为 None 时执行检测

        返回:
        - AnalysisResult；没有峰时 peaks 为空且 success 为 True
        """
        diagnostics: Dict[str, Any] = {
            'detection_method': self.detector.method,
            'fitting_method': self.fitter.model,
            'overlap_method': self.overlap_processor.name,
            'optimizer': self.fitter.optimizer.name,
        }

        # 检测
        if candidates is None:
            try:
                candidates = self.detector.detect_peaks(curve, self.config.detection)
            except (ValueError, np.linalg.LinAlgError) as e:
                raise ProcessingError(f"峰检测失败: {e}", {'curve_id': curve.curve_id, 'stage': 'detect'}) from e
        else:
            candidates = [p for p in candidates if curve.x_min <= p.center <= curve.x_max]
        diagnostics['candidates'] = len(candidates)

        if not candidates:
            diagnostics['stage'] = 'detect'
            return AnalysisResult(curve.curve_id, [], None, True, diagnostics)

        # 拟合
        fitted = [self._fit_candidate(curve, candidate) for candidate in candidates]
        diagnostics['fit_failures'] = sum(1 for p in fitted if p.metadata.get('fit_converged') is False)

        # 重叠处理
        resolved = self.overlap_processor.process(curve, fitted)
        diagnostics['overlap_resolved'] = sum(1 for p in resolved if p.overlap_resolved)

        # 评分
        peaks = self.scorer.score([self._enforce_invariants(curve, p) for p in resolved])
        diagnostics['stage'] = 'score'

        logger.debug("曲线 %s 分析完成: %d 个峰, %d 个拟合失败, %d 个重叠分解",
                     curve.curve_id, len(peaks), diagnostics['fit_failures'], diagnostics['overlap_resolved'])
        return AnalysisResult(curve.curve_id, peaks, self.build_fitted_curve(curve, peaks), True, diagnostics)

    def _fit_candidate(self, curve: Curve, candidate: Peak) -> Peak:
        """拟合单个候选峰；不收敛时保留检测值并记录原因"""
        base = candidate.with_metadata(detected_fwhm=candidate.fwhm,
                                       detected_center=candidate.metadata.get('detected_center', candidate.center))
        try:
            fit = self.fitter.fit_peak(curve, candidate)
        except FittingNonConvergence as e:
            logger.warning("峰 %s 拟合未收敛: %s", candidate.peak_id, e.message)
            mask = (curve.x >= candidate.start) & (curve.x <= candidate.end)
            area = float(trapezoid(curve.y[mask], curve.x[mask])) if np.count_nonzero(mask) > 1 else 0.0
            return base.updated(rsquared=0.0, area=area).with_metadata(
                fit_converged=False,
                fit_error=e.message,
                fit_model=self.fitter.model,
                rsquared_raw=0.0,
            )

        return base.updated(
            center=fit.center,
            amplitude=fit.amplitude,
            fwhm=fit.fwhm,
            area=fit.area,
            rsquared=fit.rsquared,
            start=fit.start,
            end=fit.end,
        ).with_metadata(
            fit_converged=True,
            fit_model=fit.model,
            fit_parameters=fit.parameters,
            parameter_names=fit.parameter_names,
            rsquared_raw=fit.rsquared_raw,
            rmse=fit.rmse,
            asymmetry=fit.asymmetry,
            optimizer=fit.extras.get('optimizer'),
        )

    @staticmethod
    def _enforce_invariants(curve: Curve, peak: Peak) -> Peak:
        """fwhm>0、R²∈[0,1]、中心位于曲线范围内"""
        return peak.updated(
            fwhm=max(float(peak.fwhm), MIN_FWHM),
            rsquared=min(max(float(peak.rsquared), 0.0), 1.0),
            center=float(np.clip(peak.center, curve.x_min, curve.x_max)),
        )

    def build_fitted_curve(self, curve: Curve, peaks: List[Peak]) -> Optional[Curve]:
        """各拟合组分在曲线x轴上的叠加"""
        if not peaks:
            return None
        x = np.asarray(curve.x, dtype=float)
        y = np.zeros_like(x)
        components = 0
        for peak in peaks:
            model = peak.metadata.get('component_model') or peak.metadata.get('fit_model')
            params = peak.metadata.get('component_parameters') or peak.metadata.get('fit_parameters')
            if model and params:
                y = y + self.fitter.evaluate(model, params, x)
                components += 1
        if components == 0:
            return None
        return curve.derive(CurveType.FITTED, y, components=components)
