"""
峰质量评分

score = w_r * R² + w_s * 对称性 + w_c * 检测置信度 + w_res * 分离度
拟合不收敛的峰再乘以惩罚系数，最终截断到 [0, 1]。
"""

from typing import List, Optional, Sequence

from ..core.config import ScoringConfig
from ..core.curve import Peak


def quality_grade(score: float) -> str:
    """质量等级 A/B/C/D"""
    if score > 0.8:
        return "A"
    if score > 0.6:
        return "B"
    if score > 0.4:
        return "C"
    return "D"


def min_separation(peak: Peak, peaks: Sequence[Peak]) -> Optional[float]:
    """与最近邻峰的中心距（以两峰平均FWHM为单位）；没有邻峰时为 None"""
    best: Optional[float] = None
    for other in peaks:
        if other.peak_id == peak.peak_id:
            continue
        avg_width = (peak.fwhm + other.fwhm) / 2.0
        if avg_width <= 0:
            continue
        distance = abs(peak.center - other.center) / avg_width
        if best is None or distance < best:
            best = distance
    return best


class QualityScorer:
    """质量评分器"""

    def __init__(self, config: Optional[ScoringConfig] = None):
        self.config = config or ScoringConfig()

    def score_peak(self, peak: Peak, neighbours: Sequence[Peak]) -> Peak:
        cfg = self.config
        rsquared = min(max(peak.rsquared, 0.0), 1.0)
        symmetry = 1.0 if abs(peak.asymmetry - 1.0) <= cfg.symmetry_tolerance else 0.5
        confidence = min(max(peak.confidence, 0.0), 1.0)
        separation = min_separation(peak, neighbours)
        is_resolved = separation is None or separation > 1.0
        resolution = 1.0 if is_resolved else 0.5

        score = (cfg.rsquared_weight * rsquared
                 + cfg.symmetry_weight * symmetry
                 + cfg.confidence_weight * confidence
                 + cfg.resolution_weight * resolution)
        if peak.metadata.get('fit_converged') is False:
            score *= cfg.non_convergence_penalty
        score = min(max(score, 0.0), 1.0)

        return peak.updated(quality_score=score).with_metadata(
            quality_grade=quality_grade(score),
            min_separation=separation,
            is_resolved=is_resolved,
        )

    def score(self, peaks: Sequence[Peak]) -> List[Peak]:
        """为所有峰评分（分离度依赖同一曲线上的其它峰）"""
        return [self.score_peak(peak, peaks) for peak in peaks]
