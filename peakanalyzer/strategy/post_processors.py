"""
后处理 - 对评分后的峰做验证或过滤
"""

from typing import List

from ..core.curve import Curve, Peak


class QualityValidation:
    """R² 低于阈值或拟合未收敛的峰标记为未通过，并降为 D 级"""

    name = "quality_validation"
    description = "拟合质量验证"

    def __init__(self, min_rsquared: float = 0.8):
        self.min_rsquared = min_rsquared

    def apply(self, curve: Curve, peaks: List[Peak]) -> List[Peak]:
        validated = []
        for peak in peaks:
            passed = peak.rsquared >= self.min_rsquared and peak.metadata.get('fit_converged') is not False
            metadata = {'validation_passed': passed}
            if not passed:
                metadata['quality_grade'] = "D"
            validated.append(peak.with_metadata(**metadata))
        return validated


class PeakFilter:
    """删除质量分数低于阈值的峰"""

    name = "peak_filter"
    description = "按质量分数过滤峰"

    def __init__(self, min_quality: float = 0.3):
        self.min_quality = min_quality

    def apply(self, curve: Curve, peaks: List[Peak]) -> List[Peak]:
        return [peak for peak in peaks if peak.quality_score >= self.min_quality]


POST_PROCESSORS = {
    QualityValidation.name: QualityValidation,
    PeakFilter.name: PeakFilter,
}
