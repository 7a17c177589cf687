"""
高级算法 - 用更灵活的峰形对已拟合峰做二次精修
"""

import logging
from typing import List, Optional

from ..core.curve import Curve, Peak
from ..core.errors import FittingNonConvergence
from ..peak_analysis.peak_fitter import PeakFitter

logger = logging.getLogger(__name__)


class ModelRefinementAlgorithm:
    """以指定模型重新拟合未经重叠分解的峰，R² 提高时采用新结果"""

    name = ""
    description = ""
    model = ""

    def __init__(self, fitter: Optional[PeakFitter] = None):
        self.fitter = fitter or PeakFitter()

    def apply(self, curve: Curve, peaks: List[Peak]) -> List[Peak]:
        refined = []
        for peak in peaks:
            if peak.overlap_resolved or peak.metadata.get('fit_converged') is False:
                refined.append(peak)
                continue
            try:
                fit = self.fitter.fit_peak(curve, peak, model=self.model)
            except FittingNonConvergence as e:
                logger.debug("%s 精修峰 %s 失败: %s", self.name, peak.peak_id, e.message)
                refined.append(peak.with_metadata(refinement=self.name, refinement_applied=False))
                continue

            current = float(peak.metadata.get('rsquared_raw', peak.rsquared))
            if fit.rsquared_raw <= current:
                refined.append(peak.with_metadata(refinement=self.name, refinement_applied=False))
                continue

            refined.append(peak.updated(
                center=fit.center,
                amplitude=fit.amplitude,
                fwhm=fit.fwhm,
                area=fit.area,
                rsquared=fit.rsquared,
                start=fit.start,
                end=fit.end,
            ).with_metadata(
                refinement=self.name,
                refinement_applied=True,
                fit_model=fit.model,
                fit_parameters=fit.parameters,
                parameter_names=fit.parameter_names,
                rsquared_raw=fit.rsquared_raw,
                asymmetry=fit.asymmetry,
            ))
        return refined


class EMGAlgorithm(ModelRefinementAlgorithm):
    name = "emg_algorithm"
    description = "指数修饰高斯精修（拖尾峰）"
    model = "emg"


class BiGaussianAlgorithm(ModelRefinementAlgorithm):
    name = "bi_gaussian"
    description = "双高斯精修（不对称峰）"
    model = "bi_gaussian"


ADVANCED_ALGORITHMS = {
    EMGAlgorithm.name: EMGAlgorithm,
    BiGaussianAlgorithm.name: BiGaussianAlgorithm,
}
