"""
曲线提取器 - 从容器中的谱图提取漂移时间/TIC/XIC曲线
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

import numpy as np

from ..core.config import ExtractionFilter, validate_config
from ..core.curve import Container, Curve, CurveType, Peak, Spectrum, new_id
from ..core.errors import ExtractionError, UnknownMethodError

logger = logging.getLogger(__name__)

# 坐标分箱精度（1/1000）
BIN_SCALE = 1000.0


@dataclass
class ExtractionResult:
    """提取结果；peaks 始终为空"""

    curves: List[Curve] = field(default_factory=list)
    peaks: List[Peak] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_empty(self) -> bool:
        return not self.curves


class BaseExtractor:
    """提取器基类：过滤谱图 → 按坐标分箱累加 → 生成曲线"""

    curve_type: str = ""
    x_label = "Retention Time"
    x_unit = "min"

    def extract(self, container: Container, filters: Any = None) -> ExtractionResult:
        """
        提取曲线

        参数:
        - container: 数据容器（不会被修改）
        - filters: ExtractionFilter 或等价的字典，None 表示全范围

        返回:
        - ExtractionResult，没有数据时 curves 为空列表
        """
        extraction_filter = validate_config('extraction', filters)
        self._check_filter(extraction_filter)

        spectra = self._select_spectra(container, extraction_filter)
        metadata = {
            'extractor': self.curve_type,
            'filter': extraction_filter.model_dump(),
            'spectra_used': len(spectra),
            'source': container.metadata.get('file_path'),
        }

        if not spectra:
            logger.debug("%s 提取: 没有谱图通过过滤", self.curve_type)
            return ExtractionResult(metadata=metadata)

        x, y = self._aggregate(spectra, extraction_filter)
        if len(x) == 0:
            logger.debug("%s 提取: 聚合结果为空", self.curve_type)
            return ExtractionResult(metadata=metadata)

        curve = Curve(
            curve_id=new_id(self.curve_type),
            curve_type=self.curve_type,
            x=x,
            y=y,
            x_label=self.x_label,
            x_unit=self.x_unit,
            mz_window=self._mz_window(extraction_filter),
            metadata=dict(metadata),
        )
        logger.debug("%s 提取完成: %d 个谱图 → %d 个点", self.curve_type, len(spectra), curve.point_count)
        return ExtractionResult(curves=[curve], metadata=metadata)

    def _check_filter(self, extraction_filter: ExtractionFilter):
        pass

    def _select_spectra(self, container: Container, extraction_filter: ExtractionFilter) -> List[Spectrum]:
        """按采集顺序筛选谱图"""
        selected = []
        for spectrum in container.spectra:
            if extraction_filter.ms_level is not None and spectrum.ms_level != extraction_filter.ms_level:
                continue
            rt_range = extraction_filter.rt_range
            if rt_range is not None and not (rt_range[0] <= spectrum.rt <= rt_range[1]):
                continue
            if not self._accepts(spectrum):
                continue
            selected.append(spectrum)
        return selected

    def _accepts(self, spectrum: Spectrum) -> bool:
        return True

    def _x_of(self, spectrum: Spectrum) -> float:
        return spectrum.rt

    def _intensity_of(self, spectrum: Spectrum, extraction_filter: ExtractionFilter) -> float:
        raise NotImplementedError

    def _mz_window(self, extraction_filter: ExtractionFilter) -> Optional[Tuple[float, float]]:
        return extraction_filter.mz_range

    def _aggregate(self, spectra: List[Spectrum],
                   extraction_filter: ExtractionFilter) -> Tuple[np.ndarray, np.ndarray]:
        """按分箱坐标累加；累加顺序即采集顺序，输出按坐标升序，x 为分箱坐标 key/1000"""
        bins: Dict[int, float] = {}
        for spectrum in spectra:
            key = int(round(self._x_of(spectrum) * BIN_SCALE))
            bins[key] = bins.get(key, 0.0) + self._intensity_of(spectrum, extraction_filter)

        keys = sorted(bins)
        x = np.array(keys, dtype=float) / BIN_SCALE
        y = np.array([bins[k] for k in keys], dtype=float)
        return x, y


class DriftTimeExtractor(BaseExtractor):
    """漂移时间曲线：m/z 窗口内强度随离子淌度漂移时间的分布"""

    curve_type = CurveType.DRIFT_TIME
    x_label = "Drift Time"
    x_unit = "ms"

    def _accepts(self, spectrum: Spectrum) -> bool:
        return spectrum.drift_time is not None

    def _x_of(self, spectrum: Spectrum) -> float:
        return spectrum.drift_time

    def _intensity_of(self, spectrum: Spectrum, extraction_filter: ExtractionFilter) -> float:
        return spectrum.intensity_in_range(extraction_filter.mz_range)


class TicExtractor(BaseExtractor):
    """总离子流曲线：忽略 m/z 范围，对全质量轴求和"""

    curve_type = CurveType.TIC

    def _intensity_of(self, spectrum: Spectrum, extraction_filter: ExtractionFilter) -> float:
        return spectrum.total_intensity()

    def _mz_window(self, extraction_filter: ExtractionFilter) -> Optional[Tuple[float, float]]:
        return None


class XicExtractor(BaseExtractor):
    """提取离子流曲线：只对 m/z 窗口内的强度求和"""

    curve_type = CurveType.XIC

    def _check_filter(self, extraction_filter: ExtractionFilter):
        if extraction_filter.mz_range is None:
            raise ExtractionError(
                "XIC 提取需要指定 mz_range",
                {'curve_type': self.curve_type, 'filter': extraction_filter.model_dump()},
            )

    def _intensity_of(self, spectrum: Spectrum, extraction_filter: ExtractionFilter) -> float:
        return spectrum.intensity_in_range(extraction_filter.mz_range)


EXTRACTORS = {
    CurveType.DRIFT_TIME: DriftTimeExtractor,
    CurveType.TIC: TicExtractor,
    CurveType.XIC: XicExtractor,
}


def get_extractor(curve_type: str) -> BaseExtractor:
    """按曲线类型获取提取器"""
    if curve_type not in EXTRACTORS:
        raise UnknownMethodError(curve_type, "Extractor", list(EXTRACTORS))
    return EXTRACTORS[curve_type]()


def get_available_extractors() -> List[str]:
    return list(EXTRACTORS.keys())
