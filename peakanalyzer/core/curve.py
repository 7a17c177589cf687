"""
曲线和峰数据结构定义

谱图(Spectrum)、曲线(Curve)、峰(Peak)一经创建即不可变，所有处理阶段
都返回新实例；容器(Container)只持有这些不可变记录的列表。
"""

from dataclasses import dataclass, field, replace
from typing import Any, Dict, Iterable, List, Optional, Tuple
import uuid

import numpy as np


class CurveType:
    """曲线类型标签"""
    DRIFT_TIME = "drift_time"
    TIC = "tic"
    XIC = "xic"
    BASELINE = "baseline"
    CORRECTED = "corrected"
    FITTED = "fitted"

    ALL = (DRIFT_TIME, TIC, XIC, BASELINE, CORRECTED, FITTED)


def new_id(prefix: str) -> str:
    """生成短ID"""
    return f"{prefix}_{uuid.uuid4().hex[:8]}"


def _frozen_array(values: Any) -> np.ndarray:
    array = np.array(values, dtype=float).ravel()
    array.setflags(write=False)
    return array


@dataclass(frozen=True, eq=False)
class Spectrum:
    """单次扫描的谱图 - 加载后不再修改"""

    rt: float  # 保留时间
    ms_level: int
    mz: np.ndarray
    intensity: np.ndarray
    drift_time: Optional[float] = None  # 离子淌度漂移时间
    index: int = 0  # 采集顺序

    def __post_init__(self):
        mz = _frozen_array(self.mz)
        intensity = _frozen_array(self.intensity)
        if len(mz) != len(intensity):
            raise ValueError(f"谱图 m/z 与强度长度不一致: {len(mz)} != {len(intensity)}")
        object.__setattr__(self, 'mz', mz)
        object.__setattr__(self, 'intensity', intensity)
        object.__setattr__(self, 'rt', float(self.rt))
        object.__setattr__(self, 'ms_level', int(self.ms_level))
        if self.drift_time is not None:
            object.__setattr__(self, 'drift_time', float(self.drift_time))

    @property
    def point_count(self) -> int:
        return len(self.mz)

    def total_intensity(self) -> float:
        """全质量范围总离子强度"""
        return float(np.sum(self.intensity))

    def intensity_in_range(self, mz_range: Optional[Tuple[float, float]]) -> float:
        """m/z 闭区间内的强度之和，None 表示全范围"""
        if mz_range is None:
            return self.total_intensity()
        mask = (self.mz >= mz_range[0]) & (self.mz <= mz_range[1])
        return float(np.sum(self.intensity[mask]))


@dataclass(frozen=True, eq=False)
class Curve:
    """一维强度曲线（漂移时间/TIC/XIC/基线/拟合）"""

    curve_id: str
    curve_type: str
    x: np.ndarray
    y: np.ndarray

    # 轴标签
    x_label: str = "Retention Time"
    y_label: str = "Intensity"
    x_unit: str = "min"
    y_unit: str = "counts"

    # 来源 m/z 窗口
    mz_window: Optional[Tuple[float, float]] = None

    metadata: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        x = _frozen_array(self.x)
        y = _frozen_array(self.y)
        if len(x) != len(y):
            raise ValueError(f"曲线 x 与 y 长度不一致: {len(x)} != {len(y)}")
        object.__setattr__(self, 'x', x)
        object.__setattr__(self, 'y', y)
        if self.mz_window is not None:
            object.__setattr__(self, 'mz_window', (float(self.mz_window[0]), float(self.mz_window[1])))

    @property
    def point_count(self) -> int:
        """数据点数量"""
        return len(self.x)

    @property
    def is_empty(self) -> bool:
        return self.point_count == 0

    @property
    def x_min(self) -> float:
        return float(np.min(self.x)) if self.point_count else float('nan')

    @property
    def x_max(self) -> float:
        return float(np.max(self.x)) if self.point_count else float('nan')

    @property
    def y_min(self) -> float:
        return float(np.min(self.y)) if self.point_count else float('nan')

    @property
    def y_max(self) -> float:
        return float(np.max(self.y)) if self.point_count else float('nan')

    @property
    def x_range(self) -> Tuple[float, float]:
        """X轴范围"""
        return (self.x_min, self.x_max)

    def total_area(self) -> float:
        """总面积（梯形积分）"""
        if self.point_count < 2:
            return 0.0
        return float(np.sum(np.diff(self.x) * (self.y[1:] + self.y[:-1]) / 2.0))

    def derive(self, curve_type: str, y: Any, **metadata: Any) -> 'Curve':
        """以相同x轴生成新曲线（基线、校正、拟合曲线）"""
        merged = dict(self.metadata)
        merged.update(metadata)
        merged['source_curve_id'] = self.curve_id
        return Curve(
            curve_id=new_id(curve_type),
            curve_type=curve_type,
            x=self.x,
            y=y,
            x_label=self.x_label,
            y_label=self.y_label,
            x_unit=self.x_unit,
            y_unit=self.y_unit,
            mz_window=self.mz_window,
            metadata=merged,
        )

    def to_dict(self) -> Dict[str, Any]:
        """转换为字典格式（用于序列化）"""
        return {
            'curve_id': self.curve_id,
            'curve_type': self.curve_type,
            'x': self.x.tolist(),
            'y': self.y.tolist(),
            'x_label': self.x_label,
            'y_label': self.y_label,
            'x_unit': self.x_unit,
            'y_unit': self.y_unit,
            'mz_window': list(self.mz_window) if self.mz_window else None,
            'metadata': dict(self.metadata),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Curve':
        """从字典创建Curve对象"""
        data = dict(data)
        if data.get('mz_window') is not None:
            data['mz_window'] = tuple(data['mz_window'])
        return cls(**data)


@dataclass(frozen=True)
class Peak:
    """峰数据结构 - 作为曲线分析的结果"""

    peak_id: str
    curve_id: str  # 所属曲线ID（只保存标识，不持有曲线引用）

    center: float
    amplitude: float
    fwhm: float  # 半峰宽
    area: float = 0.0

    rsquared: float = 0.0  # 拟合优度
    start: float = 0.0  # 峰起点
    end: float = 0.0  # 峰终点

    quality_score: float = 0.0  # [0,1]
    overlap_resolved: bool = False

    # 置信度、不对称因子等诊断信息
    metadata: Dict[str, Any] = field(default_factory=dict)

    def updated(self, **changes: Any) -> 'Peak':
        """返回修改后的新峰"""
        return replace(self, **changes)

    def with_metadata(self, **items: Any) -> 'Peak':
        """返回合并了元数据的新峰"""
        merged = dict(self.metadata)
        merged.update(items)
        return replace(self, metadata=merged)

    @property
    def confidence(self) -> float:
        return float(self.metadata.get('confidence', 0.0))

    @property
    def asymmetry(self) -> float:
        return float(self.metadata.get('asymmetry', 1.0))

    def to_dict(self) -> Dict[str, Any]:
        """转换为字典格式"""
        return {
            'peak_id': self.peak_id,
            'curve_id': self.curve_id,
            'center': self.center,
            'amplitude': self.amplitude,
            'fwhm': self.fwhm,
            'area': self.area,
            'rsquared': self.rsquared,
            'start': self.start,
            'end': self.end,
            'quality_score': self.quality_score,
            'overlap_resolved': self.overlap_resolved,
            'metadata': dict(self.metadata),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Peak':
        """从字典创建Peak对象"""
        return cls(**data)


@dataclass
class Container:
    """一次采集的数据容器：元数据 + 原始谱图 + 派生曲线 + 派生峰"""

    metadata: Dict[str, Any] = field(default_factory=dict)
    spectra: List[Spectrum] = field(default_factory=list)
    curves: List[Curve] = field(default_factory=list)
    peaks: List[Peak] = field(default_factory=list)

    def copy(self) -> 'Container':
        """结构共享的副本：新的列表和字典，记录本身不可变可共享"""
        return Container(
            metadata=dict(self.metadata),
            spectra=list(self.spectra),
            curves=list(self.curves),
            peaks=list(self.peaks),
        )

    def with_curves(self, curves: Iterable[Curve]) -> 'Container':
        container = self.copy()
        container.curves.extend(curves)
        return container

    def with_peaks(self, peaks: Iterable[Peak]) -> 'Container':
        container = self.copy()
        container.peaks.extend(peaks)
        return container

    def get_curve(self, curve_id: str) -> Optional[Curve]:
        for curve in self.curves:
            if curve.curve_id == curve_id:
                return curve
        return None

    @property
    def spectrum_count(self) -> int:
        return len(self.spectra)


def build_container(spectra: Iterable[Spectrum], source: Optional[str] = None) -> Container:
    """
    由谱图列表构建容器并填充范围元数据

    参数:
    - spectra: 按采集顺序排列的谱图
    - source: 数据来源标识（文件路径）
    """
    spectra = list(spectra)
    metadata: Dict[str, Any] = {
        'file_path': source,
        'spectrum_count': len(spectra),
    }

    if spectra:
        rts = [s.rt for s in spectra]
        metadata['rt_min'] = float(min(rts))
        metadata['rt_max'] = float(max(rts))

        non_empty = [s.mz for s in spectra if s.point_count]
        if non_empty:
            metadata['mz_min'] = float(min(np.min(mz) for mz in non_empty))
            metadata['mz_max'] = float(max(np.max(mz) for mz in non_empty))

        drift_times = [s.drift_time for s in spectra if s.drift_time is not None]
        if drift_times:
            metadata['dt_min'] = float(min(drift_times))
            metadata['dt_max'] = float(max(drift_times))

        metadata['ms_levels'] = sorted({s.ms_level for s in spectra})

    return Container(metadata=metadata, spectra=spectra)
