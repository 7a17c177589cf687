"""
组件配置 - 每个组件一个带验证的配置模型

开放的键值配置只存在于对外接口；进入核心逻辑前统一经过
validate_config 转换为类型化模型。方法名保持为字符串，由组件注册表解析。
"""

import os
from typing import Any, Dict, Mapping, Optional, Tuple, Type

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from .errors import ConfigValidationError, UnknownMethodError


class _StrictModel(BaseModel):
    model_config = ConfigDict(extra="forbid")


def _check_range(value: Optional[Tuple[float, float]], name: str) -> Optional[Tuple[float, float]]:
    if value is not None and value[0] > value[1]:
        raise ValueError(f"{name} 下限大于上限: {value}")
    return value


class ExtractionFilter(_StrictModel):
    """曲线提取过滤条件；范围为 None 表示全范围"""

    mz_range: Optional[Tuple[float, float]] = None
    rt_range: Optional[Tuple[float, float]] = None
    ms_level: Optional[int] = Field(default=None, ge=1)

    @field_validator('mz_range')
    @classmethod
    def _validate_mz(cls, value):
        return _check_range(value, 'mz_range')

    @field_validator('rt_range')
    @classmethod
    def _validate_rt(cls, value):
        return _check_range(value, 'rt_range')

    @classmethod
    def full_range(cls, ms_level: Optional[int] = None) -> 'ExtractionFilter':
        return cls(ms_level=ms_level)


class DetectionConfig(_StrictModel):
    """峰检测参数"""

    method: str = "peak_finder"
    sensitivity: float = Field(default=0.05, ge=0.0, le=1.0, description="动态阈值占信号跨度的比例")
    threshold_multiplier: float = Field(default=3.0, ge=0.0, description="噪声阈值倍数")
    min_peak_width: float = Field(default=0.0, ge=0.0)
    max_peak_width: float = Field(default=10.0, gt=0.0)
    resolve_shoulders: bool = True
    cwt_min_width: int = Field(default=1, ge=1)
    cwt_max_width: int = Field(default=10, ge=1)

    @model_validator(mode='after')
    def _check_widths(self):
        if self.min_peak_width > self.max_peak_width:
            raise ValueError("min_peak_width 不能大于 max_peak_width")
        if self.cwt_min_width > self.cwt_max_width:
            raise ValueError("cwt_min_width 不能大于 cwt_max_width")
        return self


class FittingConfig(_StrictModel):
    """峰拟合参数"""

    method: str = "gaussian"
    optimizer: str = "levenberg_marquardt"
    max_iterations: int = Field(default=200, ge=1)
    extend_range: float = Field(default=3.0, gt=0.0, description="拟合窗口为 FWHM 的倍数")


class OverlapConfig(_StrictModel):
    """重叠峰处理参数"""

    method: str = "auto"
    overlap_tolerance: float = Field(default=0.1, ge=0.0, lt=1.0)
    region_extension: float = Field(default=3.0, gt=0.0, description="重叠区域向两侧扩展的 FWHM 倍数")
    sharpen_factor: float = Field(default=0.5, ge=0.0)


class ScoringConfig(_StrictModel):
    """质量评分权重"""

    rsquared_weight: float = Field(default=0.4, ge=0.0, le=1.0)
    symmetry_weight: float = Field(default=0.2, ge=0.0, le=1.0)
    confidence_weight: float = Field(default=0.2, ge=0.0, le=1.0)
    resolution_weight: float = Field(default=0.2, ge=0.0, le=1.0)
    symmetry_tolerance: float = Field(default=0.2, ge=0.0)
    non_convergence_penalty: float = Field(default=0.5, ge=0.0, le=1.0)

    @model_validator(mode='after')
    def _check_weights(self):
        total = self.rsquared_weight + self.symmetry_weight + self.confidence_weight + self.resolution_weight
        if abs(total - 1.0) > 1e-6:
            raise ValueError(f"评分权重之和必须为1，当前为 {total:.4f}")
        return self


class PeakAnalysisConfig(_StrictModel):
    """峰分析（检测 → 拟合 → 重叠 → 评分）完整配置"""

    detection: DetectionConfig = Field(default_factory=DetectionConfig)
    fitting: FittingConfig = Field(default_factory=FittingConfig)
    overlap: OverlapConfig = Field(default_factory=OverlapConfig)
    scoring: ScoringConfig = Field(default_factory=ScoringConfig)


class BaselineConfig(_StrictModel):
    """基线校正参数"""

    method: str = "asymmetric_least_squares"
    degree: int = Field(default=2, ge=0, le=10)
    window_size: int = Field(default=51, ge=1)
    lam: float = Field(default=1e5, gt=0.0)
    p: float = Field(default=0.01, gt=0.0, lt=1.0)
    max_iterations: int = Field(default=10, ge=1)
    tolerance: float = Field(default=1e-6, gt=0.0)


class ProcessingStrategyModel(_StrictModel):
    """处理策略的配置形式（见 strategy.strategy_controller.ProcessingStrategy）"""

    name: str
    description: str = ""
    version: str = "1.0"
    peak_detection: str = "peak_finder"
    overlap_processing: str = "auto"
    fitting_method: str = "gaussian"
    optimization_algorithm: str = "levenberg_marquardt"
    advanced_algorithm: Optional[str] = None
    post_processing: Optional[str] = None
    configuration: Dict[str, Any] = Field(default_factory=dict)


class StrategyConfig(_StrictModel):
    """策略控制器的调用配置"""

    mode: str = Field(default="automatic", pattern="^(automatic|manual|hybrid|predefined)$")
    strategy: Optional[ProcessingStrategyModel] = None
    strategy_name: Optional[str] = None
    overrides: Dict[str, str] = Field(default_factory=dict)
    analysis: PeakAnalysisConfig = Field(default_factory=PeakAnalysisConfig)

    @model_validator(mode='after')
    def _check_mode_input(self):
        if self.mode == "manual" and self.strategy is None:
            raise ValueError("manual 模式需要提供 strategy")
        if self.mode == "predefined" and not self.strategy_name:
            raise ValueError("predefined 模式需要提供 strategy_name")
        return self


class ContextSettings(_StrictModel):
    """处理上下文设置"""

    cache_max_size: int = Field(default=16, ge=1)
    cache_ttl_seconds: float = Field(default=3600.0, gt=0.0)
    max_workers: int = Field(default=4, ge=1)
    log_level: Optional[str] = None

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> 'ContextSettings':
        """从 PEAKANALYZER_* 环境变量读取设置"""
        environ = os.environ if environ is None else environ
        values: Dict[str, Any] = {}
        for name in cls.model_fields:
            key = f"PEAKANALYZER_{name.upper()}"
            if key in environ:
                values[name] = environ[key]
        return validate_config('context', values)


CONFIG_SCHEMAS: Dict[str, Type[BaseModel]] = {
    'extraction': ExtractionFilter,
    'detection': DetectionConfig,
    'fitting': FittingConfig,
    'overlap': OverlapConfig,
    'scoring': ScoringConfig,
    'peak_analysis': PeakAnalysisConfig,
    'baseline': BaselineConfig,
    'strategy': StrategyConfig,
    'processing_strategy': ProcessingStrategyModel,
    'context': ContextSettings,
}


def _schema_model(schema_name: str) -> Type[BaseModel]:
    if schema_name not in CONFIG_SCHEMAS:
        raise UnknownMethodError(schema_name, "ConfigSchema", list(CONFIG_SCHEMAS))
    return CONFIG_SCHEMAS[schema_name]


def validate_config(schema_name: str, payload: Any) -> Any:
    """
    将开放的配置载荷转换为类型化模型

    参数:
    - schema_name: CONFIG_SCHEMAS 中的名称
    - payload: dict、已构建的模型或 None（使用默认值）

    返回:
    - 对应的配置模型实例
    """
    model = _schema_model(schema_name)
    if isinstance(payload, model):
        return payload
    if isinstance(payload, BaseModel):
        payload = payload.model_dump()
    try:
        return model.model_validate(payload or {})
    except ValidationError as e:
        errors = [
            {'loc': list(err.get('loc', ())), 'msg': err.get('msg', ''), 'type': err.get('type', '')}
            for err in e.errors()
        ]
        raise ConfigValidationError(schema_name, errors) from e


def get_config_schema(schema_name: str) -> Dict[str, Any]:
    """获取配置的 JSON schema"""
    return _schema_model(schema_name).model_json_schema()


def list_config_schemas() -> list:
    return sorted(CONFIG_SCHEMAS)
