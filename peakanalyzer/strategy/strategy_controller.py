"""
策略控制器 - 在四种处理模式下选择并组合处理组件

模式:
- automatic: 根据曲线/峰特征推断策略
- manual: 调用方提供完整策略
- hybrid: 自动选择后按组件槽位覆盖
- predefined: 按名称选择预定义策略

所有操作在同一把锁上串行执行；配置验证在取锁之前完成。
"""

import logging
import threading
from dataclasses import asdict, dataclass, field, replace
from enum import Enum
from typing import Any, Dict, List, Optional

import numpy as np

from ..core.config import PeakAnalysisConfig, ProcessingStrategyModel, StrategyConfig, get_config_schema, validate_config
from ..core.curve import Curve, Peak
from ..core.errors import ControllerNotInitializedError, UnknownMethodError
from ..peak_analysis.overlap_resolver import max_overlap_ratio
from ..peak_analysis.peak_analyzer import AnalysisResult, PeakAnalyzer
from ..peak_analysis.peak_detector import estimate_noise
from ..peak_analysis.quality_scorer import QualityScorer
from .component_registry import ComponentDescriptor, ComponentRegistry, ComponentType, build_default_registry

logger = logging.getLogger(__name__)

# 自动模式阈值
LOW_OVERLAP = 0.1
MEDIUM_OVERLAP = 0.5
LOW_SNR = 10.0
HIGH_COMPLEXITY = 0.3

STRATEGY_SLOTS = (
    'peak_detection',
    'overlap_processing',
    'fitting_method',
    'optimization_algorithm',
    'advanced_algorithm',
    'post_processing',
)


class ProcessingMode(str, Enum):
    AUTOMATIC = "automatic"
    MANUAL = "manual"
    HYBRID = "hybrid"
    PREDEFINED = "predefined"


@dataclass(frozen=True)
class ProcessingStrategy:
    """处理策略 - 值对象，按值传递和比较"""

    name: str
    description: str = ""
    version: str = "1.0"
    peak_detection: str = "peak_finder"
    overlap_processing: str = "auto"
    fitting_method: str = "gaussian"
    optimization_algorithm: str = "levenberg_marquardt"
    advanced_algorithm: Optional[str] = None
    post_processing: Optional[str] = None
    configuration: Dict[str, Any] = field(default_factory=dict)

    def with_overrides(self, overrides: Dict[str, str]) -> 'ProcessingStrategy':
        """按组件槽位覆盖；未知键写入配置载荷"""
        slots = {k: v for k, v in overrides.items() if k in STRATEGY_SLOTS}
        extra = {k: v for k, v in overrides.items() if k not in STRATEGY_SLOTS}
        configuration = dict(self.configuration)
        configuration.update(extra)
        return replace(self, configuration=configuration, **slots)

    def component_slots(self) -> Dict[ComponentType, Optional[str]]:
        return {
            ComponentType.PEAK_DETECTOR: self.peak_detection,
            ComponentType.OVERLAP_PROCESSOR: self.overlap_processing,
            ComponentType.FITTING_METHOD: self.fitting_method,
            ComponentType.PARAMETER_OPTIMIZER: self.optimization_algorithm,
            ComponentType.ADVANCED_ALGORITHM: self.advanced_algorithm,
            ComponentType.POST_PROCESSOR: self.post_processing,
        }

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_model(cls, model: ProcessingStrategyModel) -> 'ProcessingStrategy':
        return cls(**model.model_dump())


PREDEFINED_STRATEGIES = (
    ProcessingStrategy(
        name="simple_peaks", description="简单峰处理策略",
        peak_detection="simple", overlap_processing="none",
        fitting_method="gaussian", optimization_algorithm="levenberg_marquardt",
    ),
    ProcessingStrategy(
        name="overlapping_peaks", description="重叠峰处理策略",
        peak_detection="peak_finder", overlap_processing="fbf",
        fitting_method="gaussian", optimization_algorithm="levenberg_marquardt",
    ),
    ProcessingStrategy(
        name="complex_peaks", description="复杂峰处理策略",
        peak_detection="peak_finder", overlap_processing="extreme_overlap",
        fitting_method="gaussian", optimization_algorithm="simulated_annealing",
        advanced_algorithm="emg_algorithm",
    ),
    ProcessingStrategy(
        name="high_precision", description="高精度处理策略",
        peak_detection="cwt", overlap_processing="sharpen_cwt",
        fitting_method="gaussian", optimization_algorithm="levenberg_marquardt",
        advanced_algorithm="bi_gaussian", post_processing="quality_validation",
    ),
)


@dataclass
class CurveCharacteristics:
    """自动模式使用的曲线/峰特征"""

    peak_count: int
    overlap_ratio: float
    signal_to_noise: float
    complexity: float

    @classmethod
    def from_peaks(cls, peaks: List[Peak], curve: Curve) -> 'CurveCharacteristics':
        if not peaks:
            return cls(0, 0.0, 0.0, 0.0)

        noise = estimate_noise(np.asarray(curve.y))
        amplitude = max(p.amplitude for p in peaks)
        snr = amplitude / noise if noise > 0 else float('inf')

        widths = np.array([p.fwhm for p in peaks], dtype=float)
        width_variation = float(np.std(widths) / np.mean(widths)) if len(peaks) > 1 and np.mean(widths) > 0 else 0.0
        asymmetry = float(np.mean([abs(p.asymmetry - 1.0) for p in peaks]))

        return cls(
            peak_count=len(peaks),
            overlap_ratio=max_overlap_ratio(peaks),
            signal_to_noise=snr,
            complexity=(width_variation + asymmetry) / 2.0,
        )

    def recommended_strategy(self) -> str:
        """按重叠程度、信噪比和复杂度推荐预定义策略名"""
        if self.peak_count == 0 or self.overlap_ratio < LOW_OVERLAP:
            return "simple_peaks"
        if self.overlap_ratio < MEDIUM_OVERLAP:
            return "overlapping_peaks"
        if self.signal_to_noise < LOW_SNR or self.complexity > HIGH_COMPLEXITY:
            return "complex_peaks"
        return "overlapping_peaks"


@dataclass
class StrategyResult:
    """策略处理结果"""

    strategy: ProcessingStrategy
    mode: ProcessingMode
    analysis: AnalysisResult
    characteristics: Optional[CurveCharacteristics] = None

    @property
    def peaks(self) -> List[Peak]:
        return self.analysis.peaks


class StrategyController:
    """策略控制器"""

    def __init__(self, registry: Optional[ComponentRegistry] = None):
        self.registry = registry or build_default_registry()
        self._strategies: Dict[str, ProcessingStrategy] = {}
        self._lock = threading.Lock()
        self._initialized = False

    def initialize(self) -> 'StrategyController':
        """加载预定义策略；重复调用无副作用"""
        with self._lock:
            if not self._initialized:
                for strategy in PREDEFINED_STRATEGIES:
                    self.registry.validate_strategy_components(strategy.component_slots())
                    self._strategies[strategy.name] = strategy
                self._initialized = True
                logger.debug("策略控制器初始化完成: %d 个预定义策略", len(self._strategies))
        return self

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    def _require_initialized(self):
        if not self._initialized:
            raise ControllerNotInitializedError()

    # ===== 处理 =====
    def process(self, peaks: Optional[List[Peak]], curve: Curve, config: Any = None) -> List[Peak]:
        """
        统一处理入口

        参数:
        - peaks: 已有的峰（可为空，为空时由策略的检测器检测）
        - curve: 曲线
        - config: StrategyConfig 或等价字典（mode + 模式相关输入）

        返回:
        - 处理后的峰列表
        """
        return self.process_with_result(peaks, curve, config).peaks

    def process_with_result(self, peaks: Optional[List[Peak]], curve: Curve, config: Any = None) -> StrategyResult:
        self._require_initialized()
        strategy_config: StrategyConfig = validate_config('strategy', config)

        with self._lock:
            mode = ProcessingMode(strategy_config.mode)
            strategy, characteristics = self._select_strategy(mode, strategy_config, peaks, curve)
            self.registry.validate_strategy_components(strategy.component_slots())
            analysis_config = self._merge_analysis_config(strategy_config.analysis, strategy)

            analyzer = self._build_analyzer(strategy, analysis_config)
            result = analyzer.analyze(curve, list(peaks) if peaks else None)
            result_peaks = self._post_stages(strategy, analyzer, curve, result.peaks)

        result.peaks = result_peaks
        result.fitted_curve = analyzer.build_fitted_curve(curve, result_peaks)
        result.diagnostics['strategy'] = strategy.name
        result.diagnostics['mode'] = mode.value
        logger.debug("策略 %s (%s) 处理完成: %d 个峰", strategy.name, mode.value, len(result_peaks))
        return StrategyResult(strategy, mode, result, characteristics)

    def select_strategy(self, peaks: Optional[List[Peak]], curve: Curve, config: Any = None) -> ProcessingStrategy:
        """只选择策略，不执行处理"""
        self._require_initialized()
        strategy_config = validate_config('strategy', config)
        with self._lock:
            return self._select_strategy(ProcessingMode(strategy_config.mode), strategy_config, peaks, curve)[0]

    def _select_strategy(self, mode: ProcessingMode, config: StrategyConfig,
                         peaks: Optional[List[Peak]], curve: Curve):
        characteristics = None
        if mode == ProcessingMode.MANUAL:
            strategy = ProcessingStrategy.from_model(config.strategy)
        elif mode == ProcessingMode.PREDEFINED:
            strategy = self._get_strategy(config.strategy_name)
        else:
            characteristics = self._characterize(peaks, curve, config.analysis)
            strategy = self._get_strategy(characteristics.recommended_strategy())
            if mode == ProcessingMode.HYBRID:
                strategy = strategy.with_overrides(config.overrides)
        return strategy, characteristics

    def _characterize(self, peaks: Optional[List[Peak]], curve: Curve,
                      analysis: PeakAnalysisConfig) -> CurveCharacteristics:
        if not peaks:
            detector = self.registry.create(ComponentType.PEAK_DETECTOR, analysis.detection.method)
            peaks = detector.detect_peaks(curve, analysis.detection)
        return CurveCharacteristics.from_peaks(list(peaks), curve)

    def _get_strategy(self, name: Optional[str]) -> ProcessingStrategy:
        if name not in self._strategies:
            raise UnknownMethodError(str(name), "ProcessingStrategy", list(self._strategies))
        return self._strategies[name]

    @staticmethod
    def _merge_analysis_config(analysis: PeakAnalysisConfig, strategy: ProcessingStrategy) -> PeakAnalysisConfig:
        """策略配置载荷中的 detection/fitting/overlap/scoring 段覆盖调用配置"""
        merged = analysis.model_dump()
        for section in ('detection', 'fitting', 'overlap', 'scoring'):
            if isinstance(strategy.configuration.get(section), dict):
                merged[section].update(strategy.configuration[section])
        merged['detection']['method'] = strategy.peak_detection
        merged['fitting']['method'] = strategy.fitting_method
        merged['fitting']['optimizer'] = strategy.optimization_algorithm
        merged['overlap']['method'] = strategy.overlap_processing
        return validate_config('peak_analysis', merged)

    def _build_analyzer(self, strategy: ProcessingStrategy, config: PeakAnalysisConfig) -> PeakAnalyzer:
        """通过注册表构建分析器组件"""
        optimizer = self.registry.create(ComponentType.PARAMETER_OPTIMIZER, strategy.optimization_algorithm)
        fitter = self.registry.create(
            ComponentType.FITTING_METHOD, strategy.fitting_method,
            optimizer=optimizer,
            max_iterations=config.fitting.max_iterations,
            extend_range=config.fitting.extend_range,
        )
        detector = self.registry.create(ComponentType.PEAK_DETECTOR, strategy.peak_detection)
        overlap = self.registry.create(
            ComponentType.OVERLAP_PROCESSOR, strategy.overlap_processing,
            fitter=fitter, config=config.overlap,
        )
        return PeakAnalyzer(config, detector=detector, fitter=fitter, overlap_processor=overlap)

    def _post_stages(self, strategy: ProcessingStrategy, analyzer: PeakAnalyzer,
                     curve: Curve, peaks: List[Peak]) -> List[Peak]:
        """高级算法精修（之后重新评分）和后处理"""
        if strategy.advanced_algorithm:
            algorithm = self.registry.create(
                ComponentType.ADVANCED_ALGORITHM, strategy.advanced_algorithm, fitter=analyzer.fitter
            )
            peaks = QualityScorer(analyzer.config.scoring).score(algorithm.apply(curve, peaks))

        if strategy.post_processing:
            params = strategy.configuration.get('post_processor_params', {})
            processor = self.registry.create(ComponentType.POST_PROCESSOR, strategy.post_processing, **params)
            peaks = processor.apply(curve, peaks)
        return peaks

    # ===== 自省 =====
    def list_components(self, component_type: Optional[ComponentType] = None) -> List[ComponentDescriptor]:
        self._require_initialized()
        with self._lock:
            return self.registry.list_components(component_type)

    def get_component_descriptor(self, component_type: ComponentType, name: str) -> ComponentDescriptor:
        self._require_initialized()
        with self._lock:
            return self.registry.get_descriptor(component_type, name)

    def list_predefined_strategies(self) -> List[ProcessingStrategy]:
        self._require_initialized()
        with self._lock:
            return list(self._strategies.values())

    def get_predefined_strategy(self, name: str) -> ProcessingStrategy:
        self._require_initialized()
        with self._lock:
            return self._get_strategy(name)

    def register_strategy(self, strategy: ProcessingStrategy, replace_existing: bool = False) -> None:
        """注册自定义命名策略"""
        self._require_initialized()
        with self._lock:
            self.registry.validate_strategy_components(strategy.component_slots())
            if strategy.name in self._strategies and not replace_existing:
                raise ValueError(f"策略已存在: {strategy.name}")
            self._strategies[strategy.name] = strategy

    def validate_config(self, schema_name: str, payload: Any) -> Any:
        """按名称验证配置，失败时抛出 ConfigValidationError"""
        self._require_initialized()
        return validate_config(schema_name, payload)

    def get_config_schema(self, schema_name: str) -> Dict[str, Any]:
        self._require_initialized()
        return get_config_schema(schema_name)
