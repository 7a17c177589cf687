"""
处理上下文 - 显式传递的共享状态

上下文持有容器缓存、组件注册表、策略控制器（延迟创建）和线程池。
除缓存和控制器外，每次提取/校正/分析调用都是互不共享可变状态的独立工作单元。
"""

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, Dict, List, Optional, Union

from ..cache.container_cache import ContainerCache
from ..extraction.extractors import ExtractionResult, get_extractor
from ..loaders.table_loader import ContainerLoader, TableLoader
from ..peak_analysis.baseline_corrector import BaselineCorrector, BaselineResult
from ..peak_analysis.peak_analyzer import AnalysisResult, PeakAnalyzer
from ..strategy.component_registry import ComponentRegistry, build_default_registry
from ..strategy.strategy_controller import StrategyController, StrategyResult
from .config import ContextSettings, validate_config
from .curve import Container, Curve, Peak
from .data_processor import DataProcessor, ProcessingOutput
from .errors import ExtractionError
from .log import setup_logging

logger = logging.getLogger(__name__)


class ProcessingContext:
    """处理上下文"""

    def __init__(self, settings: Any = None,
                 registry: Optional[ComponentRegistry] = None,
                 loader: Optional[ContainerLoader] = None):
        """
        参数:
        - settings: ContextSettings 或等价字典；None 时读取 PEAKANALYZER_* 环境变量
        - registry: 组件注册表，None 时使用内置组件
        - loader: 缓存未命中时使用的加载器
        """
        self.settings: ContextSettings = (
            ContextSettings.from_env() if settings is None else validate_config('context', settings)
        )
        if self.settings.log_level:
            setup_logging(self.settings.log_level)

        self.cache = ContainerCache(self.settings.cache_max_size, self.settings.cache_ttl_seconds)
        self.registry = registry or build_default_registry()
        self.loader = loader or TableLoader()
        self.processor = DataProcessor(self)
        self.baseline_corrector = BaselineCorrector()

        self._controller: Optional[StrategyController] = None
        self._controller_lock = threading.Lock()
        self._executor: Optional[ThreadPoolExecutor] = None
        self._executor_lock = threading.Lock()
        self._closed = False

    # ===== 容器 =====
    def cache_container(self, key: str, container: Container) -> None:
        self.cache.put(key, container)

    def get_container(self, source: str, loader: Optional[ContainerLoader] = None) -> Container:
        """
        获取容器副本；缓存未命中时加载并写入缓存
        """
        container = self.cache.get(source)
        if container is not None:
            return container

        container = (loader or self.loader).load(source)
        self.cache.put(source, container)
        return container.copy()

    def _resolve_container(self, target: Union[str, Container]) -> Container:
        if isinstance(target, Container):
            return target
        return self.get_container(target)

    # ===== 提取 / 校正 / 分析 =====
    def extract_curves(self, target: Union[str, Container], curve_type: str,
                       filters: Any = None) -> ExtractionResult:
        """
        提取曲线；没有匹配数据时抛出 ExtractionError
        """
        extraction_filter = validate_config('extraction', filters)
        extractor = get_extractor(curve_type)
        container = self._resolve_container(target)

        result = extractor.extract(container, extraction_filter)
        if result.is_empty:
            raise ExtractionError(
                f"no curve data found for {curve_type} (过滤条件没有匹配到数据)",
                {
                    'curve_type': curve_type,
                    'filter': extraction_filter.model_dump(),
                    'source': container.metadata.get('file_path'),
                },
            )
        return result

    def correct_baseline(self, curve: Curve, method: Optional[str] = None, params: Any = None) -> BaselineResult:
        return self.baseline_corrector.correct(curve, method, params)

    def analyze_peaks(self, curve: Curve, config: Any = None,
                      candidates: Optional[List[Peak]] = None) -> AnalysisResult:
        return PeakAnalyzer(config).analyze(curve, candidates)

    # ===== 策略 =====
    @property
    def controller(self) -> StrategyController:
        """延迟创建并初始化的策略控制器"""
        with self._controller_lock:
            if self._controller is None:
                self._controller = StrategyController(self.registry).initialize()
            return self._controller

    def process_strategy(self, curve: Curve, config: Any = None,
                         peaks: Optional[List[Peak]] = None) -> StrategyResult:
        return self.controller.process_with_result(peaks, curve, config)

    # ===== 统一入口 =====
    def process(self, target: Union[str, Container, Curve], configuration: Dict[str, Any]) -> ProcessingOutput:
        return self.processor.process(target, configuration)

    def submit(self, target: Union[str, Container, Curve], configuration: Dict[str, Any]) -> Future:
        """在线程池中执行 process，返回 Future"""
        return self.executor.submit(self.process, target, configuration)

    @property
    def executor(self) -> ThreadPoolExecutor:
        with self._executor_lock:
            if self._closed:
                raise RuntimeError("处理上下文已关闭")
            if self._executor is None:
                self._executor = ThreadPoolExecutor(
                    max_workers=self.settings.max_workers, thread_name_prefix="peakanalyzer"
                )
            return self._executor

    def close(self) -> None:
        """等待正在执行的任务完成并释放资源"""
        with self._executor_lock:
            self._closed = True
            executor, self._executor = self._executor, None
        if executor is not None:
            executor.shutdown(wait=True)
        self.cache.clear()
        logger.debug("处理上下文已关闭")

    def __enter__(self) -> 'ProcessingContext':
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False
