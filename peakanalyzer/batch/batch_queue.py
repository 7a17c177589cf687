"""
批量处理队列 - 按FIFO顺序逐个处理文件

同一时刻只有一个任务在执行；取消是协作式的，只在任务之间检查，
正在执行的任务总会完成（或失败）后才生效。单个文件失败不影响其他文件。
"""

import logging
import threading
import time
import uuid
from collections import deque
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Deque, Dict, Iterable, List, Optional

from ..core.config import validate_config
from ..core.context import ProcessingContext
from ..core.curve import Container
from ..loaders.table_loader import ContainerLoader

logger = logging.getLogger(__name__)


class TaskStatus(str, Enum):
    PENDING = "Pending"
    PROCESSING = "Processing"
    COMPLETED = "Completed"
    FAILED = "Failed"
    CANCELLED = "Cancelled"


@dataclass
class BatchTask:
    """批量处理任务"""

    file_path: str
    task_id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])
    status: TaskStatus = TaskStatus.PENDING
    created_at: datetime = field(default_factory=datetime.now)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    error: Optional[str] = None
    result: Optional[Container] = None
    processing_time_ms: float = 0.0

    def summary(self) -> Dict[str, Any]:
        peaks = self.result.peaks if self.result is not None else []
        return {
            'task_id': self.task_id,
            'file_path': self.file_path,
            'status': self.status.value,
            'error': self.error,
            'curves_count': len(self.result.curves) if self.result is not None else 0,
            'peaks_count': len(peaks),
            'quality_score': (sum(p.quality_score for p in peaks) / len(peaks)) if peaks else None,
            'processing_time_ms': self.processing_time_ms,
        }


class BatchQueue:
    """批量处理队列"""

    def __init__(self, context: ProcessingContext, loader: Optional[ContainerLoader] = None,
                 configuration: Optional[Dict[str, Any]] = None):
        """
        参数:
        - context: 处理上下文
        - loader: 文件加载器，None 时使用上下文的加载器
        - configuration: 每个文件的处理流程
            - curve_type: 提取的曲线类型（默认 tic）
            - filter: 提取过滤条件
            - baseline: 基线校正参数，None 表示不校正
            - analysis: 峰分析配置
            - strategy: 策略配置；提供时代替 analysis 走策略控制器
        """
        self.context = context
        self.loader = loader
        self.configuration = dict(configuration or {})

        # 处理开始前验证配置
        validate_config('extraction', self.configuration.get('filter'))
        if self.configuration.get('baseline') is not None:
            validate_config('baseline', self.configuration['baseline'])
        if self.configuration.get('strategy') is not None:
            validate_config('strategy', self.configuration['strategy'])
        else:
            validate_config('peak_analysis', self.configuration.get('analysis'))

        self.pending: Deque[BatchTask] = deque()
        self.completed: List[BatchTask] = []
        self.failed: List[BatchTask] = []
        self.cancelled: List[BatchTask] = []
        self.current_task: Optional[BatchTask] = None

        self._lock = threading.Lock()
        self._cancel_event = threading.Event()
        self._executor: Optional[ThreadPoolExecutor] = None

    def add_task(self, file_path: str) -> BatchTask:
        task = BatchTask(file_path=str(file_path))
        with self._lock:
            self.pending.append(task)
        return task

    def add_tasks(self, file_paths: Iterable[str]) -> List[BatchTask]:
        return [self.add_task(path) for path in file_paths]

    @property
    def is_processing(self) -> bool:
        return self.current_task is not None

    def _next_task(self) -> Optional[BatchTask]:
        with self._lock:
            if self._cancel_event.is_set():
                while self.pending:
                    task = self.pending.popleft()
                    task.status = TaskStatus.CANCELLED
                    self.cancelled.append(task)
                return None
            if not self.pending:
                return None
            self.current_task = self.pending.popleft()
            return self.current_task

    def run(self) -> Dict[str, int]:
        """同步处理队列中的所有任务，返回统计"""
        while True:
            task = self._next_task()
            if task is None:
                break
            self._run_task(task)
            with self._lock:
                self.current_task = None
        return self.summary()

    def start(self) -> Future:
        """在单线程执行器中运行队列"""
        if self._executor is None:
            self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="peakanalyzer-batch")
        return self._executor.submit(self.run)

    def cancel(self) -> None:
        """请求取消：当前任务完成后，剩余任务全部标记为 Cancelled"""
        self._cancel_event.set()
        logger.info("批量处理已请求取消")

    def shutdown(self) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=True)
            self._executor = None

    def _run_task(self, task: BatchTask) -> None:
        task.status = TaskStatus.PROCESSING
        task.started_at = datetime.now()
        start = time.perf_counter()
        logger.info("处理文件: %s", task.file_path)

        try:
            task.result = self.process_file(task.file_path)
        except Exception as e:
            task.status = TaskStatus.FAILED
            task.error = str(e)
            logger.exception("文件处理失败: %s", task.file_path)
        else:
            task.status = TaskStatus.COMPLETED
        finally:
            task.completed_at = datetime.now()
            task.processing_time_ms = (time.perf_counter() - start) * 1000.0

        with self._lock:
            (self.completed if task.status == TaskStatus.COMPLETED else self.failed).append(task)

    def process_file(self, file_path: str) -> Container:
        """单个文件的完整流程：加载 → 提取 → 基线校正 → 峰分析"""
        config = self.configuration
        container = self.context.get_container(file_path, self.loader)

        extraction = self.context.extract_curves(container, config.get('curve_type', 'tic'), config.get('filter'))
        curves = list(extraction.curves)
        peaks = []

        for curve in extraction.curves:
            target = curve
            if config.get('baseline') is not None:
                baseline = self.context.correct_baseline(curve, params=config['baseline'])
                curves.extend([baseline.baseline_curve, baseline.corrected_curve])
                target = baseline.corrected_curve

            if config.get('strategy') is not None:
                result = self.context.process_strategy(target, config['strategy']).analysis
            else:
                result = self.context.analyze_peaks(target, config.get('analysis'))
            peaks.extend(result.peaks)
            if result.fitted_curve is not None:
                curves.append(result.fitted_curve)

        return container.with_curves(curves).with_peaks(peaks)

    def summary(self) -> Dict[str, int]:
        with self._lock:
            return {
                'pending': len(self.pending),
                'processing': 1 if self.current_task is not None else 0,
                'completed': len(self.completed),
                'failed': len(self.failed),
                'cancelled': len(self.cancelled),
            }
