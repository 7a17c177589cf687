"""
数据处理调度器 - 统一的 process(target, configuration) 入口

只负责按 configuration['operation'] 分派给上下文的具体操作，不包含算法实现。
"""

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Union

from .curve import Container, Curve, Peak
from .errors import ProcessingError, UnknownMethodError

if TYPE_CHECKING:
    from .context import ProcessingContext

logger = logging.getLogger(__name__)


@dataclass
class ProcessingOutput:
    """统一处理结果"""

    curves: List[Curve] = field(default_factory=list)
    peaks: List[Peak] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_container(self, base: Optional[Container] = None) -> Container:
        """将结果合并到容器副本中"""
        container = base.copy() if base is not None else Container()
        container.curves.extend(self.curves)
        container.peaks.extend(self.peaks)
        return container


class DataProcessor:
    """数据处理调度器"""

    OPERATIONS = ('extract', 'baseline', 'analyze', 'strategy')

    def __init__(self, context: 'ProcessingContext'):
        self.context = context
        self._dispatch = {
            'extract': self._dispatch_extract,
            'baseline': self._dispatch_baseline,
            'analyze': self._dispatch_analyze,
            'strategy': self._dispatch_strategy,
        }

    def process(self, target: Union[str, Container, Curve], configuration: Dict[str, Any]) -> ProcessingOutput:
        """
        处理入口

        参数:
        - target: 数据源标识、容器或曲线
        - configuration: 必须包含 operation，其余键由具体操作解释

        返回:
        - ProcessingOutput(curves, peaks, metadata)
        """
        configuration = dict(configuration or {})
        operation = configuration.get('operation')
        if operation not in self._dispatch:
            raise UnknownMethodError(str(operation), "Operation", list(self.OPERATIONS))

        output = self._dispatch[operation](target, configuration)
        output.metadata.setdefault('operation', operation)
        return output

    def _resolve_curve(self, target: Union[str, Container, Curve], configuration: Dict[str, Any]) -> Curve:
        """曲线目标直接使用；容器/数据源按 curve_id 查找，未指定时取最后一条"""
        if isinstance(target, Curve):
            return target

        container = target if isinstance(target, Container) else self.context.get_container(target)
        curve_id = configuration.get('curve_id')
        if curve_id is not None:
            curve = container.get_curve(curve_id)
        else:
            curve = container.curves[-1] if container.curves else None
        if curve is None:
            raise ProcessingError("目标中没有可处理的曲线", {'curve_id': curve_id})
        return curve

    def _dispatch_extract(self, target, configuration: Dict[str, Any]) -> ProcessingOutput:
        if isinstance(target, Curve):
            raise ProcessingError("extract 操作的目标必须是数据源或容器")
        result = self.context.extract_curves(
            target, configuration.get('curve_type', 'tic'), configuration.get('filter')
        )
        return ProcessingOutput(curves=list(result.curves), metadata=dict(result.metadata))

    def _dispatch_baseline(self, target, configuration: Dict[str, Any]) -> ProcessingOutput:
        curve = self._resolve_curve(target, configuration)
        result = self.context.correct_baseline(curve, configuration.get('method'), configuration.get('params'))
        return ProcessingOutput(
            curves=[result.baseline_curve, result.corrected_curve],
            metadata={'diagnostics': dict(result.diagnostics), 'curve_id': curve.curve_id},
        )

    def _dispatch_analyze(self, target, configuration: Dict[str, Any]) -> ProcessingOutput:
        curve = self._resolve_curve(target, configuration)
        result = self.context.analyze_peaks(curve, configuration.get('analysis'))
        curves = [result.fitted_curve] if result.fitted_curve is not None else []
        return ProcessingOutput(
            curves=curves,
            peaks=list(result.peaks),
            metadata={'diagnostics': dict(result.diagnostics), 'curve_id': curve.curve_id},
        )

    def _dispatch_strategy(self, target, configuration: Dict[str, Any]) -> ProcessingOutput:
        curve = self._resolve_curve(target, configuration)
        result = self.context.process_strategy(curve, configuration.get('strategy'), configuration.get('peaks'))
        fitted = result.analysis.fitted_curve
        return ProcessingOutput(
            curves=[fitted] if fitted is not None else [],
            peaks=list(result.peaks),
            metadata={
                'strategy': result.strategy.name,
                'mode': result.mode.value,
                'diagnostics': dict(result.analysis.diagnostics),
                'curve_id': curve.curve_id,
            },
        )
