"""
组件注册表 - (组件类型, 名称) → (描述符, 工厂)

内置实现由 build_default_registry 注册，调用方可以注册自己的实现
来替换检测/拟合/重叠/优化/后处理的任意一环。
"""

import logging
import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple

from ..core.errors import UnknownMethodError

logger = logging.getLogger(__name__)


class ComponentType(str, Enum):
    """组件类型"""
    PEAK_DETECTOR = "PeakDetector"
    FITTING_METHOD = "FittingMethod"
    OVERLAP_PROCESSOR = "OverlapProcessor"
    PARAMETER_OPTIMIZER = "ParameterOptimizer"
    ADVANCED_ALGORITHM = "AdvancedAlgorithm"
    POST_PROCESSOR = "PostProcessor"


@dataclass(frozen=True)
class ComponentDescriptor:
    """组件描述符 - 只用于自省和查找"""

    component_type: ComponentType
    name: str
    version: str = "1.0"
    description: str = ""
    capabilities: Tuple[str, ...] = field(default_factory=tuple)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'component_type': self.component_type.value,
            'name': self.name,
            'version': self.version,
            'description': self.description,
            'capabilities': list(self.capabilities),
        }


class ComponentRegistry:
    """组件注册表"""

    def __init__(self):
        self._components: Dict[Tuple[ComponentType, str], Tuple[ComponentDescriptor, Callable[..., Any]]] = {}
        self._lock = threading.RLock()

    def register(self, descriptor: ComponentDescriptor, factory: Callable[..., Any],
                 replace: bool = False) -> None:
        """
        注册组件

        参数:
        - descriptor: 组件描述符
        - factory: 创建组件实例的可调用对象
        - replace: 是否允许覆盖已有注册
        """
        key = (ComponentType(descriptor.component_type), descriptor.name)
        with self._lock:
            if key in self._components and not replace:
                raise ValueError(f"组件已注册: {key[0].value}/{key[1]}")
            self._components[key] = (descriptor, factory)
        logger.debug("注册组件 %s/%s", key[0].value, key[1])

    def unregister(self, component_type: ComponentType, name: str) -> bool:
        with self._lock:
            return self._components.pop((ComponentType(component_type), name), None) is not None

    def has(self, component_type: ComponentType, name: str) -> bool:
        with self._lock:
            return (ComponentType(component_type), name) in self._components

    def _entry(self, component_type: ComponentType, name: str):
        component_type = ComponentType(component_type)
        with self._lock:
            entry = self._components.get((component_type, name))
            if entry is None:
                available = [n for (t, n) in self._components if t == component_type]
                raise UnknownMethodError(name, component_type.value, available)
            return entry

    def get_descriptor(self, component_type: ComponentType, name: str) -> ComponentDescriptor:
        """获取组件描述符"""
        return self._entry(component_type, name)[0]

    def create(self, component_type: ComponentType, name: str, **kwargs: Any) -> Any:
        """创建组件实例；未注册时抛出 UnknownMethodError"""
        _, factory = self._entry(component_type, name)
        return factory(**kwargs)

    def list_components(self, component_type: Optional[ComponentType] = None) -> List[ComponentDescriptor]:
        """列出组件（可按类型过滤），按名称排序"""
        with self._lock:
            descriptors = [
                d for (t, _), (d, _) in self._components.items()
                if component_type is None or t == ComponentType(component_type)
            ]
        return sorted(descriptors, key=lambda d: (d.component_type.value, d.name))

    def validate_strategy_components(self, slots: Dict[ComponentType, Optional[str]]) -> None:
        """检查策略引用的组件都已注册"""
        for component_type, name in slots.items():
            if name is not None:
                self._entry(component_type, name)


def build_default_registry() -> ComponentRegistry:
    """注册所有内置组件"""
    from ..peak_analysis.overlap_resolver import OVERLAP_PROCESSORS
    from ..peak_analysis.parameter_optimizer import OPTIMIZERS
    from ..peak_analysis.peak_detector import DETECTION_CONFIDENCE, PeakDetector
    from ..peak_analysis.peak_fitter import PeakFitter
    from ..peak_analysis.peak_shapes import MODEL_FUNCTIONS
    from .advanced_algorithms import ADVANCED_ALGORITHMS
    from .post_processors import POST_PROCESSORS

    registry = ComponentRegistry()

    detector_info = {
        'simple': ("阈值区域最高点检测", ('threshold',)),
        'peak_finder': ("scipy.signal.find_peaks 检测", ('prominence', 'shoulders')),
        'cwt': ("连续小波变换检测", ('multi_scale', 'noise_robust')),
    }
    for name in DETECTION_CONFIDENCE:
        description, capabilities = detector_info[name]
        registry.register(
            ComponentDescriptor(ComponentType.PEAK_DETECTOR, name, "1.0", description, capabilities),
            lambda name=name, **kwargs: PeakDetector(name),
        )

    for name in MODEL_FUNCTIONS:
        registry.register(
            ComponentDescriptor(ComponentType.FITTING_METHOD, name, "1.0",
                                PeakFitter.get_model_description(name)['name'],
                                ('single_peak', 'bounded')),
            lambda name=name, **kwargs: PeakFitter(name, **kwargs),
        )

    for name, cls in OVERLAP_PROCESSORS.items():
        registry.register(
            ComponentDescriptor(ComponentType.OVERLAP_PROCESSOR, name, "1.0", cls.description,
                                ('area_conserving',) if name != 'none' else ()),
            lambda cls=cls, fitter=None, config=None: cls(fitter, config),
        )

    for name, cls in OPTIMIZERS.items():
        registry.register(
            ComponentDescriptor(ComponentType.PARAMETER_OPTIMIZER, name, "1.0", cls.description, ('bounded',)),
            lambda cls=cls, **kwargs: cls(**kwargs),
        )

    for name, cls in ADVANCED_ALGORITHMS.items():
        registry.register(
            ComponentDescriptor(ComponentType.ADVANCED_ALGORITHM, name, "1.0", cls.description, ('refinement',)),
            lambda cls=cls, fitter=None: cls(fitter),
        )

    for name, cls in POST_PROCESSORS.items():
        registry.register(
            ComponentDescriptor(ComponentType.POST_PROCESSOR, name, "1.0", cls.description, ()),
            lambda cls=cls, **kwargs: cls(**kwargs),
        )

    return registry
