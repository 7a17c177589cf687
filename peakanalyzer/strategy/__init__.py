"""
策略控制与组件注册
"""

from .component_registry import ComponentDescriptor, ComponentRegistry, ComponentType, build_default_registry
from .strategy_controller import (
    PREDEFINED_STRATEGIES,
    CurveCharacteristics,
    ProcessingMode,
    ProcessingStrategy,
    StrategyController,
    StrategyResult,
)

__all__ = [
    'ComponentDescriptor', 'ComponentRegistry', 'ComponentType', 'CurveCharacteristics',
    'PREDEFINED_STRATEGIES', 'ProcessingMode', 'ProcessingStrategy', 'StrategyController',
    'StrategyResult', 'build_default_registry',
]
