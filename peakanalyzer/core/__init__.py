"""
核心模块 - 数据结构、配置、错误类型和处理上下文
"""

from .config import ContextSettings, validate_config
from .curve import Container, Curve, CurveType, Peak, Spectrum, build_container
from .errors import (
    ConfigValidationError,
    ControllerNotInitializedError,
    ExtractionError,
    FittingNonConvergence,
    LoadError,
    PeakAnalyzerError,
    ProcessingError,
    UnknownMethodError,
)

__all__ = [
    'ConfigValidationError', 'Container', 'ContextSettings', 'ControllerNotInitializedError', 'Curve',
    'CurveType', 'ExtractionError', 'FittingNonConvergence', 'LoadError', 'Peak', 'PeakAnalyzerError',
    'ProcessingError', 'Spectrum', 'UnknownMethodError', 'build_container', 'validate_config',
]
