"""
PeakAnalyzer - 质谱曲线提取、基线校正与峰分析
"""

import logging

from .core.context import ProcessingContext
from .core.curve import Container, Curve, CurveType, Peak, Spectrum
from .core.errors import PeakAnalyzerError
from .core.log import setup_logging

__version__ = "0.3.0"

logging.getLogger(__name__).addHandler(logging.NullHandler())

__all__ = [
    'Container', 'Curve', 'CurveType', 'Peak', 'PeakAnalyzerError', 'ProcessingContext',
    'Spectrum', 'setup_logging', '__version__',
]
