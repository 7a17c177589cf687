"""
曲线提取模块
"""

from .extractors import (
    BaseExtractor,
    DriftTimeExtractor,
    ExtractionResult,
    TicExtractor,
    XicExtractor,
    get_available_extractors,
    get_extractor,
)

__all__ = [
    'BaseExtractor', 'DriftTimeExtractor', 'ExtractionResult', 'TicExtractor',
    'XicExtractor', 'get_available_extractors', 'get_extractor',
]
