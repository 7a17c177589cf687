"""
峰分析模块 - 基线校正、检测、拟合、重叠处理与评分
"""

from .baseline_corrector import BaselineCorrector, BaselineResult
from .overlap_resolver import OverlapProcessor, get_overlap_processor
from .parameter_optimizer import ParameterOptimizer, get_optimizer
from .peak_analyzer import AnalysisResult, PeakAnalyzer
from .peak_detector import PeakDetector
from .peak_fitter import FitResult, PeakFitter
from .quality_scorer import QualityScorer, quality_grade

__all__ = [
    'AnalysisResult', 'BaselineCorrector', 'BaselineResult', 'FitResult', 'OverlapProcessor',
    'ParameterOptimizer', 'PeakAnalyzer', 'PeakDetector', 'PeakFitter', 'QualityScorer',
    'get_optimizer', 'get_overlap_processor', 'quality_grade',
]
