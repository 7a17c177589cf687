"""
导出模块
"""

from .exporters import BaseExporter, CurveTsvExporter, ExportManager, ExportResult, JsonExporter, PeakTsvExporter

__all__ = ['BaseExporter', 'CurveTsvExporter', 'ExportManager', 'ExportResult', 'JsonExporter', 'PeakTsvExporter']
