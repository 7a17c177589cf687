"""
数据加载模块
"""

from .table_loader import ContainerLoader, TableLoader

__all__ = ['ContainerLoader', 'TableLoader']
