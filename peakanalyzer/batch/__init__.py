"""
批量处理模块
"""

from .batch_queue import BatchQueue, BatchTask, TaskStatus

__all__ = ['BatchQueue', 'BatchTask', 'TaskStatus']
