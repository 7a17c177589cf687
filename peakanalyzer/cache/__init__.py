"""
缓存模块
"""

from .container_cache import ContainerCache

__all__ = ['ContainerCache']
