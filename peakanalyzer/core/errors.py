"""
错误类型定义 - 所有对外可见的失败都携带可读消息和结构化细节
"""

from typing import Any, Dict, Optional


class PeakAnalyzerError(Exception):
    """所有处理错误的基类"""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details: Dict[str, Any] = dict(details or {})

    def to_dict(self) -> Dict[str, Any]:
        """转换为字典格式"""
        return {
            'error': type(self).__name__,
            'message': self.message,
            'details': self.details,
        }

    def __str__(self) -> str:
        return self.message


class LoadError(PeakAnalyzerError):
    """数据源不可读或格式不支持"""

    def __init__(self, message: str, source: Optional[str] = None, **details: Any):
        super().__init__(message, {'source': source, **details})
        self.source = source


class ExtractionError(PeakAnalyzerError):
    """过滤条件没有匹配到任何数据"""


class UnknownMethodError(PeakAnalyzerError):
    """未注册的方法名（检测/拟合/重叠/基线/导出等）"""

    def __init__(self, method: str, component: str, available: Optional[list] = None):
        message = f"未知的{component}方法: '{method}'"
        if available:
            message += f" (可用: {', '.join(sorted(available))})"
        super().__init__(message, {
            'method': method,
            'component': component,
            'available': sorted(available or []),
        })
        self.method = method
        self.component = component


class FittingNonConvergence(PeakAnalyzerError):
    """单个峰拟合不收敛 - 只降低该峰的质量分数，不中断整条曲线"""

    def __init__(self, message: str, peak_id: Optional[str] = None,
                 method: Optional[str] = None, **details: Any):
        super().__init__(message, {'peak_id': peak_id, 'method': method, **details})
        self.peak_id = peak_id
        self.method = method


class ConfigValidationError(PeakAnalyzerError):
    """配置与schema不匹配，在处理开始前拒绝"""

    def __init__(self, schema: str, errors: list):
        summary = '; '.join(
            f"{'.'.join(str(p) for p in e.get('loc', ()))}: {e.get('msg', '')}" for e in errors
        )
        super().__init__(f"配置验证失败 [{schema}]: {summary}", {'schema': schema, 'errors': errors})
        self.schema = schema
        self.errors = errors


class ControllerNotInitializedError(PeakAnalyzerError):
    """策略控制器尚未初始化"""

    def __init__(self, message: str = "策略控制器未初始化，请先调用 initialize()"):
        super().__init__(message)


class ProcessingError(PeakAnalyzerError):
    """处理阶段的一般性失败"""
