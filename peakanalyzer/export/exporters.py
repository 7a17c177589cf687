"""
导出器 - 将容器中的曲线和峰格式化为字节载荷

导出器只返回数据，不写文件；写入位置由调用方决定。
"""

import io
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

import numpy as np
import pandas as pd

from ..core.curve import Container
from ..core.errors import UnknownMethodError

logger = logging.getLogger(__name__)

TSV_MIME = "text/tab-separated-values"


@dataclass
class ExportResult:
    """导出结果"""

    data: bytes
    filename: str
    mime_type: str
    metadata: Dict[str, Any] = field(default_factory=dict)


def _json_default(value: Any) -> Any:
    """numpy 标量/数组和元组的 JSON 转换"""
    if isinstance(value, np.ndarray):
        return value.tolist()
    if isinstance(value, np.generic):
        return value.item()
    if isinstance(value, (set, frozenset)):
        return sorted(value)
    raise TypeError(f"无法序列化的类型: {type(value).__name__}")


def _finite(value: Any) -> Any:
    """递归地把 NaN/Infinity 替换为 None，使输出为标准JSON"""
    if isinstance(value, dict):
        return {key: _finite(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_finite(item) for item in value]
    if isinstance(value, np.ndarray):
        return [_finite(item) for item in value.tolist()]
    if isinstance(value, np.generic):
        value = value.item()
    if isinstance(value, float) and not np.isfinite(value):
        return None
    return value


def _base_name(container: Container, config: Dict[str, Any]) -> str:
    if config.get('filename'):
        return str(config['filename'])
    source = container.metadata.get('file_path')
    if source:
        stem = str(source).replace('\\', '/').rsplit('/', 1)[-1]
        return stem.rsplit('.', 1)[0] or "export"
    return "export"


class BaseExporter:
    """导出器基类"""

    name = ""
    description = ""
    file_extension = ""
    mime_type = ""

    def config_schema(self) -> Dict[str, Any]:
        """导出配置说明"""
        return {
            'filename': {'type': 'string', 'description': '输出文件名（不含扩展名）'},
        }

    def export(self, container: Container, config: Optional[Dict[str, Any]] = None) -> ExportResult:
        config = dict(config or {})
        data, metadata = self._render(container, config)
        filename = f"{_base_name(container, config)}_{self.name}.{self.file_extension}"
        logger.debug("导出 %s: %d 字节", filename, len(data))
        return ExportResult(data=data, filename=filename, mime_type=self.mime_type, metadata=metadata)

    def _render(self, container: Container, config: Dict[str, Any]):
        raise NotImplementedError


class CurveTsvExporter(BaseExporter):
    """曲线数据（长格式，每个点一行）"""

    name = "curve_tsv"
    description = "曲线数据TSV（长格式）"
    file_extension = "tsv"
    mime_type = TSV_MIME

    def config_schema(self) -> Dict[str, Any]:
        schema = super().config_schema()
        schema['curve_types'] = {'type': 'array', 'description': '只导出这些类型的曲线'}
        schema['max_points'] = {'type': 'integer', 'description': '每条曲线的最大采样点数'}
        return schema

    def _render(self, container: Container, config: Dict[str, Any]):
        curve_types = config.get('curve_types')
        max_points = config.get('max_points')

        frames: List[pd.DataFrame] = []
        for curve in container.curves:
            if curve_types and curve.curve_type not in curve_types:
                continue
            x, y = curve.x, curve.y
            # 采样数据以减小文件大小
            if max_points and curve.point_count > max_points:
                indices = np.linspace(0, curve.point_count - 1, int(max_points), dtype=int)
                x, y = x[indices], y[indices]
            frames.append(pd.DataFrame({
                'curve_id': curve.curve_id,
                'curve_type': curve.curve_type,
                'x': x,
                'y': y,
                'x_unit': curve.x_unit,
                'y_unit': curve.y_unit,
            }))

        columns = ['curve_id', 'curve_type', 'x', 'y', 'x_unit', 'y_unit']
        df = pd.concat(frames, ignore_index=True) if frames else pd.DataFrame(columns=columns)
        text = df.to_csv(sep='\t', index=False)
        return text.encode('utf-8'), {'curve_count': len(frames), 'row_count': len(df)}


class PeakTsvExporter(BaseExporter):
    """峰表（每个峰一行）"""

    name = "peak_tsv"
    description = "峰表TSV"
    file_extension = "tsv"
    mime_type = TSV_MIME

    COLUMNS = [
        'curve_id', 'peak_id', 'peak_number', 'center', 'start', 'end', 'amplitude',
        'area', 'fwhm', 'rsquared', 'quality_score', 'quality_grade', 'overlap_resolved',
        'signal_to_noise', 'confidence',
    ]

    def _render(self, container: Container, config: Dict[str, Any]):
        rows = []
        numbers: Dict[str, int] = {}
        for peak in sorted(container.peaks, key=lambda p: (p.curve_id, p.center)):
            numbers[peak.curve_id] = numbers.get(peak.curve_id, 0) + 1
            rows.append({
                'curve_id': peak.curve_id,
                'peak_id': peak.peak_id,
                'peak_number': numbers[peak.curve_id],
                'center': peak.center,
                'start': peak.start,
                'end': peak.end,
                'amplitude': peak.amplitude,
                'area': peak.area,
                'fwhm': peak.fwhm,
                'rsquared': peak.rsquared,
                'quality_score': peak.quality_score,
                'quality_grade': peak.metadata.get('quality_grade', ''),
                'overlap_resolved': peak.overlap_resolved,
                'signal_to_noise': peak.metadata.get('signal_to_noise', np.nan),
                'confidence': peak.confidence,
            })

        df = pd.DataFrame(rows, columns=self.COLUMNS)
        text = df.to_csv(sep='\t', index=False)
        return text.encode('utf-8'), {'peak_count': len(rows)}


class JsonExporter(BaseExporter):
    """完整容器（不含原始谱图）的JSON"""

    name = "json"
    description = "JSON格式（元数据、曲线和峰）"
    file_extension = "json"
    mime_type = "application/json"

    def config_schema(self) -> Dict[str, Any]:
        schema = super().config_schema()
        schema['indent'] = {'type': 'integer', 'description': '缩进空格数'}
        return schema

    def _render(self, container: Container, config: Dict[str, Any]):
        payload = {
            'export_info': {
                'format': self.name,
                'exported_at': datetime.now().isoformat(timespec='seconds'),
                'curve_count': len(container.curves),
                'peak_count': len(container.peaks),
            },
            'metadata': dict(container.metadata),
            'curves': [curve.to_dict() for curve in container.curves],
            'peaks': [peak.to_dict() for peak in container.peaks],
        }
        buffer = io.StringIO()
        json.dump(_finite(payload), buffer, indent=config.get('indent', 2), ensure_ascii=False,
                  allow_nan=False, default=_json_default)
        return buffer.getvalue().encode('utf-8'), dict(payload['export_info'])


class ExportManager:
    """按格式名分派导出器"""

    def __init__(self):
        self.exporters: Dict[str, BaseExporter] = {}
        for exporter in (CurveTsvExporter(), PeakTsvExporter(), JsonExporter()):
            self.register(exporter)

    def register(self, exporter: BaseExporter) -> None:
        self.exporters[exporter.name] = exporter

    def get_exporter(self, format_name: str) -> BaseExporter:
        if format_name not in self.exporters:
            raise UnknownMethodError(format_name, "Exporter", list(self.exporters))
        return self.exporters[format_name]

    def export(self, container: Container, format_name: str,
               config: Optional[Dict[str, Any]] = None) -> ExportResult:
        return self.get_exporter(format_name).export(container, config)

    def get_available_formats(self) -> Dict[str, str]:
        return {name: exporter.description for name, exporter in self.exporters.items()}
