"""
数据加载 - 将长格式表格读入容器

每行是一个 (scan, m/z, 强度) 数据点，同一 scan 的行组成一张谱图。
"""

import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import List, Optional, Union

import numpy as np
import pandas as pd

from ..core.curve import Container, Spectrum, build_container
from ..core.errors import LoadError

logger = logging.getLogger(__name__)

REQUIRED_COLUMNS = ('scan', 'rt', 'ms_level', 'mz', 'intensity')
OPTIONAL_COLUMNS = ('drift_time',)


class ContainerLoader(ABC):
    """加载器接口：数据源 → 容器"""

    @abstractmethod
    def load(self, source: str) -> Container:
        """加载数据源；失败时抛出 LoadError"""


class TableLoader(ContainerLoader):
    """长格式分隔文本加载器（.tsv/.txt 为制表符，.csv 为逗号）"""

    def __init__(self, sep: Optional[str] = None):
        self.sep = sep

    def _separator(self, path: Path) -> str:
        if self.sep is not None:
            return self.sep
        return ',' if path.suffix.lower() == '.csv' else '\t'

    def load(self, source: Union[str, Path]) -> Container:
        path = Path(source)
        if not path.is_file():
            raise LoadError(f"文件不存在: {path}", source=str(source))

        try:
            df = pd.read_csv(path, sep=self._separator(path))
        except (pd.errors.ParserError, pd.errors.EmptyDataError, UnicodeDecodeError) as e:
            raise LoadError(f"无法解析文件 {path.name}: {e}", source=str(source)) from e

        container = self.load_frame(df, source=str(source))
        logger.info("加载 %s: %d 张谱图", path.name, container.spectrum_count)
        return container

    def load_frame(self, df: pd.DataFrame, source: Optional[str] = None) -> Container:
        """由 DataFrame 构建容器"""
        missing = [c for c in REQUIRED_COLUMNS if c not in df.columns]
        if missing:
            raise LoadError(f"缺少必需的列: {', '.join(missing)}", source=source, missing_columns=missing)

        try:
            numeric = df[list(REQUIRED_COLUMNS)].apply(pd.to_numeric, errors='raise')
        except (ValueError, TypeError) as e:
            raise LoadError(f"列中包含非数值数据: {e}", source=source) from e
        if 'drift_time' in df.columns:
            numeric['drift_time'] = pd.to_numeric(df['drift_time'], errors='coerce')

        spectra: List[Spectrum] = []
        # sort=False 保持 scan 首次出现的顺序
        for index, (_, group) in enumerate(numeric.groupby('scan', sort=False)):
            first = group.iloc[0]
            drift_time = None
            if 'drift_time' in group.columns and not np.isnan(first['drift_time']):
                drift_time = float(first['drift_time'])
            spectra.append(Spectrum(
                rt=float(first['rt']),
                ms_level=int(first['ms_level']),
                mz=group['mz'].to_numpy(dtype=float),
                intensity=group['intensity'].to_numpy(dtype=float),
                drift_time=drift_time,
                index=index,
            ))

        return build_container(spectra, source)
