"""指标列写入器协议。

每个因子把一个或多个指标列写进 K 线 DataFrame（`compute(df) -> df`），
并通过 `output_columns` 声明自己写哪些列；
数值计算全部委托给 `factors.series`，因此与直接调用纯函数的结果逐位一致。
"""

from __future__ import annotations

from typing import Any, Iterable, Mapping, Protocol

import pandas as pd


class Factor(Protocol):
    name: str
    params: Mapping[str, Any]

    @property
    def output_columns(self) -> tuple[str, ...]:
        """该因子写入的列名（按写入顺序）。"""

    def compute(self, df: pd.DataFrame) -> pd.DataFrame:
        """在 df 上写入 `output_columns` 并返回 df。"""


def require_column(df: pd.DataFrame, col: str, owner: str) -> None:
    if col not in df.columns:
        raise ValueError(f"{owner} requires column: {col}")


def indicator_columns(factors: Iterable[Factor]) -> tuple[str, ...]:
    """一组因子写入的全部列（去重，保留顺序）；重名列说明配置冲突，直接报错。"""
    seen: dict[str, str] = {}
    for f in factors:
        for col in f.output_columns:
            if col in seen:
                raise ValueError(f"column {col!r} written by both {seen[col]} and {f.name}")
            seen[col] = f.name
    return tuple(seen)
