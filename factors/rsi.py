"""RSI 因子。"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

import pandas as pd

from factors.base import require_column
from factors.series import rsi


@dataclass(frozen=True)
class RSIFactor:
    """相对强弱指数（RSI，SMA 版本）。"""

    period: int = 14
    price_col: str = "close"
    out_col: str | None = None
    name: str = "rsi"
    params: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        if self.period <= 0:
            raise ValueError("RSI period must be > 0")
        object.__setattr__(
            self,
            "params",
            {"period": self.period, "price_col": self.price_col, "out_col": self.out_col},
        )

    @property
    def column(self) -> str:
        return self.out_col or f"rsi_{self.period}"

    @property
    def output_columns(self) -> tuple[str, ...]:
        return (self.column,)

    def compute(self, df: pd.DataFrame) -> pd.DataFrame:
        require_column(df, self.price_col, "RSIFactor")
        df[self.column] = rsi(df[self.price_col], self.period)
        return df
