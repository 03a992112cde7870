"""MACD 因子（三列：线 / 信号线 / 柱）。"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

import pandas as pd

from factors.base import require_column
from factors.series import macd


@dataclass(frozen=True)
class MACDFactor:
    fast: int = 12
    slow: int = 26
    signal: int = 9
    price_col: str = "close"
    prefix: str = "macd"
    name: str = "macd"
    params: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        if min(self.fast, self.slow, self.signal) <= 0:
            raise ValueError("MACD periods must be > 0")
        if self.fast >= self.slow:
            raise ValueError("MACD fast period must be < slow period")
        object.__setattr__(
            self,
            "params",
            {"fast": self.fast, "slow": self.slow, "signal": self.signal, "price_col": self.price_col},
        )

    @property
    def columns(self) -> tuple[str, str, str]:
        return (self.prefix, f"{self.prefix}_signal", f"{self.prefix}_hist")

    @property
    def output_columns(self) -> tuple[str, ...]:
        return self.columns

    def compute(self, df: pd.DataFrame) -> pd.DataFrame:
        require_column(df, self.price_col, "MACDFactor")
        out = macd(df[self.price_col], self.fast, self.slow, self.signal)
        line_col, signal_col, hist_col = self.columns
        df[line_col] = out["macd"]
        df[signal_col] = out["signal"]
        df[hist_col] = out["histogram"]
        return df
