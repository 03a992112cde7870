"""EMA 因子。"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

import pandas as pd

from factors.base import require_column
from factors.series import ema


@dataclass(frozen=True)
class EMAFactor:
    """指数移动平均（EMA，首值做种子，从第一根起有定义）。"""

    period: int = 14
    price_col: str = "close"
    out_col: str | None = None
    name: str = "ema"
    params: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        if self.period <= 0:
            raise ValueError("EMA period must be > 0")
        object.__setattr__(
            self,
            "params",
            {"period": self.period, "price_col": self.price_col, "out_col": self.out_col},
        )

    @property
    def column(self) -> str:
        return self.out_col or f"ema_{self.period}"

    @property
    def output_columns(self) -> tuple[str, ...]:
        return (self.column,)

    def compute(self, df: pd.DataFrame) -> pd.DataFrame:
        require_column(df, self.price_col, "EMAFactor")
        df[self.column] = ema(df[self.price_col], self.period)
        return df
