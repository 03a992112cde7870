"""布林带因子。"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

import pandas as pd

from factors.base import require_column
from factors.series import bollinger_bands

_BANDS = ("middle", "upper", "lower", "bandwidth")


@dataclass(frozen=True)
class BollingerFactor:
    period: int = 20
    k: float = 2.0
    price_col: str = "close"
    prefix: str = "bb"
    name: str = "bollinger"
    params: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        if self.period <= 0:
            raise ValueError("Bollinger period must be > 0")
        if self.k <= 0:
            raise ValueError("Bollinger k must be > 0")
        object.__setattr__(
            self,
            "params",
            {"period": self.period, "k": self.k, "price_col": self.price_col},
        )

    @property
    def output_columns(self) -> tuple[str, ...]:
        return tuple(f"{self.prefix}_{band}" for band in _BANDS)

    def compute(self, df: pd.DataFrame) -> pd.DataFrame:
        require_column(df, self.price_col, "BollingerFactor")
        bands = bollinger_bands(df[self.price_col], self.period, self.k)
        for band, col in zip(_BANDS, self.output_columns):
            df[col] = bands[band]
        return df
