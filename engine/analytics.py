"""分析门面：把指标、深度、风险组合成一个只读视图，供渲染层使用。

门面不持有账本引用，只读取 `LedgerSnapshot`；所有输入先校验（InvalidInputSeries），
输出的 `to_dict()` 只包含 list/dict/float/None（NaN -> None）。
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any, Mapping, Sequence

import numpy as np
import pandas as pd

from factors.base import indicator_columns
from factors.registry import apply_factors, build_factors
from factors.signals import BollingerSignal, RSISignal, classify_bollinger, classify_rsi, latest_crossover, macd_crossovers
from ledger.snapshot import LedgerSnapshot, PortfolioSummary
from market.depth import BookDepth, aggregate_depth
from market_data.candles import candles_to_frame
from risk.analytics import RiskSnapshot, compute_risk_snapshot
from shared.config.schema import IndicatorConfig, RiskConfig
from shared.models.models import Candle
from shared.utils.logging import setup_logger

_LOGGER = setup_logger("analytics")


def _clean(value: Any) -> Any:
    """NaN/Inf -> None，numpy 标量 -> Python 标量。"""
    if isinstance(value, (np.floating, np.integer)):
        value = value.item()
    if isinstance(value, float) and not math.isfinite(value):
        return None
    return value


@dataclass(frozen=True, eq=False)
class IndicatorView:
    symbol: str
    frame: pd.DataFrame
    indicator_columns: tuple[str, ...]
    rsi_signal: RSISignal | None = None
    macd_crossover: tuple[int, str] | None = None
    bollinger_signal: BollingerSignal | None = None

    def latest(self) -> dict[str, float | None]:
        if self.frame.empty:
            return {c: None for c in self.indicator_columns}
        row = self.frame.iloc[-1]
        return {c: _clean(row[c]) for c in self.indicator_columns}

    def to_dict(self) -> dict[str, Any]:
        series = {c: [_clean(v) for v in self.frame[c].to_list()] for c in self.indicator_columns}
        cross = None
        if self.macd_crossover is not None:
            pos, direction = self.macd_crossover
            cross = {"index": pos, "timestamp": int(self.frame["timestamp"].iloc[pos]), "signal": direction}
        return {
            "symbol": self.symbol,
            "timestamps": [int(t) for t in self.frame["timestamp"].to_list()],
            "close": [float(v) for v in self.frame["close"].to_list()],
            "series": series,
            "latest": self.latest(),
            "rsi_signal": None if self.rsi_signal is None else {
                "signal": self.rsi_signal.signal,
                "strength": self.rsi_signal.strength,
            },
            "macd_crossover": cross,
            "bollinger_signal": None if self.bollinger_signal is None else {
                "signal": self.bollinger_signal.signal,
                "percent_b": _clean(self.bollinger_signal.percent_b),
            },
        }


@dataclass(frozen=True)
class AnalyticsView:
    summary: PortfolioSummary
    risk: RiskSnapshot
    indicators: dict[str, IndicatorView] = field(default_factory=dict)
    depth: dict[str, BookDepth] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        risk = self.risk.to_dict()
        stats = risk["trade_stats"]
        for key in ("profit_factor", "risk_reward_ratio"):
            stats[key] = _clean(stats[key])
        return {
            "summary": {k: _clean(v) for k, v in vars(self.summary).items()},
            "risk": risk,
            "indicators": {s: v.to_dict() for s, v in self.indicators.items()},
            "depth": {s: d.to_dict() for s, d in self.depth.items()},
        }


class AnalyticsFacade:
    """按配置计算指标 + 风险 + 深度。"""

    def __init__(self, indicator_config: IndicatorConfig | None = None, risk_config: RiskConfig | None = None):
        self.indicator_config = indicator_config or IndicatorConfig()
        self.risk_config = risk_config or RiskConfig()
        self._factors = build_factors(self.indicator_config)
        self._columns = indicator_columns(self._factors)

    def indicators_for(self, symbol: str, candles: Sequence[Candle]) -> IndicatorView:
        cfg = self.indicator_config
        base = candles_to_frame(candles)
        if len(base):
            frame = apply_factors(base, self._factors)
        else:
            frame = base.reindex(columns=[*base.columns, *self._columns])

        rsi_signal = None
        macd_cross = None
        bb_signal = None
        if len(frame):
            last = frame.iloc[-1]
            rsi_col = f"rsi_{cfg.rsi_period}"
            if cfg.rsi and not pd.isna(last[rsi_col]):
                rsi_signal = classify_rsi(float(last[rsi_col]), cfg.rsi_overbought, cfg.rsi_oversold)
            if cfg.macd:
                macd_cross = latest_crossover(macd_crossovers(frame["macd"], frame["macd_signal"]))
            if cfg.bollinger and not pd.isna(last["bb_upper"]):
                bb_signal = classify_bollinger(
                    float(last["close"]), float(last["bb_upper"]), float(last["bb_middle"]), float(last["bb_lower"])
                )
        return IndicatorView(
            symbol=symbol,
            frame=frame,
            indicator_columns=self._columns,
            rsi_signal=rsi_signal,
            macd_crossover=macd_cross,
            bollinger_signal=bb_signal,
        )

    def build_view(
        self,
        snapshot: LedgerSnapshot,
        candles_by_symbol: Mapping[str, Sequence[Candle]],
        equity_curve: Sequence,
        order_books: Mapping[str, tuple[Sequence, Sequence]] | None = None,
    ) -> AnalyticsView:
        """构建完整分析视图；order_books 为 symbol -> (bids, asks)。"""
        indicators = {sym: self.indicators_for(sym, candles) for sym, candles in candles_by_symbol.items()}
        depth = {sym: aggregate_depth(bids, asks) for sym, (bids, asks) in (order_books or {}).items()}
        risk = compute_risk_snapshot(snapshot, equity_curve, self.risk_config)
        _LOGGER.info(
            "Built analytics view: symbols=%d books=%d equity_points=%d",
            len(indicators), len(depth), len(equity_curve),
        )
        return AnalyticsView(summary=snapshot.summary(), risk=risk, indicators=indicators, depth=depth)
