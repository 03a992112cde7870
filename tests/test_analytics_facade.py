from __future__ import annotations

import json
import math

import pytest

from engine.analytics import AnalyticsFacade
from ledger.ledger import Ledger
from shared.config.schema import IndicatorConfig, RiskConfig
from shared.errors import InvalidInputSeries
from shared.models.models import Candle


def _candles(prices: list[float]) -> list[Candle]:
    return [
        Candle(timestamp=1_700_000_000_000 + i * 60_000, open=p, high=p + 1, low=p - 1, close=p, volume=10.0)
        for i, p in enumerate(prices)
    ]


PRICES = [100 + math.sin(i / 4) * 6 + i * 0.05 for i in range(60)]


def _facade() -> AnalyticsFacade:
    cfg = IndicatorConfig(
        sma_periods=[5, 20],
        ema_periods=[12],
        rsi_period=14,
        macd_fast=12,
        macd_slow=26,
        macd_signal=9,
        bollinger_period=20,
    )
    return AnalyticsFacade(cfg, RiskConfig())


def test_build_view_combines_indicators_risk_and_depth():
    ledger = Ledger(100_000, clock=lambda: 0)
    ledger.open_position("BTC/USDT", "long", 1, 50_000)
    view = _facade().build_view(
        ledger.snapshot(),
        {"BTC/USDT": _candles(PRICES)},
        [100_000, 101_000, 99_500, 102_000],
        order_books={"BTC/USDT": ([(99, 1.5), (98, 2.0)], [(101, 1.2)])},
    )

    ind = view.indicators["BTC/USDT"]
    assert set(ind.indicator_columns) >= {"sma_5", "sma_20", "ema_12", "rsi_14", "macd", "bb_upper"}
    assert ind.rsi_signal is not None
    assert ind.bollinger_signal is not None
    assert view.depth["BTC/USDT"].mid_price == 100
    assert view.summary.positions_count == 1
    assert view.risk.trade_stats.total_trades == 0


def test_view_to_dict_is_json_safe():
    ledger = Ledger(100_000, clock=lambda: 0)
    view = _facade().build_view(ledger.snapshot(), {"ETH/USDT": _candles(PRICES)}, [100_000, 100_500])
    data = view.to_dict()
    # NaN 预热值输出为 None，整体可以严格 JSON 序列化
    json.dumps(data, allow_nan=False)
    series = data["indicators"]["ETH/USDT"]["series"]
    assert series["sma_20"][0] is None
    assert series["sma_20"][-1] is not None
    assert len(series["ema_12"]) == len(PRICES)


def test_disabled_indicators_are_skipped():
    facade = AnalyticsFacade(IndicatorConfig(rsi=False, macd=False, bollinger=False, sma_periods=[3], ema_periods=[]))
    ind = facade.indicators_for("SOL/USDT", _candles(PRICES[:10]))
    assert ind.indicator_columns == ("sma_3",)
    assert ind.rsi_signal is None and ind.macd_crossover is None and ind.bollinger_signal is None


def test_malformed_candles_fail_fast():
    bad = _candles(PRICES[:5])
    bad[2] = Candle(timestamp=bad[2].timestamp, open=100, high=99, low=98, close=100, volume=1)
    with pytest.raises(InvalidInputSeries):
        _facade().build_view(Ledger(1_000).snapshot(), {"BTC/USDT": bad}, [1_000])


def test_facade_does_not_mutate_ledger():
    ledger = Ledger(100_000, clock=lambda: 0)
    ledger.open_position("BTC/USDT", "long", 1, 50_000)
    before = ledger.to_dict()
    _facade().build_view(ledger.snapshot(), {"BTC/USDT": _candles(PRICES)}, [100_000, 100_000])
    assert ledger.to_dict() == before
