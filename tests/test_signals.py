from __future__ import annotations

import math

import pandas as pd
import pytest

from factors.signals import (
    BEARISH,
    BULLISH,
    NEUTRAL,
    OVERBOUGHT,
    OVERSOLD,
    classify_bollinger,
    classify_rsi,
    latest_crossover,
    macd_crossovers,
    rsi_zones,
)


def test_classify_rsi_thresholds_are_strict():
    assert classify_rsi(75).signal == OVERBOUGHT
    assert classify_rsi(25).signal == OVERSOLD
    assert classify_rsi(70).signal == NEUTRAL
    assert classify_rsi(30).signal == NEUTRAL
    assert classify_rsi(100).strength == 1.0
    assert classify_rsi(50).strength == 0.0
    with pytest.raises(ValueError):
        classify_rsi(float("nan"))


def test_rsi_zones_keep_warmup_as_none():
    zones = rsi_zones(pd.Series([math.nan, 80.0, 50.0, 10.0]))
    assert zones.to_list() == [None, OVERBOUGHT, NEUTRAL, OVERSOLD]


def test_macd_crossovers_detect_both_directions():
    m = pd.Series([-1.0, 0.0, 1.0, 0.5, -0.5])
    s = pd.Series([0.0, 0.0, 0.0, 0.5, 0.5])
    out = macd_crossovers(m, s)
    # 0 -> 1：由 <= 变为 >，看涨；3 -> 4：由 >= 变为 <，看跌
    assert out.to_list() == [None, None, BULLISH, None, BEARISH]
    assert latest_crossover(out) == (4, BEARISH)
    assert latest_crossover(pd.Series([None, None], dtype=object)) is None


def test_macd_crossovers_length_mismatch():
    with pytest.raises(ValueError):
        macd_crossovers(pd.Series([1.0]), pd.Series([1.0, 2.0]))


def test_classify_bollinger_percent_b():
    sig = classify_bollinger(price=105, upper=104, middle=100, lower=96)
    assert sig.signal == OVERBOUGHT
    assert abs(sig.percent_b - 9 / 8) < 1e-12
    assert classify_bollinger(95, 104, 100, 96).signal == OVERSOLD
    flat = classify_bollinger(100, 100, 100, 100)
    assert flat.signal == NEUTRAL and flat.percent_b == 0.5
