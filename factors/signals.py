"""指标信号分类：RSI 超买/超卖、MACD 金叉/死叉、布林带 %B。"""

from __future__ import annotations

import math
from dataclasses import dataclass

import pandas as pd

OVERBOUGHT = "overbought"
OVERSOLD = "oversold"
NEUTRAL = "neutral"
BULLISH = "bullish"
BEARISH = "bearish"


@dataclass(frozen=True)
class RSISignal:
    signal: str
    strength: float  # 0..1，越过阈值的程度


@dataclass(frozen=True)
class BollingerSignal:
    signal: str
    percent_b: float


def classify_rsi(value: float, overbought: float = 70.0, oversold: float = 30.0) -> RSISignal:
    """RSI 分类：> overbought 超买，< oversold 超卖，其余中性。"""
    if value is None or math.isnan(value):
        raise ValueError("RSI value is undefined")
    if value > overbought:
        return RSISignal(OVERBOUGHT, min((value - overbought) / (100.0 - overbought), 1.0) if overbought < 100 else 1.0)
    if value < oversold:
        return RSISignal(OVERSOLD, min((oversold - value) / oversold, 1.0) if oversold > 0 else 1.0)
    return RSISignal(NEUTRAL, 0.0)


def rsi_zones(rsi_series: pd.Series, overbought: float = 70.0, oversold: float = 30.0) -> pd.Series:
    """逐点分类；NaN（预热期）对应 None。"""
    zones = [
        None if pd.isna(v) else classify_rsi(float(v), overbought, oversold).signal
        for v in rsi_series.to_numpy()
    ]
    return pd.Series(zones, index=rsi_series.index, dtype=object, name="rsi_zone")


def macd_crossovers(macd_line: pd.Series, signal_line: pd.Series) -> pd.Series:
    """相邻两点间的交叉。

    - bullish：macd 由 <= signal 变为 > signal
    - bearish：macd 由 >= signal 变为 < signal
    其余（含第一个点）为 None。
    """
    if len(macd_line) != len(signal_line):
        raise ValueError("macd and signal lines must have the same length")
    m = macd_line.to_numpy(dtype=float)
    s = signal_line.to_numpy(dtype=float)
    out: list[str | None] = [None] * len(m)
    for i in range(1, len(m)):
        if any(math.isnan(x) for x in (m[i - 1], s[i - 1], m[i], s[i])):
            continue
        if m[i - 1] <= s[i - 1] and m[i] > s[i]:
            out[i] = BULLISH
        elif m[i - 1] >= s[i - 1] and m[i] < s[i]:
            out[i] = BEARISH
    return pd.Series(out, index=macd_line.index, dtype=object, name="macd_cross")


def latest_crossover(crossovers: pd.Series) -> tuple[int, str] | None:
    """返回最近一次交叉的 (位置, 方向)；没有则 None。"""
    values = crossovers.to_list()
    for pos in range(len(values) - 1, -1, -1):
        if values[pos] is not None:
            return pos, values[pos]
    return None


def classify_bollinger(price: float, upper: float, middle: float, lower: float) -> BollingerSignal:
    """价格相对布林带的位置；%B = (price - lower) / (upper - lower)。"""
    width = upper - lower
    percent_b = (price - lower) / width if width > 0 else 0.5
    if price > upper:
        return BollingerSignal(OVERBOUGHT, percent_b)
    if price < lower:
        return BollingerSignal(OVERSOLD, percent_b)
    return BollingerSignal(NEUTRAL, percent_b)
