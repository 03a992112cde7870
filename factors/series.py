"""指标纯函数：价格序列 -> 等长指标序列。

约定
----
- 输入可以是 list / numpy 数组 / pandas.Series，输出为 pandas.Series 或 DataFrame，
  长度与输入相同，索引沿用输入（Series 输入时）。
- 窗口未满的位置为 NaN，表示“尚不可计算”，而不是 0。
- 纯函数：不修改输入，同一输入重复计算得到逐位相同的结果。
- 输入含 NaN/Inf 或非数值时直接抛 `InvalidInputSeries`。
"""

from __future__ import annotations

from typing import Iterable

import numpy as np
import pandas as pd

from shared.errors import InvalidInputSeries


def as_price_series(values: pd.Series | np.ndarray | Iterable[float], *, name: str = "close") -> pd.Series:
    """把输入规范化为 float Series（总是返回副本）。"""
    if isinstance(values, pd.Series):
        try:
            s = values.astype(float).copy()
        except (TypeError, ValueError) as exc:
            raise InvalidInputSeries(f"{name} series is not numeric: {exc}") from exc
    else:
        try:
            arr = np.array(values if isinstance(values, np.ndarray) else list(values), dtype=float)
        except (TypeError, ValueError) as exc:
            raise InvalidInputSeries(f"{name} series is not numeric: {exc}") from exc
        if arr.ndim != 1:
            raise InvalidInputSeries(f"{name} series must be one-dimensional")
        s = pd.Series(arr, name=name)

    if not np.isfinite(s.to_numpy()).all():
        bad = int((~np.isfinite(s.to_numpy())).argmax())
        raise InvalidInputSeries(f"{name} series contains NaN/Inf at index {bad}", index=bad)
    return s


def _check_period(period: int, label: str = "period") -> int:
    if isinstance(period, bool) or not isinstance(period, (int, np.integer)) or period <= 0:
        raise ValueError(f"{label} must be a positive int, got {period!r}")
    return int(period)


def sma(values, period: int) -> pd.Series:
    """简单移动平均：最近 period 个值的算术平均；前 period-1 个为 NaN。"""
    period = _check_period(period)
    s = as_price_series(values)
    return s.rolling(period, min_periods=period).mean().rename(f"sma_{period}")


def ema(values, period: int) -> pd.Series:
    """指数移动平均。

    以第一个值作为种子，从下标 0 开始有定义：
    ``ema[i] = (x[i] - ema[i-1]) * 2/(period+1) + ema[i-1]``，
    即 pandas 的 ``ewm(span=period, adjust=False)``。
    """
    period = _check_period(period)
    s = as_price_series(values)
    return s.ewm(span=period, adjust=False).mean().rename(f"ema_{period}")


def rsi(values, period: int = 14) -> pd.Series:
    """相对强弱指数（SMA 版本）。

    窗口内平均涨幅 / 平均跌幅 = RS，RSI = 100 - 100/(1+RS)。
    窗口内没有任何下跌（平均跌幅为 0）时 RSI = 100。
    前 period 个值为 NaN（需要 period 个差分）。
    """
    period = _check_period(period)
    s = as_price_series(values)

    delta = s.diff()
    gain = delta.clip(lower=0.0)
    loss = (-delta).clip(lower=0.0)

    avg_gain = gain.rolling(period, min_periods=period).mean()
    avg_loss = loss.rolling(period, min_periods=period).mean()
    # 用“窗口内下跌次数”判断零跌幅，避免滚动求和残留的浮点误差
    loss_count = (loss > 0).astype(float).where(delta.notna()).rolling(period, min_periods=period).sum()

    with np.errstate(divide="ignore", invalid="ignore"):
        rs = avg_gain / avg_loss
        out = 100.0 - (100.0 / (1.0 + rs))
    out = out.where(~(loss_count == 0), 100.0)
    out = out.where(avg_gain.notna())
    return out.rename(f"rsi_{period}")


def macd(values, fast: int = 12, slow: int = 26, signal: int = 9) -> pd.DataFrame:
    """MACD：macd = EMA(fast) - EMA(slow)，signal = EMA(macd, signal)，histogram = macd - signal。"""
    fast = _check_period(fast, "fast")
    slow = _check_period(slow, "slow")
    signal = _check_period(signal, "signal")
    if fast >= slow:
        raise ValueError("MACD fast period must be < slow period")
    s = as_price_series(values)

    line = s.ewm(span=fast, adjust=False).mean() - s.ewm(span=slow, adjust=False).mean()
    signal_line = line.ewm(span=signal, adjust=False).mean()
    return pd.DataFrame(
        {"macd": line, "signal": signal_line, "histogram": line - signal_line},
        index=s.index,
    )


def bollinger_bands(values, period: int = 20, k: float = 2.0) -> pd.DataFrame:
    """布林带：中轨 SMA，总体标准差（ddof=0），上下轨 ±k·std，带宽为百分比。"""
    period = _check_period(period)
    if not k > 0:
        raise ValueError("Bollinger k must be > 0")
    s = as_price_series(values)

    roll = s.rolling(period, min_periods=period)
    middle = roll.mean()
    std = roll.std(ddof=0)
    upper = middle + k * std
    lower = middle - k * std
    bandwidth = ((upper - lower) / middle * 100.0).where(middle != 0)
    return pd.DataFrame(
        {"middle": middle, "upper": upper, "lower": lower, "std": std, "bandwidth": bandwidth},
        index=s.index,
    )
