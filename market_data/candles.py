"""K 线输入校验与转换。

外部行情源按 symbol 追加 OHLCV；进入引擎前必须满足：
- low <= min(open, close) <= max(open, close) <= high
- volume >= 0，所有字段有限（非 NaN/Inf）
- 时间戳单调不减
不满足的记录直接以 `InvalidInputSeries` 拒绝，而不是让 NaN 流到渲染层。
"""

from __future__ import annotations

import csv
import math
from pathlib import Path
from typing import Iterable, Sequence

import pandas as pd

from shared.errors import InvalidInputSeries
from shared.models.models import Candle

CANDLE_COLUMNS = ["timestamp", "open", "high", "low", "close", "volume"]


def validate_candle(candle: Candle, index: int | None = None) -> None:
    """校验单根 K 线。"""
    where = f"candle[{index}]" if index is not None else "candle"
    values = (candle.open, candle.high, candle.low, candle.close, candle.volume)
    if not all(math.isfinite(float(v)) for v in values):
        raise InvalidInputSeries(f"{where} contains non-finite values", index=index)
    body_low = min(candle.open, candle.close)
    body_high = max(candle.open, candle.close)
    if not (candle.low <= body_low <= body_high <= candle.high):
        raise InvalidInputSeries(
            f"{where} violates low <= open/close <= high "
            f"(o={candle.open}, h={candle.high}, l={candle.low}, c={candle.close})",
            index=index,
        )
    if candle.volume < 0:
        raise InvalidInputSeries(f"{where} has negative volume {candle.volume}", index=index)


def validate_candles(candles: Sequence[Candle]) -> None:
    """校验整段序列（逐根 + 时间戳单调不减）。"""
    prev_ts: int | None = None
    for i, c in enumerate(candles):
        validate_candle(c, i)
        if prev_ts is not None and c.timestamp < prev_ts:
            raise InvalidInputSeries(
                f"candle[{i}] timestamp {c.timestamp} < previous {prev_ts}", index=i
            )
        prev_ts = c.timestamp


def candles_to_frame(candles: Sequence[Candle], *, validate: bool = True) -> pd.DataFrame:
    """把 K 线序列转换为 DataFrame（列：timestamp/open/high/low/close/volume）。"""
    if validate:
        validate_candles(candles)
    rows = [c.to_dict() for c in candles]
    df = pd.DataFrame(rows, columns=CANDLE_COLUMNS)
    return df.astype({"timestamp": "int64", "open": float, "high": float, "low": float, "close": float, "volume": float})


def closes(candles: Iterable[Candle]) -> list[float]:
    return [float(c.close) for c in candles]


def load_candles_csv(path: str | Path) -> list[Candle]:
    """从 CSV 读取 K 线（表头：timestamp,open,high,low,close,volume），并做校验。"""
    out: list[Candle] = []
    with Path(path).open("r", newline="", encoding="utf-8") as f:
        reader = csv.DictReader(f)
        missing = [c for c in CANDLE_COLUMNS if c not in (reader.fieldnames or [])]
        if missing:
            raise InvalidInputSeries(f"CSV {path} missing columns: {missing}")
        for row in reader:
            try:
                out.append(
                    Candle(
                        timestamp=int(float(row["timestamp"])),
                        open=float(row["open"]),
                        high=float(row["high"]),
                        low=float(row["low"]),
                        close=float(row["close"]),
                        volume=float(row.get("volume") or 0.0),
                    )
                )
            except ValueError as exc:
                raise InvalidInputSeries(f"CSV {path} row {len(out)} is malformed: {exc}") from exc
    validate_candles(out)
    return out
