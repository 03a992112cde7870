from __future__ import annotations

import pytest

from market_data.candles import CANDLE_COLUMNS, candles_to_frame, closes, load_candles_csv, validate_candles
from shared.errors import InvalidInputSeries
from shared.models.models import Candle


def _candle(ts: int, o: float, h: float, l: float, c: float, v: float = 1.0) -> Candle:
    return Candle(timestamp=ts, open=o, high=h, low=l, close=c, volume=v)


def test_candles_to_frame_columns_and_dtypes():
    df = candles_to_frame([_candle(1, 10, 11, 9, 10.5), _candle(2, 10.5, 12, 10, 11)])
    assert list(df.columns) == CANDLE_COLUMNS
    assert df["timestamp"].dtype == "int64"
    assert df["close"].to_list() == [10.5, 11.0]


def test_invalid_ohlc_ordering_is_rejected():
    with pytest.raises(InvalidInputSeries) as exc:
        validate_candles([_candle(1, 10, 11, 9, 10), _candle(2, 10, 9.5, 9, 10)])
    assert exc.value.details["index"] == 1
    assert exc.value.code == "invalid_input_series"


def test_negative_volume_and_nan_are_rejected():
    with pytest.raises(InvalidInputSeries):
        validate_candles([_candle(1, 10, 11, 9, 10, v=-1)])
    with pytest.raises(InvalidInputSeries):
        validate_candles([_candle(1, float("nan"), 11, 9, 10)])


def test_timestamps_must_not_go_backwards():
    validate_candles([_candle(1, 10, 11, 9, 10), _candle(1, 10, 11, 9, 10)])
    with pytest.raises(InvalidInputSeries):
        validate_candles([_candle(2, 10, 11, 9, 10), _candle(1, 10, 11, 9, 10)])


def test_load_candles_csv(tmp_path):
    path = tmp_path / "BTCUSDT.csv"
    path.write_text(
        "timestamp,open,high,low,close,volume\n"
        "1000,10,11,9,10.5,3\n"
        "2000,10.5,12,10,11.5,4\n",
        encoding="utf-8",
    )
    candles = load_candles_csv(path)
    assert closes(candles) == [10.5, 11.5]
    assert candles[1].timestamp == 2000


def test_load_candles_csv_missing_column(tmp_path):
    path = tmp_path / "bad.csv"
    path.write_text("timestamp,open,high,low,close\n1,1,1,1,1\n", encoding="utf-8")
    with pytest.raises(InvalidInputSeries):
        load_candles_csv(path)
