"""行情数据模块（market_data）。

该包聚合：
- K 线输入校验（OHLCV 顺序不变量、时间戳单调）
- CSV 读取
"""

from market_data.candles import candles_to_frame, closes, load_candles_csv, validate_candle, validate_candles

__all__ = [
    "validate_candle",
    "validate_candles",
    "candles_to_frame",
    "closes",
    "load_candles_csv",
]
