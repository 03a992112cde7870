"""因子注册表：字符串 -> 因子实现。"""

from __future__ import annotations

from typing import Any

import pandas as pd

from factors.base import Factor
from factors.bollinger import BollingerFactor
from factors.ema import EMAFactor
from factors.ma import SMAFactor
from factors.macd import MACDFactor
from factors.rsi import RSIFactor
from shared.config.schema import IndicatorConfig

_REGISTRY: dict[str, type] = {}


def register_factor(name: str, cls: type) -> None:
    _REGISTRY[name] = cls


def get_factor_cls(name: str) -> type:
    if name not in _REGISTRY:
        raise ValueError(f"Unknown factor: {name}")
    return _REGISTRY[name]


def factors_from_indicator_config(cfg: IndicatorConfig) -> list[Factor]:
    """按图表指标开关生成因子列表（顺序：SMA, EMA, RSI, MACD, Bollinger）。"""
    factors: list[Factor] = []
    factors.extend(SMAFactor(period=p) for p in cfg.sma_periods)
    factors.extend(EMAFactor(period=p) for p in cfg.ema_periods)
    if cfg.rsi:
        factors.append(RSIFactor(period=cfg.rsi_period))
    if cfg.macd:
        factors.append(MACDFactor(fast=cfg.macd_fast, slow=cfg.macd_slow, signal=cfg.macd_signal))
    if cfg.bollinger:
        factors.append(BollingerFactor(period=cfg.bollinger_period, k=cfg.bollinger_k))
    return factors


def build_factors(cfg: Any) -> list[Factor]:
    """从配置构建因子列表。

    支持形态：
    - IndicatorConfig
    - factors: [{name: "sma", params: {...}}, ...]
    - 直接传入 list[dict]
    """
    if cfg is None:
        return []
    if isinstance(cfg, IndicatorConfig):
        return factors_from_indicator_config(cfg)

    items = cfg
    if isinstance(cfg, dict):
        items = cfg.get("factors") or []
    if not isinstance(items, list):
        raise ValueError("factors config must be a list")

    factors: list[Factor] = []
    for item in items:
        if not isinstance(item, dict):
            raise ValueError("factor item must be a dict")
        name = str(item.get("name") or item.get("type") or "")
        params = item.get("params") or {}
        if not name:
            raise ValueError("factor item missing name")
        if not isinstance(params, dict):
            raise ValueError("factor params must be a dict")
        cls = get_factor_cls(name)
        factors.append(cls(**params))
    return factors


def apply_factors(df: pd.DataFrame, factors: list[Factor]) -> pd.DataFrame:
    """在 df 的副本上依次计算因子（调用方的 df 保持不变）。"""
    out = df.copy()
    for f in factors:
        out = f.compute(out)
    return out


# 默认注册
register_factor("sma", SMAFactor)
register_factor("ema", EMAFactor)
register_factor("rsi", RSIFactor)
register_factor("macd", MACDFactor)
register_factor("bollinger", BollingerFactor)
