"""配置架构定义（Pydantic Schema）。

目标：
- 让配置成为“强类型 + 固定字段”的边界协议，未知 key 直接报错；
- 启动阶段尽早失败，避免指标周期写错这类问题在渲染层才暴露成 NaN。
"""

from __future__ import annotations

from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class LedgerConfig(BaseModel):
    """账本配置。"""
    initial_balance: float = Field(default=100_000.0, gt=0)
    # 手续费率：默认 0，保持“同价开平仓现金不变”的账本不变量
    fee_rate: float = Field(default=0.0, ge=0, lt=1)
    max_watchlist_symbols: int = Field(default=50, gt=0)
    store_path: Optional[str] = None

    model_config = ConfigDict(extra="forbid")


class IndicatorConfig(BaseModel):
    """图表指标开关与参数（固定字段，构造时校验）。"""
    rsi: bool = True
    rsi_period: int = Field(default=14, gt=0)
    rsi_overbought: float = 70.0
    rsi_oversold: float = 30.0

    macd: bool = True
    macd_fast: int = Field(default=12, gt=0)
    macd_slow: int = Field(default=26, gt=0)
    macd_signal: int = Field(default=9, gt=0)

    bollinger: bool = True
    bollinger_period: int = Field(default=20, gt=0)
    bollinger_k: float = Field(default=2.0, gt=0)

    sma_periods: List[int] = Field(default_factory=lambda: [20, 50, 200])
    ema_periods: List[int] = Field(default_factory=lambda: [12, 26])

    model_config = ConfigDict(extra="forbid", frozen=True)

    @field_validator("sma_periods", "ema_periods")
    @classmethod
    def _positive_unique_periods(cls, v: List[int]) -> List[int]:
        if any(p <= 0 for p in v):
            raise ValueError("periods must be > 0")
        # 去重但保留顺序
        return list(dict.fromkeys(v))

    @model_validator(mode="after")
    def _check_ranges(self) -> "IndicatorConfig":
        if self.macd_fast >= self.macd_slow:
            raise ValueError("macd_fast must be < macd_slow")
        if not 0 <= self.rsi_oversold < self.rsi_overbought <= 100:
            raise ValueError("require 0 <= rsi_oversold < rsi_overbought <= 100")
        return self


class RiskConfig(BaseModel):
    """组合风险分析参数。"""
    risk_free_rate: float = 0.0           # 每期无风险收益率（与收益率同频）
    periods_per_year: int = Field(default=252, gt=0)
    var_confidence: float = Field(default=0.95, gt=0.5, lt=1.0)
    allocation_tolerance: float = Field(default=1e-6, ge=0)

    model_config = ConfigDict(extra="forbid")


class MainConfig(BaseModel):
    """应用总配置。"""
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    ledger: LedgerConfig = Field(default_factory=LedgerConfig)
    indicators: IndicatorConfig = Field(default_factory=IndicatorConfig)
    risk: RiskConfig = Field(default_factory=RiskConfig)

    model_config = ConfigDict(extra="forbid", validate_assignment=True)

    @field_validator("log_level", mode="before")
    @classmethod
    def _upper_level(cls, v):
        return v.upper() if isinstance(v, str) else v
