"""组合风险分析：Sharpe、最大回撤、波动率、参数法 VaR、仓位分布、交易统计。

全部是纯函数：输入权益曲线 / 持仓 / 平仓记录，输出只读结果；
`compute_risk_snapshot` 只读取账本快照，从不持有可变账本引用。
"""

from __future__ import annotations

import math
from dataclasses import asdict, dataclass
from statistics import NormalDist, mean, pstdev
from typing import TYPE_CHECKING, Iterable, Sequence

from shared.config.schema import RiskConfig
from shared.errors import InvalidInputSeries
from shared.models.models import ClosedTrade, EquityPoint, Position

if TYPE_CHECKING:
    from ledger.snapshot import LedgerSnapshot


def equity_values(equity_curve: Sequence) -> list[float]:
    """把权益曲线规范化为数值列表，并校验：数值有限、时间戳单调不减。

    支持 EquityPoint、(timestamp, value) 元组，或纯数值（按顺序视为等间隔）。
    """
    values: list[float] = []
    prev_ts = None
    for i, item in enumerate(equity_curve):
        if isinstance(item, EquityPoint):
            ts, val = item.timestamp, item.value
        elif isinstance(item, (tuple, list)):
            if len(item) != 2:
                raise InvalidInputSeries(f"equity[{i}] must be (timestamp, value)", index=i)
            ts, val = item
        else:
            ts, val = None, item
        try:
            val = float(val)
        except (TypeError, ValueError) as exc:
            raise InvalidInputSeries(f"equity[{i}] is not numeric", index=i) from exc
        if not math.isfinite(val):
            raise InvalidInputSeries(f"equity[{i}] is NaN/Inf", index=i)
        if ts is not None:
            if prev_ts is not None and ts < prev_ts:
                raise InvalidInputSeries(f"equity[{i}] timestamp goes backwards", index=i)
            prev_ts = ts
        values.append(val)
    return values


def periodic_returns(equity_curve: Sequence) -> list[float]:
    """相邻权益点的简单收益率。前一个值 <= 0 时无法定义收益率，直接报错。"""
    values = equity_values(equity_curve)
    returns = []
    for i in range(1, len(values)):
        prev = values[i - 1]
        if prev <= 0:
            raise InvalidInputSeries(f"equity[{i - 1}] must be > 0 to derive returns", index=i - 1)
        returns.append(values[i] / prev - 1.0)
    return returns


def sharpe_ratio(
    equity_curve: Sequence,
    risk_free_rate: float = 0.0,
    periods_per_year: int | None = None,
) -> float:
    """(平均收益 - 无风险收益) / 收益标准差；给定 periods_per_year 时按 √N 年化。

    收益点少于 2 个或标准差为 0 时返回 0.0。
    """
    returns = periodic_returns(equity_curve)
    if len(returns) < 2:
        return 0.0
    sigma = pstdev(returns)
    if sigma == 0:
        return 0.0
    ratio = (mean(returns) - risk_free_rate) / sigma
    if periods_per_year:
        ratio *= math.sqrt(periods_per_year)
    return ratio


@dataclass(frozen=True)
class DrawdownResult:
    max_drawdown_pct: float
    peak: float | None
    trough: float | None
    peak_index: int | None
    trough_index: int | None


def drawdown_curve(equity_curve: Sequence) -> list[float]:
    """逐点回撤（百分比，>= 0）。"""
    values = equity_values(equity_curve)
    out = []
    peak = None
    for v in values:
        peak = v if peak is None else max(peak, v)
        out.append((peak - v) / peak * 100.0 if peak > 0 else 0.0)
    return out


def max_drawdown(equity_curve: Sequence) -> DrawdownResult:
    """按运行峰值追踪的最大回撤（百分比）。"""
    values = equity_values(equity_curve)
    if not values:
        return DrawdownResult(0.0, None, None, None, None)

    peak = values[0]
    peak_idx = 0
    best = DrawdownResult(0.0, values[0], values[0], 0, 0)
    for i, v in enumerate(values):
        if v > peak:
            peak, peak_idx = v, i
        dd = (peak - v) / peak * 100.0 if peak > 0 else 0.0
        if dd > best.max_drawdown_pct:
            best = DrawdownResult(dd, peak, v, peak_idx, i)
    return best


def daily_volatility(equity_curve: Sequence) -> float:
    """未年化的收益率标准差（总体标准差）。"""
    returns = periodic_returns(equity_curve)
    return pstdev(returns) if len(returns) > 1 else 0.0


def volatility(equity_curve: Sequence, periods_per_year: int = 252) -> float:
    """年化波动率：收益率标准差 × √periods_per_year（小数，不是百分比）。"""
    if periods_per_year <= 0:
        raise ValueError("periods_per_year must be > 0")
    return daily_volatility(equity_curve) * math.sqrt(periods_per_year)


def z_score(confidence: float) -> float:
    if not 0.5 < confidence < 1.0:
        raise ValueError("confidence must be in (0.5, 1)")
    return NormalDist().inv_cdf(confidence)


def value_at_risk(portfolio_value: float, daily_vol: float, confidence: float = 0.95) -> float:
    """参数法 VaR：portfolio_value × daily_vol × z(confidence)。"""
    if portfolio_value < 0 or daily_vol < 0:
        raise ValueError("portfolio_value and daily volatility must be >= 0")
    return portfolio_value * daily_vol * z_score(confidence)


@dataclass(frozen=True)
class AllocationItem:
    name: str
    value: float
    percent: float
    position_id: str | None = None


def allocation(
    positions: Iterable[Position],
    cash: float | None = None,
    tolerance: float = 1e-6,
) -> list[AllocationItem]:
    """按持仓市值计算占比；传入 cash 时追加一条 `cash` 项。

    不变量：Σpercent <= 100 + tolerance。
    """
    items = [(p.symbol, p.market_value, p.id) for p in positions]
    if cash is not None:
        if cash < 0:
            raise ValueError("cash must be >= 0")
        items.append(("cash", float(cash), None))
    total = sum(v for _, v, _ in items)
    out = [
        AllocationItem(name=n, value=v, percent=(v / total * 100.0) if total > 0 else 0.0, position_id=pid)
        for n, v, pid in items
    ]
    pct_sum = sum(a.percent for a in out)
    if pct_sum > 100.0 + tolerance:
        raise InvalidInputSeries(f"allocation percentages sum to {pct_sum:.8f} > 100")
    return out


@dataclass(frozen=True)
class TradeStats:
    total_trades: int
    wins: int
    losses: int
    win_rate: float  # 0..1
    gross_profit: float
    gross_loss: float
    profit_factor: float
    avg_win: float
    avg_loss: float
    risk_reward_ratio: float
    expectancy: float
    realized_pnl: float


def trade_statistics(trades: Iterable[ClosedTrade]) -> TradeStats:
    """基于平仓记录计算胜率/盈亏比等交易维度指标。"""
    pnls = [float(t.realized_pnl) for t in trades]
    wins = [p for p in pnls if p > 0]
    losses = [p for p in pnls if p < 0]
    total = len(pnls)
    gross_profit = sum(wins)
    gross_loss = abs(sum(losses))
    profit_factor = (
        gross_profit / gross_loss
        if gross_loss > 0
        else (float("inf") if gross_profit > 0 else 0.0)
    )
    avg_win = mean(wins) if wins else 0.0
    avg_loss = -mean(losses) if losses else 0.0
    rr = avg_win / avg_loss if avg_loss > 0 else (float("inf") if avg_win > 0 else 0.0)
    return TradeStats(
        total_trades=total,
        wins=len(wins),
        losses=len(losses),
        win_rate=len(wins) / total if total else 0.0,
        gross_profit=gross_profit,
        gross_loss=gross_loss,
        profit_factor=profit_factor,
        avg_win=avg_win,
        avg_loss=avg_loss,
        risk_reward_ratio=rr,
        expectancy=mean(pnls) if pnls else 0.0,
        realized_pnl=sum(pnls),
    )


@dataclass(frozen=True)
class RiskSnapshot:
    """风险视图：总是由账本快照 + 权益曲线即时推导，不作为事实来源持久化。"""

    portfolio_value: float
    positions_value: float
    cash_balance: float
    exposure_percent: float
    sharpe_ratio: float
    annualized_sharpe: float
    max_drawdown: DrawdownResult
    daily_volatility: float
    volatility: float
    value_at_risk: float
    var_confidence: float
    allocation: tuple[AllocationItem, ...]
    trade_stats: TradeStats

    def to_dict(self) -> dict:
        out = asdict(self)
        out["allocation"] = [asdict(a) for a in self.allocation]
        return out


def compute_risk_snapshot(
    snapshot: "LedgerSnapshot",
    equity_curve: Sequence,
    cfg: RiskConfig | None = None,
) -> RiskSnapshot:
    """由账本快照与权益曲线计算完整风险视图。"""
    cfg = cfg or RiskConfig()
    positions = snapshot.positions
    positions_value = sum(p.market_value for p in positions)
    portfolio_value = snapshot.cash_balance + positions_value

    dvol = daily_volatility(equity_curve)
    return RiskSnapshot(
        portfolio_value=portfolio_value,
        positions_value=positions_value,
        cash_balance=snapshot.cash_balance,
        exposure_percent=positions_value / portfolio_value * 100.0 if portfolio_value > 0 else 0.0,
        sharpe_ratio=sharpe_ratio(equity_curve, cfg.risk_free_rate),
        annualized_sharpe=sharpe_ratio(equity_curve, cfg.risk_free_rate, cfg.periods_per_year),
        max_drawdown=max_drawdown(equity_curve),
        daily_volatility=dvol,
        volatility=dvol * math.sqrt(cfg.periods_per_year),
        value_at_risk=value_at_risk(portfolio_value, dvol, cfg.var_confidence) if portfolio_value > 0 else 0.0,
        var_confidence=cfg.var_confidence,
        allocation=tuple(allocation(positions, cash=snapshot.cash_balance, tolerance=cfg.allocation_tolerance)),
        trade_stats=trade_statistics(snapshot.closed_trades),
    )
