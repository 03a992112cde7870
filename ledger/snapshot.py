"""账本只读快照与持久化 schema。

读者（指标/风险/渲染）只拿快照：所有集合都是 tuple，元素都是 frozen dataclass，
账本后续的任何变更都不会反映到已取出的快照里。
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict

from shared.models.models import ClosedTrade, Order, Position, WatchlistItem

SCHEMA_VERSION = 1


class LedgerSettings(BaseModel):
    """用户设置（固定字段）。"""
    theme: Literal["dark", "light"] = "dark"
    notifications: bool = True
    sound: bool = True

    model_config = ConfigDict(extra="forbid", frozen=True)


@dataclass(frozen=True)
class PortfolioSummary:
    total_value: float
    positions_value: float
    cash_balance: float
    unrealized_pnl: float
    unrealized_pnl_percent: float
    realized_pnl: float
    positions_count: int
    open_orders_count: int
    buying_power: float


@dataclass(frozen=True)
class LedgerSnapshot:
    taken_at: int
    initial_balance: float
    cash_balance: float
    fee_rate: float
    positions: tuple[Position, ...]
    orders: tuple[Order, ...]
    closed_trades: tuple[ClosedTrade, ...]
    watchlist: tuple[WatchlistItem, ...]
    settings: LedgerSettings
    next_seq: int = 1

    @property
    def positions_value(self) -> float:
        return sum(p.market_value for p in self.positions)

    @property
    def realized_pnl(self) -> float:
        return sum(t.realized_pnl for t in self.closed_trades)

    def positions_for(self, symbol: str) -> tuple[Position, ...]:
        return tuple(p for p in self.positions if p.symbol == symbol)

    def summary(self) -> PortfolioSummary:
        positions_value = self.positions_value
        unrealized = sum(p.unrealized_pnl for p in self.positions)
        total = self.cash_balance + positions_value
        return PortfolioSummary(
            total_value=total,
            positions_value=positions_value,
            cash_balance=self.cash_balance,
            unrealized_pnl=unrealized,
            unrealized_pnl_percent=(unrealized / total * 100.0) if total > 0 else 0.0,
            realized_pnl=self.realized_pnl,
            positions_count=len(self.positions),
            open_orders_count=sum(1 for o in self.orders if not o.status.is_terminal),
            buying_power=self.cash_balance,
        )

    def to_dict(self) -> dict[str, Any]:
        """稳定 schema：订单/持仓原样存储，恢复时不重放历史。"""
        return {
            "schema_version": SCHEMA_VERSION,
            "taken_at": self.taken_at,
            "initial_balance": self.initial_balance,
            "cash_balance": self.cash_balance,
            "fee_rate": self.fee_rate,
            "next_seq": self.next_seq,
            "positions": [p.to_dict() for p in self.positions],
            "orders": [o.to_dict() for o in self.orders],
            "closed_trades": [t.to_dict() for t in self.closed_trades],
            "watchlist": [w.to_dict() for w in self.watchlist],
            "settings": self.settings.model_dump(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "LedgerSnapshot":
        version = data.get("schema_version")
        if version != SCHEMA_VERSION:
            raise ValueError(f"Unsupported ledger schema_version: {version!r}")
        return cls(
            taken_at=int(data.get("taken_at") or 0),
            initial_balance=float(data["initial_balance"]),
            cash_balance=float(data["cash_balance"]),
            fee_rate=float(data.get("fee_rate", 0.0)),
            positions=tuple(Position.from_dict(p) for p in data.get("positions", [])),
            orders=tuple(Order.from_dict(o) for o in data.get("orders", [])),
            closed_trades=tuple(ClosedTrade.from_dict(t) for t in data.get("closed_trades", [])),
            watchlist=tuple(WatchlistItem.from_dict(w) for w in data.get("watchlist", [])),
            settings=LedgerSettings.model_validate(data.get("settings") or {}),
            next_seq=int(data.get("next_seq", 1)),
        )
