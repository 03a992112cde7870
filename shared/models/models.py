"""核心数据结构：Candle/Order/Position/ClosedTrade/OrderBookLevel。

约定：
- 所有记录都是 frozen dataclass，账本通过 `dataclasses.replace` 生成新版本，
  因此读者拿到的任何对象都不会被后续变更“偷偷改掉”。
- 时间统一为 epoch 毫秒（int）。
- `to_dict`/`from_dict` 输出稳定 schema，供持久化层原样存取。
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, fields
from enum import Enum
from typing import Any


class OrderSide(str, Enum):
    BUY = "buy"
    SELL = "sell"

    @property
    def opposite(self) -> "OrderSide":
        return OrderSide.SELL if self is OrderSide.BUY else OrderSide.BUY


class OrderType(str, Enum):
    MARKET = "market"
    LIMIT = "limit"
    STOP = "stop"
    STOP_LIMIT = "stop-limit"


class TimeInForce(str, Enum):
    GTC = "gtc"
    DAY = "day"
    IOC = "ioc"
    FOK = "fok"


class OrderStatus(str, Enum):
    """订单状态（状态机见 `ledger/orders.py`）。"""

    PENDING = "pending"
    OPEN = "open"
    PARTIALLY_FILLED = "partially-filled"
    FILLED = "filled"
    CANCELLED = "cancelled"
    REJECTED = "rejected"

    @property
    def is_terminal(self) -> bool:
        return self in (OrderStatus.FILLED, OrderStatus.CANCELLED, OrderStatus.REJECTED)


class PositionSide(str, Enum):
    LONG = "long"
    SHORT = "short"

    @property
    def sign(self) -> int:
        """方向符号：多头 +1，空头 -1。"""
        return 1 if self is PositionSide.LONG else -1

    @property
    def opening_side(self) -> OrderSide:
        return OrderSide.BUY if self is PositionSide.LONG else OrderSide.SELL

    @property
    def closing_side(self) -> OrderSide:
        return self.opening_side.opposite


def _plain(obj: Any) -> dict[str, Any]:
    out = asdict(obj)
    for k, v in out.items():
        if isinstance(v, Enum):
            out[k] = v.value
    return out


def _known_fields(cls: type, data: dict[str, Any]) -> dict[str, Any]:
    names = {f.name for f in fields(cls)}
    unknown = set(data) - names
    if unknown:
        raise ValueError(f"{cls.__name__} got unknown fields: {sorted(unknown)}")
    return dict(data)


@dataclass(frozen=True)
class Candle:
    """K 线数据（OHLCV）。"""

    timestamp: int
    open: float
    high: float
    low: float
    close: float
    volume: float

    def to_dict(self) -> dict[str, Any]:
        return _plain(self)


@dataclass(frozen=True)
class Order:
    """订单记录（只追加，永不删除）。"""

    id: str
    symbol: str
    side: OrderSide
    type: OrderType
    quantity: float
    status: OrderStatus
    created_at: int
    updated_at: int
    price: float | None = None
    stop_price: float | None = None
    time_in_force: TimeInForce = TimeInForce.GTC
    filled_quantity: float = 0.0
    average_fill_price: float | None = None
    filled_at: int | None = None
    position_id: str | None = None
    realized_pnl: float | None = None
    reject_reason: str | None = None

    @property
    def remaining_quantity(self) -> float:
        return max(0.0, self.quantity - self.filled_quantity)

    @property
    def fill_percentage(self) -> float:
        return (self.filled_quantity / self.quantity) * 100 if self.quantity > 0 else 0.0

    def to_dict(self) -> dict[str, Any]:
        return _plain(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Order":
        d = _known_fields(cls, data)
        d["side"] = OrderSide(d["side"])
        d["type"] = OrderType(d["type"])
        d["status"] = OrderStatus(d["status"])
        d["time_in_force"] = TimeInForce(d.get("time_in_force", "gtc"))
        return cls(**d)


@dataclass(frozen=True)
class Position:
    """持仓快照。"""

    id: str
    symbol: str
    side: PositionSide
    quantity: float
    average_price: float
    current_price: float
    opened_at: int
    last_updated: int
    unrealized_pnl: float = 0.0
    unrealized_pnl_percent: float = 0.0

    @property
    def cost_basis(self) -> float:
        return self.quantity * self.average_price

    @property
    def market_value(self) -> float:
        return self.quantity * self.current_price

    def to_dict(self) -> dict[str, Any]:
        return _plain(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Position":
        d = _known_fields(cls, data)
        d["side"] = PositionSide(d["side"])
        return cls(**d)


@dataclass(frozen=True)
class ClosedTrade:
    """平仓记录（已实现盈亏），用于胜率/盈亏比统计。"""

    order_id: str
    position_id: str
    symbol: str
    side: PositionSide
    quantity: float
    entry_price: float
    exit_price: float
    realized_pnl: float
    closed_at: int

    @property
    def is_win(self) -> bool:
        return self.realized_pnl > 0

    def to_dict(self) -> dict[str, Any]:
        return _plain(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ClosedTrade":
        d = _known_fields(cls, data)
        d["side"] = PositionSide(d["side"])
        return cls(**d)


@dataclass(frozen=True)
class WatchlistItem:
    symbol: str
    name: str
    added_at: int

    def to_dict(self) -> dict[str, Any]:
        return _plain(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "WatchlistItem":
        return cls(**_known_fields(cls, data))


@dataclass(frozen=True)
class OrderBookLevel:
    """订单簿单档（价格 + 数量）。"""

    price: float
    size: float


@dataclass(frozen=True)
class EquityPoint:
    """权益曲线上的一个点。"""

    timestamp: int
    value: float
