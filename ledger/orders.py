"""订单状态机与下单参数校验。

状态迁移::

    pending -> open -> filled
    pending -> open -> partially-filled -> (partially-filled)* -> filled
    pending | open | partially-filled -> cancelled
    pending -> rejected

终态（filled / cancelled / rejected）不允许任何迁移。
"""

from __future__ import annotations

from dataclasses import dataclass

from shared.errors import InvalidStateTransition
from shared.models.models import Order, OrderSide, OrderStatus, OrderType

ALLOWED_TRANSITIONS: dict[OrderStatus, frozenset[OrderStatus]] = {
    OrderStatus.PENDING: frozenset({OrderStatus.OPEN, OrderStatus.CANCELLED, OrderStatus.REJECTED}),
    OrderStatus.OPEN: frozenset({OrderStatus.PARTIALLY_FILLED, OrderStatus.FILLED, OrderStatus.CANCELLED}),
    OrderStatus.PARTIALLY_FILLED: frozenset(
        {OrderStatus.PARTIALLY_FILLED, OrderStatus.FILLED, OrderStatus.CANCELLED}
    ),
    OrderStatus.FILLED: frozenset(),
    OrderStatus.CANCELLED: frozenset(),
    OrderStatus.REJECTED: frozenset(),
}

CANCELLABLE = frozenset({OrderStatus.PENDING, OrderStatus.OPEN, OrderStatus.PARTIALLY_FILLED})
MODIFIABLE = frozenset({OrderStatus.PENDING, OrderStatus.OPEN})
FILLABLE = frozenset({OrderStatus.OPEN, OrderStatus.PARTIALLY_FILLED})


def can_transition(src: OrderStatus, dst: OrderStatus) -> bool:
    return dst in ALLOWED_TRANSITIONS[src]


def check_transition(order: Order, dst: OrderStatus) -> None:
    """非法迁移抛 InvalidStateTransition（调用方此时尚未做任何修改）。"""
    if not can_transition(order.status, dst):
        raise InvalidStateTransition(
            f"order {order.id}: {order.status.value} -> {dst.value} is not allowed",
            order_id=order.id,
            from_status=order.status.value,
            to_status=dst.value,
        )


def validate_order_params(
    *,
    symbol: str,
    type: OrderType,
    quantity: float,
    price: float | None = None,
    stop_price: float | None = None,
) -> list[str]:
    """下单参数校验，返回错误列表（空列表表示合法）。"""
    errors: list[str] = []
    if not symbol or not str(symbol).strip():
        errors.append("Symbol is required")
    if quantity is None or not quantity > 0:
        errors.append("Quantity must be greater than 0")
    if type is OrderType.LIMIT and (price is None or price <= 0):
        errors.append("Valid price is required for limit orders")
    if type in (OrderType.STOP, OrderType.STOP_LIMIT) and (stop_price is None or stop_price <= 0):
        errors.append("Valid stop price is required for stop orders")
    if type is OrderType.STOP_LIMIT and (price is None or price <= 0):
        errors.append("Valid limit price is required for stop-limit orders")
    if type is OrderType.MARKET and price is not None and price <= 0:
        errors.append("Market order reference price must be > 0 when given")
    return errors


@dataclass(frozen=True)
class OrderValue:
    notional: float
    fee: float
    total: float


def order_value(quantity: float, price: float, side: OrderSide | str, fee_rate: float = 0.0) -> OrderValue:
    """订单金额：买单 total = notional + fee，卖单 total = notional - fee。"""
    side = OrderSide(side)
    notional = quantity * price
    fee = notional * fee_rate
    total = notional + fee if side is OrderSide.BUY else notional - fee
    return OrderValue(notional=notional, fee=fee, total=total)
