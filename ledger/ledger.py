"""单写者账本：现金、持仓、订单与已实现盈亏。

设计要点：
- 所有记录都是 frozen dataclass，变更通过 `dataclasses.replace` 生成新版本。
- 每个变更操作要么完整生效，要么抛出 `LedgerError` 子类且状态不变
  （先校验；多步操作在 `_transaction` 中执行，失败整体回滚）。
- 现金记账：开仓/加仓扣除 `quantity × price`（含手续费）；
  平仓（多空相同）回款 `quantity × exit_price`（扣手续费），
  因此按标记价平仓不改变 `total_value`。
- 读者只拿 `snapshot()`，不持有可变账本引用。
"""

from __future__ import annotations

import math
import time
from contextlib import contextmanager
from dataclasses import replace
from typing import Any, Callable, Iterable, Mapping

from pydantic import ValidationError

from ledger.orders import (
    CANCELLABLE,
    FILLABLE,
    MODIFIABLE,
    check_transition,
    order_value,
    validate_order_params,
)
from ledger.snapshot import LedgerSettings, LedgerSnapshot, PortfolioSummary
from shared.config.schema import LedgerConfig
from shared.errors import (
    InsufficientFunds,
    InvalidPrice,
    InvalidQuantity,
    InvalidStateTransition,
    LedgerError,
    OrderNotFound,
    PositionNotFound,
)
from shared.models.models import (
    ClosedTrade,
    Order,
    OrderSide,
    OrderStatus,
    OrderType,
    Position,
    PositionSide,
    TimeInForce,
    WatchlistItem,
)
from shared.utils.logging import setup_logger

_LOGGER = setup_logger("ledger")

# 数量比较容差（浮点累加误差）
QTY_EPS = 1e-9
CASH_EPS = 1e-9


def _now_ms() -> int:
    return int(time.time() * 1000)


def _mark(position: Position, price: float, ts: int) -> Position:
    """按标记价格重算未实现盈亏。"""
    sign = position.side.sign
    pnl = (price - position.average_price) * position.quantity * sign
    pct = (price - position.average_price) / position.average_price * 100.0 * sign
    return replace(
        position,
        current_price=price,
        unrealized_pnl=pnl,
        unrealized_pnl_percent=pct,
        last_updated=ts,
    )


class Ledger:
    """交易账本（单写者）。

    Parameters
    ----------
    initial_balance:
        入金（funded capital）。
    fee_rate:
        成交手续费率，默认 0。
    max_watchlist_symbols:
        自选列表上限。
    clock:
        返回 epoch 毫秒的时钟，测试中可注入固定时钟。
    """

    def __init__(
        self,
        initial_balance: float = 100_000.0,
        *,
        fee_rate: float = 0.0,
        max_watchlist_symbols: int = 50,
        clock: Callable[[], int] | None = None,
    ):
        if not (math.isfinite(initial_balance) and initial_balance > 0):
            raise ValueError("initial_balance must be > 0")
        if not 0.0 <= fee_rate < 1.0:
            raise ValueError("fee_rate must be in [0, 1)")
        self._initial_balance = float(initial_balance)
        self._fee_rate = float(fee_rate)
        self._max_watchlist = int(max_watchlist_symbols)
        self._clock = clock or _now_ms

        self._cash = float(initial_balance)
        self._positions: dict[str, Position] = {}
        self._orders: dict[str, Order] = {}
        self._closed_trades: list[ClosedTrade] = []
        self._watchlist: dict[str, WatchlistItem] = {}
        self._settings = LedgerSettings()
        self._seq = 1

    @classmethod
    def from_config(cls, cfg: LedgerConfig, clock: Callable[[], int] | None = None) -> "Ledger":
        return cls(
            cfg.initial_balance,
            fee_rate=cfg.fee_rate,
            max_watchlist_symbols=cfg.max_watchlist_symbols,
            clock=clock,
        )

    # ------------------------------------------------------------------
    # 只读属性 / 查询
    # ------------------------------------------------------------------
    @property
    def initial_balance(self) -> float:
        return self._initial_balance

    @property
    def fee_rate(self) -> float:
        return self._fee_rate

    @property
    def cash_balance(self) -> float:
        return self._cash

    @property
    def positions(self) -> tuple[Position, ...]:
        return tuple(self._positions.values())

    @property
    def orders(self) -> tuple[Order, ...]:
        """全部订单（按创建顺序）。"""
        return tuple(self._orders.values())

    @property
    def closed_trades(self) -> tuple[ClosedTrade, ...]:
        return tuple(self._closed_trades)

    @property
    def watchlist(self) -> tuple[WatchlistItem, ...]:
        return tuple(self._watchlist.values())

    @property
    def settings(self) -> LedgerSettings:
        return self._settings

    def get_position(self, position_id: str) -> Position:
        try:
            return self._positions[position_id]
        except KeyError:
            raise self._rejected(
                PositionNotFound(f"position not found: {position_id}", position_id=position_id)
            ) from None

    def get_order(self, order_id: str) -> Order:
        try:
            return self._orders[order_id]
        except KeyError:
            raise self._rejected(OrderNotFound(f"order not found: {order_id}", order_id=order_id)) from None

    def positions_for(self, symbol: str) -> tuple[Position, ...]:
        return tuple(p for p in self._positions.values() if p.symbol == symbol)

    def open_orders(self) -> tuple[Order, ...]:
        return tuple(o for o in self._orders.values() if not o.status.is_terminal)

    def order_history(self) -> tuple[Order, ...]:
        """终态订单，最新在前。"""
        done = [o for o in self._orders.values() if o.status.is_terminal]
        return tuple(reversed(done))

    def portfolio_value(self) -> PortfolioSummary:
        return self.snapshot().summary()

    def snapshot(self) -> LedgerSnapshot:
        return LedgerSnapshot(
            taken_at=self._clock(),
            initial_balance=self._initial_balance,
            cash_balance=self._cash,
            fee_rate=self._fee_rate,
            positions=self.positions,
            orders=self.orders,
            closed_trades=self.closed_trades,
            watchlist=self.watchlist,
            settings=self._settings,
            next_seq=self._seq,
        )

    # ------------------------------------------------------------------
    # 持仓操作
    # ------------------------------------------------------------------
    def open_position(self, symbol: str, side: PositionSide | str, quantity: float, price: float) -> Position:
        """开新仓：扣除 quantity × price（加手续费），记录一笔已成交的开仓市价单。"""
        side = PositionSide(side)
        if not symbol or not str(symbol).strip():
            raise self._rejected(LedgerError("symbol is required", symbol=symbol))
        self._check_quantity(quantity)
        self._check_price(price)

        with self._transaction():
            order = self._record_fill_order(symbol, side.opening_side, quantity, price)
            position = self._open(symbol, side, quantity, price)
            self._orders[order.id] = replace(order, position_id=position.id)

        _LOGGER.info(
            "Opened %s %s qty=%s @ %s (position=%s cash=%.2f)",
            side.value, symbol, quantity, price, position.id, self._cash,
        )
        return position

    def increase_position(self, position_id: str, quantity: float, price: float) -> Position:
        """同方向加仓，按数量加权更新均价。"""
        position = self.get_position(position_id)
        self._check_quantity(quantity)
        self._check_price(price)

        with self._transaction():
            order = self._record_fill_order(position.symbol, position.side.opening_side, quantity, price)
            updated = self._increase(position, quantity, price)
            self._orders[order.id] = replace(order, position_id=position.id)

        _LOGGER.info(
            "Increased %s qty+=%s @ %s -> qty=%s avg=%.6f",
            position_id, quantity, price, updated.quantity, updated.average_price,
        )
        return updated

    def close_position(self, position_id: str, exit_price: float, quantity: float | None = None) -> ClosedTrade:
        """平仓（默认全部）。返回本次平仓的 ClosedTrade，并追加一笔已成交的平仓单。"""
        position = self.get_position(position_id)
        qty = position.quantity if quantity is None else quantity
        self._check_quantity(qty)
        if qty > position.quantity + QTY_EPS:
            raise self._rejected(
                InvalidQuantity(
                    f"close quantity {qty} exceeds position quantity {position.quantity}",
                    position_id=position_id,
                    requested=qty,
                    available=position.quantity,
                )
            )
        self._check_price(exit_price)

        with self._transaction():
            order = self._record_fill_order(
                position.symbol, position.side.closing_side, qty, exit_price, position_id=position.id
            )
            trade = self._close(position, min(qty, position.quantity), exit_price, order.id)
            self._orders[order.id] = replace(order, realized_pnl=trade.realized_pnl)

        _LOGGER.info(
            "Closed %s qty=%s @ %s realized_pnl=%.4f cash=%.2f",
            position_id, trade.quantity, exit_price, trade.realized_pnl, self._cash,
        )
        return trade

    def update_mark_prices(self, prices: Mapping[str, float]) -> list[Position]:
        """按 symbol -> 价格 重算匹配持仓的未实现盈亏；不影响现金与订单。幂等。"""
        matched = [p for p in self._positions.values() if p.symbol in prices]
        for p in matched:
            self._check_price(prices[p.symbol])

        now = self._clock()
        updated = []
        for p in matched:
            marked = _mark(p, float(prices[p.symbol]), now)
            self._positions[p.id] = marked
            updated.append(marked)
        if updated:
            _LOGGER.debug("Marked %d positions", len(updated))
        return updated

    # ------------------------------------------------------------------
    # 订单生命周期
    # ------------------------------------------------------------------
    def submit_order(
        self,
        symbol: str,
        side: OrderSide | str,
        type: OrderType | str = OrderType.MARKET,
        quantity: float = 0.0,
        price: float | None = None,
        stop_price: float | None = None,
        time_in_force: TimeInForce | str = TimeInForce.GTC,
    ) -> Order:
        """提交订单。参数不合法时订单以 rejected 状态入账（带 reject_reason），不抛异常。"""
        side = OrderSide(side)
        type = OrderType(type)
        tif = TimeInForce(time_in_force)
        errors = validate_order_params(
            symbol=symbol, type=type, quantity=quantity, price=price, stop_price=stop_price
        )
        now = self._clock()
        order = Order(
            id=self._next_id("ord"),
            symbol=symbol,
            side=side,
            type=type,
            quantity=float(quantity) if quantity is not None else 0.0,
            status=OrderStatus.REJECTED if errors else OrderStatus.PENDING,
            created_at=now,
            updated_at=now,
            price=price,
            stop_price=stop_price,
            time_in_force=tif,
            reject_reason="; ".join(errors) if errors else None,
        )
        self._orders[order.id] = order
        if errors:
            _LOGGER.warning("Rejected order %s: %s", order.id, order.reject_reason)
        else:
            _LOGGER.info("Submitted %s %s %s qty=%s (%s)", type.value, side.value, symbol, quantity, order.id)
        return order

    def accept_order(self, order_id: str) -> Order:
        return self._transition(order_id, OrderStatus.OPEN)

    def reject_order(self, order_id: str, reason: str) -> Order:
        return self._transition(order_id, OrderStatus.REJECTED, reject_reason=reason)

    def cancel_order(self, order_id: str) -> Order:
        order = self.get_order(order_id)
        if order.status not in CANCELLABLE:
            raise self._rejected(
                InvalidStateTransition(
                    f"order {order_id} cannot be cancelled from {order.status.value}",
                    order_id=order_id,
                    from_status=order.status.value,
                    to_status=OrderStatus.CANCELLED.value,
                )
            )
        return self._transition(order_id, OrderStatus.CANCELLED)

    def modify_order(
        self,
        order_id: str,
        *,
        quantity: float | None = None,
        price: float | None = None,
        stop_price: float | None = None,
    ) -> Order:
        """修改 pending/open 订单的数量或价格；修改后的参数需重新通过校验。"""
        order = self.get_order(order_id)
        if order.status not in MODIFIABLE:
            raise self._rejected(
                InvalidStateTransition(
                    f"order {order_id} cannot be modified in {order.status.value}",
                    order_id=order_id,
                    from_status=order.status.value,
                    to_status=order.status.value,
                )
            )
        new_qty = order.quantity if quantity is None else quantity
        if not new_qty > 0 or new_qty < order.filled_quantity:
            raise self._rejected(
                InvalidQuantity(
                    f"quantity must be > 0 and >= filled ({order.filled_quantity})",
                    order_id=order_id,
                    requested=new_qty,
                )
            )
        new_price = order.price if price is None else price
        new_stop = order.stop_price if stop_price is None else stop_price
        errors = validate_order_params(
            symbol=order.symbol, type=order.type, quantity=new_qty, price=new_price, stop_price=new_stop
        )
        if errors:
            raise self._rejected(InvalidPrice("; ".join(errors), order_id=order_id))

        updated = replace(
            order,
            quantity=float(new_qty),
            price=new_price,
            stop_price=new_stop,
            updated_at=self._clock(),
        )
        self._orders[order_id] = updated
        _LOGGER.info("Modified order %s qty=%s price=%s stop=%s", order_id, new_qty, new_price, new_stop)
        return updated

    def fill_order(self, order_id: str, quantity: float | None = None, price: float | None = None) -> Order:
        """对 open/partially-filled 订单应用一笔成交。

        买单成交先平掉同 symbol 的空头，剩余部分开/加多头；卖单对称。
        现金不足时整笔成交被拒绝，订单与持仓均保持不变。
        """
        order = self.get_order(order_id)
        if order.status not in FILLABLE:
            raise self._rejected(
                InvalidStateTransition(
                    f"order {order_id} cannot be filled from {order.status.value}",
                    order_id=order_id,
                    from_status=order.status.value,
                    to_status=OrderStatus.FILLED.value,
                )
            )
        qty = order.remaining_quantity if quantity is None else quantity
        self._check_quantity(qty)
        if qty > order.remaining_quantity + QTY_EPS:
            raise self._rejected(
                InvalidQuantity(
                    f"fill quantity {qty} exceeds remaining {order.remaining_quantity}",
                    order_id=order_id,
                    requested=qty,
                    available=order.remaining_quantity,
                )
            )
        fill_price = price if price is not None else order.price
        if fill_price is None:
            raise self._rejected(InvalidPrice("market order fill requires a price", order_id=order_id))
        self._check_price(fill_price)

        with self._transaction():
            trades, position_id = self._apply_fill(order.symbol, order.side, qty, fill_price, order.id)
            filled = order.filled_quantity + qty
            avg = ((order.average_fill_price or 0.0) * order.filled_quantity + fill_price * qty) / filled
            done = filled >= order.quantity - QTY_EPS
            status = OrderStatus.FILLED if done else OrderStatus.PARTIALLY_FILLED
            check_transition(order, status)
            now = self._clock()
            realized = None
            if trades:
                realized = (order.realized_pnl or 0.0) + sum(t.realized_pnl for t in trades)
            updated = replace(
                order,
                status=status,
                filled_quantity=order.quantity if done else filled,
                average_fill_price=avg,
                filled_at=now if done else order.filled_at,
                updated_at=now,
                position_id=position_id,
                realized_pnl=realized,
            )
            self._orders[order_id] = updated

        _LOGGER.info(
            "Filled %s qty=%s @ %s -> %s (%.2f%%)",
            order_id, qty, fill_price, status.value, updated.fill_percentage,
        )
        return updated

    # ------------------------------------------------------------------
    # 自选 / 设置 / 重置
    # ------------------------------------------------------------------
    def add_to_watchlist(self, symbol: str, name: str = "") -> WatchlistItem:
        """加入自选；重复 symbol 直接返回已有条目。"""
        if not symbol or not str(symbol).strip():
            raise ValueError("symbol is required")
        if symbol in self._watchlist:
            return self._watchlist[symbol]
        if len(self._watchlist) >= self._max_watchlist:
            raise ValueError(f"watchlist is full (max {self._max_watchlist} symbols)")
        item = WatchlistItem(symbol=symbol, name=name or symbol, added_at=self._clock())
        self._watchlist[symbol] = item
        _LOGGER.info("Watchlist + %s", symbol)
        return item

    def remove_from_watchlist(self, symbol: str) -> bool:
        removed = self._watchlist.pop(symbol, None) is not None
        if removed:
            _LOGGER.info("Watchlist - %s", symbol)
        return removed

    def update_settings(self, **changes: Any) -> LedgerSettings:
        try:
            settings = LedgerSettings.model_validate({**self._settings.model_dump(), **changes})
        except ValidationError as exc:
            _LOGGER.warning("Rejected settings update %s", changes)
            raise ValueError(f"Invalid settings: {exc.errors()[0]['msg']}") from exc
        self._settings = settings
        _LOGGER.info("Settings updated: %s", changes)
        return settings

    def reset_account(self) -> None:
        """清空持仓/订单/平仓记录，现金恢复为入金。自选与设置保留。"""
        self._cash = self._initial_balance
        self._positions.clear()
        self._orders.clear()
        self._closed_trades.clear()
        _LOGGER.info("Account reset, cash=%.2f", self._cash)

    # ------------------------------------------------------------------
    # 序列化
    # ------------------------------------------------------------------
    def to_dict(self) -> dict[str, Any]:
        return self.snapshot().to_dict()

    @classmethod
    def from_dict(
        cls,
        data: dict[str, Any],
        *,
        max_watchlist_symbols: int = 50,
        clock: Callable[[], int] | None = None,
    ) -> "Ledger":
        """按原样恢复账本状态（不重放历史）。"""
        snap = LedgerSnapshot.from_dict(data)
        if snap.cash_balance < 0:
            raise ValueError("cash_balance must be >= 0")
        ledger = cls(
            snap.initial_balance,
            fee_rate=snap.fee_rate,
            max_watchlist_symbols=max_watchlist_symbols,
            clock=clock,
        )
        ledger._cash = snap.cash_balance
        ledger._positions = {p.id: p for p in snap.positions}
        ledger._orders = {o.id: o for o in snap.orders}
        ledger._closed_trades = list(snap.closed_trades)
        ledger._watchlist = {w.symbol: w for w in snap.watchlist}
        ledger._settings = snap.settings
        ledger._seq = snap.next_seq
        return ledger

    # ------------------------------------------------------------------
    # 内部实现
    # ------------------------------------------------------------------
    def _rejected(self, exc: LedgerError) -> LedgerError:
        _LOGGER.warning("Rejected: %s", exc)
        return exc

    def _check_quantity(self, quantity: float) -> None:
        if quantity is None or not math.isfinite(quantity) or quantity <= 0:
            raise self._rejected(InvalidQuantity(f"quantity must be > 0, got {quantity}", requested=quantity))

    def _check_price(self, price: float) -> None:
        if price is None or not math.isfinite(price) or price <= 0:
            raise self._rejected(InvalidPrice(f"price must be > 0, got {price}", price=price))

    def _next_id(self, prefix: str) -> str:
        seq = self._seq
        self._seq += 1
        return f"{prefix}-{seq:06d}"

    @contextmanager
    def _transaction(self):
        """多步变更：任何一步抛错都恢复到进入前的状态。"""
        saved = (
            self._cash,
            dict(self._positions),
            dict(self._orders),
            list(self._closed_trades),
            self._seq,
        )
        try:
            yield
        except Exception as exc:
            self._cash, self._positions, self._orders, self._closed_trades, self._seq = saved
            if isinstance(exc, LedgerError):
                _LOGGER.warning("Rejected: %s", exc)
            raise

    def _debit(self, amount: float, **details) -> None:
        if amount > self._cash + CASH_EPS:
            raise InsufficientFunds(
                f"insufficient funds: need {amount:.2f}, available {self._cash:.2f}",
                required=amount,
                available=self._cash,
                **details,
            )
        self._cash = max(0.0, self._cash - amount)

    def _record_fill_order(
        self,
        symbol: str,
        side: OrderSide,
        quantity: float,
        price: float,
        *,
        position_id: str | None = None,
    ) -> Order:
        now = self._clock()
        order = Order(
            id=self._next_id("ord"),
            symbol=symbol,
            side=side,
            type=OrderType.MARKET,
            quantity=float(quantity),
            status=OrderStatus.FILLED,
            created_at=now,
            updated_at=now,
            price=float(price),
            filled_quantity=float(quantity),
            average_fill_price=float(price),
            filled_at=now,
            position_id=position_id,
        )
        self._orders[order.id] = order
        return order

    def _open(self, symbol: str, side: PositionSide, quantity: float, price: float) -> Position:
        cost = order_value(quantity, price, OrderSide.BUY, self._fee_rate).total
        self._debit(cost, symbol=symbol)
        now = self._clock()
        position = Position(
            id=self._next_id("pos"),
            symbol=symbol,
            side=side,
            quantity=float(quantity),
            average_price=float(price),
            current_price=float(price),
            opened_at=now,
            last_updated=now,
        )
        self._positions[position.id] = position
        return position

    def _increase(self, position: Position, quantity: float, price: float) -> Position:
        cost = order_value(quantity, price, OrderSide.BUY, self._fee_rate).total
        self._debit(cost, position_id=position.id)
        new_qty = position.quantity + quantity
        avg = (position.quantity * position.average_price + quantity * price) / new_qty
        updated = _mark(replace(position, quantity=new_qty, average_price=avg), float(price), self._clock())
        self._positions[position.id] = updated
        return updated

    def _close(self, position: Position, quantity: float, exit_price: float, order_id: str) -> ClosedTrade:
        sign = position.side.sign
        gross = (exit_price - position.average_price) * quantity * sign
        fee = order_value(quantity, exit_price, OrderSide.SELL, self._fee_rate).fee
        pnl = gross - fee
        self._cash += quantity * exit_price - fee

        now = self._clock()
        remaining = position.quantity - quantity
        if remaining <= QTY_EPS:
            del self._positions[position.id]
        else:
            self._positions[position.id] = _mark(replace(position, quantity=remaining), exit_price, now)

        trade = ClosedTrade(
            order_id=order_id,
            position_id=position.id,
            symbol=position.symbol,
            side=position.side,
            quantity=float(quantity),
            entry_price=position.average_price,
            exit_price=float(exit_price),
            realized_pnl=pnl,
            closed_at=now,
        )
        self._closed_trades.append(trade)
        return trade

    def _apply_fill(
        self,
        symbol: str,
        side: OrderSide,
        quantity: float,
        price: float,
        order_id: str,
    ) -> tuple[list[ClosedTrade], str | None]:
        """成交落到持仓：先减反向持仓，剩余数量开/加同向持仓。"""
        opening = PositionSide.LONG if side is OrderSide.BUY else PositionSide.SHORT
        closing = PositionSide.SHORT if opening is PositionSide.LONG else PositionSide.LONG

        trades: list[ClosedTrade] = []
        position_id = None
        left = quantity
        for pos in self._iter_positions(symbol, closing):
            if left <= QTY_EPS:
                break
            take = min(left, pos.quantity)
            trades.append(self._close(pos, take, price, order_id))
            position_id = pos.id
            left -= take

        if left > QTY_EPS:
            same = next(iter(self._iter_positions(symbol, opening)), None)
            if same is not None:
                position_id = self._increase(same, left, price).id
            else:
                position_id = self._open(symbol, opening, left, price).id
        return trades, position_id

    def _iter_positions(self, symbol: str, side: PositionSide) -> Iterable[Position]:
        return [p for p in self._positions.values() if p.symbol == symbol and p.side is side]

    def _transition(self, order_id: str, dst: OrderStatus, **changes: Any) -> Order:
        order = self.get_order(order_id)
        try:
            check_transition(order, dst)
        except InvalidStateTransition as exc:
            raise self._rejected(exc)
        updated = replace(order, status=dst, updated_at=self._clock(), **changes)
        self._orders[order_id] = updated
        if dst is OrderStatus.REJECTED:
            _LOGGER.warning("Order %s rejected: %s", order_id, changes.get("reject_reason"))
        else:
            _LOGGER.info("Order %s %s -> %s", order_id, order.status.value, dst.value)
        return updated
