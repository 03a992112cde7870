from __future__ import annotations

import itertools

import pytest

from ledger.ledger import Ledger
from ledger.orders import order_value
from shared.errors import InsufficientFunds, InvalidPrice, InvalidQuantity, PositionNotFound
from shared.models.models import OrderSide, OrderStatus, PositionSide


def _clock():
    counter = itertools.count(1_700_000_000_000, 1000)
    return lambda: next(counter)


def _ledger(balance: float = 100_000.0, **kwargs) -> Ledger:
    return Ledger(balance, clock=_clock(), **kwargs)


def test_open_position_debits_cash_and_records_filled_order():
    ledger = _ledger()
    pos = ledger.open_position("BTC/USDT", "long", 0.5, 50_000)
    assert pos.side is PositionSide.LONG
    assert pos.average_price == 50_000 and pos.unrealized_pnl == 0.0
    assert abs(ledger.cash_balance - 75_000) < 1e-9

    (order,) = ledger.orders
    assert order.status is OrderStatus.FILLED
    assert order.side is OrderSide.BUY
    assert order.position_id == pos.id


def test_position_averaging():
    ledger = _ledger()
    pos = ledger.open_position("BTC/USDT", PositionSide.LONG, 0.5, 50_000)
    pos = ledger.increase_position(pos.id, 0.3, 51_000)
    assert abs(pos.quantity - 0.8) < 1e-12
    assert abs(pos.average_price - 50_375) < 1e-6
    assert abs(ledger.cash_balance - (100_000 - 25_000 - 15_300)) < 1e-9


def test_insufficient_funds_leaves_state_unchanged():
    ledger = _ledger(10_000)
    with pytest.raises(InsufficientFunds) as exc:
        ledger.open_position("BTC/USDT", "long", 0.5, 50_000)
    assert exc.value.code == "insufficient_funds"
    assert ledger.cash_balance == 10_000
    assert ledger.positions == ()
    assert ledger.orders == ()


def test_increase_position_insufficient_funds_is_atomic():
    ledger = _ledger(30_000)
    pos = ledger.open_position("ETH/USDT", "long", 10, 2_000)
    before = ledger.snapshot()
    with pytest.raises(InsufficientFunds):
        ledger.increase_position(pos.id, 10, 2_000)
    after = ledger.snapshot()
    assert after.cash_balance == before.cash_balance
    assert after.positions == before.positions
    assert after.orders == before.orders


def test_open_then_close_at_same_price_restores_cash():
    ledger = _ledger()
    pos = ledger.open_position("BTC/USDT", "long", 0.37, 43_210.5)
    trade = ledger.close_position(pos.id, 43_210.5)
    assert abs(ledger.cash_balance - 100_000) < 1e-9
    assert ledger.positions == ()
    assert trade.realized_pnl == 0.0

    short = ledger.open_position("BTC/USDT", "short", 0.2, 40_000)
    ledger.close_position(short.id, 40_000)
    assert abs(ledger.cash_balance - 100_000) < 1e-9


def test_close_long_realizes_pnl_and_credits_exit_value():
    ledger = _ledger()
    pos = ledger.open_position("BTC/USDT", "long", 1, 50_000)
    trade = ledger.close_position(pos.id, 55_000)
    assert trade.realized_pnl == 5_000
    assert abs(ledger.cash_balance - 105_000) < 1e-9
    closing = ledger.orders[-1]
    assert closing.side is OrderSide.SELL
    assert closing.status is OrderStatus.FILLED
    assert closing.realized_pnl == 5_000


def test_close_short_realizes_pnl_with_negative_sign():
    ledger = _ledger()
    pos = ledger.open_position("BTC/USDT", "short", 1, 50_000)
    trade = ledger.close_position(pos.id, 45_000)
    assert trade.realized_pnl == 5_000
    assert abs(ledger.cash_balance - 95_000) < 1e-9

    pos = ledger.open_position("BTC/USDT", "short", 1, 50_000)
    trade = ledger.close_position(pos.id, 52_000)
    assert trade.realized_pnl == -2_000
    assert abs(ledger.cash_balance - 97_000) < 1e-9


def test_close_at_mark_price_keeps_total_value():
    ledger = _ledger()
    short = ledger.open_position("BTC/USDT", "short", 1, 50_000)
    long_pos = ledger.open_position("ETH/USDT", "long", 4, 2_000)
    ledger.update_mark_prices({"BTC/USDT": 45_000, "ETH/USDT": 2_300})
    before = ledger.portfolio_value().total_value
    assert abs(before - 96_200) < 1e-9

    ledger.close_position(short.id, 45_000)
    assert abs(ledger.portfolio_value().total_value - before) < 1e-9
    ledger.close_position(long_pos.id, 2_300, quantity=1)
    assert abs(ledger.portfolio_value().total_value - before) < 1e-9
    ledger.close_position(long_pos.id, 2_300)
    assert ledger.positions == ()
    assert abs(ledger.cash_balance - before) < 1e-9


def test_partial_close_keeps_average_price():
    ledger = _ledger()
    pos = ledger.open_position("ETH/USDT", "long", 4, 2_000)
    trade = ledger.close_position(pos.id, 2_100, quantity=1)
    remaining = ledger.get_position(pos.id)
    assert trade.quantity == 1 and trade.realized_pnl == 100
    assert remaining.quantity == 3
    assert remaining.average_price == 2_000
    assert len(ledger.closed_trades) == 1


def test_close_more_than_position_raises_invalid_quantity():
    ledger = _ledger()
    pos = ledger.open_position("ETH/USDT", "long", 1, 2_000)
    with pytest.raises(InvalidQuantity):
        ledger.close_position(pos.id, 2_000, quantity=2)
    with pytest.raises(InvalidQuantity):
        ledger.close_position(pos.id, 2_000, quantity=0)
    assert ledger.get_position(pos.id).quantity == 1


def test_unknown_position_and_bad_inputs():
    ledger = _ledger()
    with pytest.raises(PositionNotFound):
        ledger.close_position("pos-missing", 100)
    with pytest.raises(InvalidQuantity):
        ledger.open_position("BTC/USDT", "long", -1, 100)
    with pytest.raises(InvalidPrice):
        ledger.open_position("BTC/USDT", "long", 1, 0)
    assert ledger.cash_balance == 100_000


def test_update_mark_prices_is_idempotent_and_symbol_scoped():
    ledger = _ledger()
    btc = ledger.open_position("BTC/USDT", "long", 0.5, 50_000)
    eth = ledger.open_position("ETH/USDT", "short", 2, 2_000)

    ledger.update_mark_prices({"BTC/USDT": 52_000})
    once = ledger.get_position(btc.id).unrealized_pnl
    ledger.update_mark_prices({"BTC/USDT": 52_000})
    twice = ledger.get_position(btc.id)
    assert once == twice.unrealized_pnl == 1_000
    assert abs(twice.unrealized_pnl_percent - 4.0) < 1e-9
    assert ledger.get_position(eth.id).unrealized_pnl == 0.0

    ledger.update_mark_prices({"ETH/USDT": 1_900})
    assert ledger.get_position(eth.id).unrealized_pnl == 200
    assert abs(ledger.cash_balance - 71_000) < 1e-9


def test_cash_never_negative_across_operations():
    ledger = _ledger(20_000)
    pos = ledger.open_position("SOL/USDT", "long", 100, 150)
    ledger.increase_position(pos.id, 20, 140)
    for attempt in (1_000, 500):
        with pytest.raises(InsufficientFunds):
            ledger.open_position("SOL/USDT", "long", attempt, 150)
        assert ledger.cash_balance >= 0
    ledger.close_position(pos.id, 160, quantity=60)
    assert ledger.cash_balance >= 0
    ledger.close_position(pos.id, 130)
    assert ledger.cash_balance >= 0
    assert ledger.positions == ()


def test_portfolio_value_summary():
    ledger = _ledger()
    pos = ledger.open_position("BTC/USDT", "long", 1, 50_000)
    ledger.update_mark_prices({"BTC/USDT": 51_000})
    summary = ledger.portfolio_value()
    assert summary.total_value == 101_000
    assert summary.positions_value == 51_000
    assert summary.unrealized_pnl == 1_000
    assert summary.positions_count == 1
    assert summary.buying_power == ledger.cash_balance
    ledger.close_position(pos.id, 51_000)
    assert ledger.portfolio_value().realized_pnl == 1_000


def test_snapshot_is_immutable_copy():
    ledger = _ledger()
    pos = ledger.open_position("BTC/USDT", "long", 1, 50_000)
    snap = ledger.snapshot()
    ledger.close_position(pos.id, 50_000)
    assert len(snap.positions) == 1
    assert snap.cash_balance == 50_000
    with pytest.raises(AttributeError):
        snap.positions[0].quantity = 2  # type: ignore[misc]


def test_watchlist_and_settings():
    ledger = _ledger(max_watchlist_symbols=2)
    ledger.add_to_watchlist("BTC/USDT", "Bitcoin")
    ledger.add_to_watchlist("BTC/USDT", "dup")
    ledger.add_to_watchlist("ETH/USDT")
    assert [w.symbol for w in ledger.watchlist] == ["BTC/USDT", "ETH/USDT"]
    assert ledger.watchlist[0].name == "Bitcoin"
    with pytest.raises(ValueError):
        ledger.add_to_watchlist("SOL/USDT")
    assert ledger.remove_from_watchlist("BTC/USDT") is True
    assert ledger.remove_from_watchlist("BTC/USDT") is False

    settings = ledger.update_settings(theme="light", sound=False)
    assert settings.theme == "light" and settings.sound is False and settings.notifications is True
    with pytest.raises(ValueError):
        ledger.update_settings(theme="neon")
    with pytest.raises(ValueError):
        ledger.update_settings(language="zh")
    assert ledger.settings.theme == "light"


def test_reset_account():
    ledger = _ledger()
    pos = ledger.open_position("BTC/USDT", "long", 1, 50_000)
    ledger.close_position(pos.id, 49_000)
    ledger.add_to_watchlist("BTC/USDT")
    ledger.reset_account()
    assert ledger.cash_balance == 100_000
    assert ledger.positions == () and ledger.orders == () and ledger.closed_trades == ()
    assert len(ledger.watchlist) == 1


def test_to_dict_from_dict_restores_state_verbatim():
    ledger = _ledger()
    pos = ledger.open_position("BTC/USDT", "long", 1, 50_000)
    ledger.close_position(pos.id, 51_000, quantity=0.5)
    pending = ledger.submit_order("ETH/USDT", "buy", "limit", 1, price=2_000)
    ledger.update_settings(theme="light")

    data = ledger.to_dict()
    assert data["schema_version"] == 1
    restored = Ledger.from_dict(data, clock=_clock())
    assert restored.cash_balance == ledger.cash_balance
    assert restored.positions == ledger.positions
    assert restored.orders == ledger.orders
    assert restored.closed_trades == ledger.closed_trades
    assert restored.settings.theme == "light"

    # 恢复后的 id 序列不会与已有记录冲突
    new = restored.submit_order("ETH/USDT", "buy", "market", 1)
    assert new.id not in {o.id for o in ledger.orders}
    assert restored.get_order(pending.id).status is OrderStatus.PENDING


def test_from_dict_rejects_unknown_schema_version():
    ledger = _ledger()
    data = ledger.to_dict()
    data["schema_version"] = 99
    with pytest.raises(ValueError):
        Ledger.from_dict(data)


def test_fee_rate_is_charged_on_open_and_close():
    ledger = _ledger(fee_rate=0.001)
    pos = ledger.open_position("BTC/USDT", "long", 1, 10_000)
    assert abs(ledger.cash_balance - (100_000 - 10_010)) < 1e-9
    trade = ledger.close_position(pos.id, 10_000)
    assert abs(trade.realized_pnl - (-10.0)) < 1e-9
    assert abs(ledger.cash_balance - (100_000 - 20)) < 1e-9


def test_order_value_helper():
    buy = order_value(2, 100, "buy", fee_rate=0.01)
    sell = order_value(2, 100, OrderSide.SELL, fee_rate=0.01)
    assert (buy.notional, buy.fee, buy.total) == (200, 2, 202)
    assert sell.total == 198
