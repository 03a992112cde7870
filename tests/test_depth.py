from __future__ import annotations

import pytest

from market.depth import aggregate_depth, depth_percentage, slippage_for_size
from shared.errors import InsufficientLiquidity, InvalidInputSeries
from shared.models.models import OrderBookLevel, OrderSide

BIDS = [(98, 2.0), (99, 1.5), (97, 1.0)]
ASKS = [(102, 1.8), (101, 1.2)]


def test_depth_scenario_mid_spread_cumulative():
    depth = aggregate_depth(BIDS, ASKS)
    assert depth.mid_price == 100
    assert depth.mid_price_defined is True
    assert depth.spread == 2
    assert abs(depth.spread_percent - 2.0) < 1e-12
    assert [lv.price for lv in depth.bids] == [99, 98, 97]
    assert [lv.price for lv in depth.asks] == [101, 102]
    assert depth.bids[0].cumulative == 1.5
    assert depth.bids[2].cumulative == 4.5
    assert depth.asks[-1].cumulative == 3.0
    assert depth.max_level_size == 2.0


def test_imbalance_percent():
    depth = aggregate_depth(BIDS, ASKS)
    assert abs(depth.imbalance - (4.5 - 3.0) / 7.5 * 100) < 1e-9


def test_empty_side_leaves_mid_undefined():
    depth = aggregate_depth([], [OrderBookLevel(101, 1.0)])
    assert depth.mid_price == 0 and depth.mid_price_defined is False
    assert depth.spread == 0 and depth.best_bid is None
    empty = aggregate_depth([], [])
    assert empty.imbalance == 0 and empty.max_level_size == 0


def test_invalid_levels_are_rejected():
    with pytest.raises(InvalidInputSeries):
        aggregate_depth([(0, 1.0)], ASKS)
    with pytest.raises(InvalidInputSeries):
        aggregate_depth(BIDS, [(101, -1)])
    with pytest.raises(InvalidInputSeries):
        aggregate_depth([(float("nan"), 1.0)], ASKS)


def test_slippage_buy_walks_asks():
    est = slippage_for_size(BIDS, ASKS, 2.0, "buy")
    avg = (1.2 * 101 + 0.8 * 102) / 2.0
    assert est.side is OrderSide.BUY
    assert abs(est.avg_fill_price - avg) < 1e-9
    assert est.best_price == 101
    assert abs(est.slippage - (avg - 101)) < 1e-9
    assert est.slippage > 0
    assert est.levels_consumed == 2


def test_slippage_sell_is_negative_when_worse():
    est = slippage_for_size(BIDS, ASKS, 3.0, OrderSide.SELL)
    avg = (1.5 * 99 + 1.5 * 98) / 3.0
    assert abs(est.avg_fill_price - avg) < 1e-9
    assert est.slippage < 0


def test_slippage_exhausted_book_reports_insufficient_liquidity():
    with pytest.raises(InsufficientLiquidity) as exc:
        slippage_for_size(BIDS, ASKS, 10.0, "buy")
    assert exc.value.details["requested"] == 10.0
    assert abs(exc.value.details["available"] - 3.0) < 1e-12
    with pytest.raises(ValueError):
        slippage_for_size(BIDS, ASKS, 0, "buy")


def test_depth_percentage_is_capped():
    assert depth_percentage(1.0, 2.0) == 50.0
    assert depth_percentage(5.0, 2.0) == 100.0
    assert depth_percentage(1.0, 0.0) == 0.0


def test_slippage_can_take_the_whole_book():
    asks = [(101, 0.7), (102, 0.2), (103, 0.1)]
    est = slippage_for_size([], asks, 1.0, "buy")
    assert est.filled_size == 1.0
    assert est.levels_consumed == 3
    assert abs(est.avg_fill_price - (0.7 * 101 + 0.2 * 102 + 0.1 * 103)) < 1e-9
    with pytest.raises(InsufficientLiquidity):
        slippage_for_size([], asks, 1.01, "buy")


def test_zero_size_top_level_is_not_best_price():
    bids = [(100, 0.0), (99, 1.5)]
    asks = [(101, 1.2), (100.5, 0.0)]
    depth = aggregate_depth(bids, asks)
    assert depth.best_bid == 99 and depth.best_ask == 101
    assert depth.mid_price == 100 and depth.spread == 2
    assert depth.bids[0].cumulative == 0.0

    est = slippage_for_size(bids, asks, 1.0, "sell")
    assert est.best_price == 99
    assert est.slippage == 0.0
    assert est.levels_consumed == 1

    only_zero = aggregate_depth([(99, 0.0)], asks)
    assert only_zero.best_bid is None and only_zero.mid_price_defined is False
