"""订单簿深度聚合。

- bids 按价格降序、asks 按价格升序（最优档在前）
- 累计深度从最优档向外累加
- 中间价 / 价差 / 买卖盘失衡
- 按数量估算吃单滑点（订单簿不足时抛 InsufficientLiquidity，而不是静默少成交）
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Iterable, Sequence

from shared.errors import InsufficientLiquidity, InvalidInputSeries
from shared.models.models import OrderBookLevel, OrderSide
from shared.utils.logging import setup_logger

_LOGGER = setup_logger("depth")

SIZE_EPS = 1e-9


@dataclass(frozen=True)
class DepthLevel:
    price: float
    size: float
    cumulative: float


@dataclass(frozen=True)
class BookDepth:
    """订单簿聚合视图（只读快照）。"""

    bids: tuple[DepthLevel, ...]
    asks: tuple[DepthLevel, ...]
    best_bid: float | None
    best_ask: float | None
    mid_price: float
    mid_price_defined: bool
    spread: float
    spread_percent: float
    imbalance: float
    total_bid_size: float
    total_ask_size: float
    max_level_size: float

    def to_dict(self) -> dict:
        return {
            "bids": [[lv.price, lv.size, lv.cumulative] for lv in self.bids],
            "asks": [[lv.price, lv.size, lv.cumulative] for lv in self.asks],
            "best_bid": self.best_bid,
            "best_ask": self.best_ask,
            "mid_price": self.mid_price,
            "mid_price_defined": self.mid_price_defined,
            "spread": self.spread,
            "spread_percent": self.spread_percent,
            "imbalance": self.imbalance,
            "total_bid_size": self.total_bid_size,
            "total_ask_size": self.total_ask_size,
            "max_level_size": self.max_level_size,
        }


@dataclass(frozen=True)
class SlippageEstimate:
    side: OrderSide
    requested_size: float
    filled_size: float
    total_cost: float
    avg_fill_price: float
    best_price: float
    slippage: float
    slippage_percent: float
    levels_consumed: int


def _normalize_levels(levels: Iterable, label: str) -> list[OrderBookLevel]:
    out: list[OrderBookLevel] = []
    for i, lv in enumerate(levels):
        if isinstance(lv, OrderBookLevel):
            price, size = lv.price, lv.size
        else:
            try:
                price, size = lv
            except (TypeError, ValueError) as exc:
                raise InvalidInputSeries(f"{label}[{i}] must be (price, size)", index=i) from exc
        try:
            price, size = float(price), float(size)
        except (TypeError, ValueError) as exc:
            raise InvalidInputSeries(f"{label}[{i}] is not numeric", index=i) from exc
        if not (math.isfinite(price) and math.isfinite(size)):
            raise InvalidInputSeries(f"{label}[{i}] contains NaN/Inf", index=i)
        if price <= 0 or size < 0:
            raise InvalidInputSeries(f"{label}[{i}] requires price > 0 and size >= 0", index=i)
        out.append(OrderBookLevel(price=price, size=size))
    return out


def sort_book(bids: Iterable, asks: Iterable) -> tuple[list[OrderBookLevel], list[OrderBookLevel]]:
    """按订单簿惯例排序：bids 降序、asks 升序。"""
    b = sorted(_normalize_levels(bids, "bids"), key=lambda lv: lv.price, reverse=True)
    a = sorted(_normalize_levels(asks, "asks"), key=lambda lv: lv.price)
    return b, a


def cumulative_depth(levels: Sequence[OrderBookLevel]) -> tuple[DepthLevel, ...]:
    """已排序档位 -> 累计深度（从最优档向外）。"""
    total = 0.0
    out = []
    for lv in levels:
        total += lv.size
        out.append(DepthLevel(price=lv.price, size=lv.size, cumulative=total))
    return tuple(out)


def _best_price(levels: Sequence[OrderBookLevel]) -> float | None:
    """首个 size > 0 的档位价格；零量档位不算最优价。"""
    return next((lv.price for lv in levels if lv.size > 0), None)


def aggregate_depth(bids: Iterable, asks: Iterable) -> BookDepth:
    """聚合订单簿：累计深度、中间价、价差、失衡度。

    任一侧为空时 mid_price = 0 且 `mid_price_defined=False`，价差相关字段为 0。
    """
    sorted_bids, sorted_asks = sort_book(bids, asks)
    bid_depth = cumulative_depth(sorted_bids)
    ask_depth = cumulative_depth(sorted_asks)

    best_bid = _best_price(sorted_bids)
    best_ask = _best_price(sorted_asks)
    if best_bid is not None and best_ask is not None:
        mid = (best_bid + best_ask) / 2.0
        spread = best_ask - best_bid
        spread_pct = spread / mid * 100.0
        defined = True
        if spread < 0:
            _LOGGER.warning("Crossed book: best_bid=%s > best_ask=%s", best_bid, best_ask)
    else:
        mid, spread, spread_pct, defined = 0.0, 0.0, 0.0, False

    total_bid = bid_depth[-1].cumulative if bid_depth else 0.0
    total_ask = ask_depth[-1].cumulative if ask_depth else 0.0
    denom = total_bid + total_ask
    imbalance = (total_bid - total_ask) / denom * 100.0 if denom > 0 else 0.0
    max_level = max((lv.size for lv in (*sorted_bids, *sorted_asks)), default=0.0)

    return BookDepth(
        bids=bid_depth,
        asks=ask_depth,
        best_bid=best_bid,
        best_ask=best_ask,
        mid_price=mid,
        mid_price_defined=defined,
        spread=spread,
        spread_percent=spread_pct,
        imbalance=imbalance,
        total_bid_size=total_bid,
        total_ask_size=total_ask,
        max_level_size=max_level,
    )


def slippage_for_size(bids: Iterable, asks: Iterable, order_size: float, side: OrderSide | str) -> SlippageEstimate:
    """按数量估算市价单滑点。

    买单吃 asks（从最低价向上），卖单吃 bids（从最高价向下）。
    slippage = avg_fill_price - best_opposite_price：买单为正表示更差，卖单为负表示更差。

    Raises
    ------
    ValueError
        order_size <= 0。
    InsufficientLiquidity
        对手盘总量不足以成交 order_size。
    """
    side = OrderSide(side)
    if not order_size > 0:
        raise ValueError(f"order_size must be > 0, got {order_size}")
    sorted_bids, sorted_asks = sort_book(bids, asks)
    levels = sorted_asks if side is OrderSide.BUY else sorted_bids

    available = math.fsum(lv.size for lv in levels)
    if available <= 0 or available < order_size - SIZE_EPS:
        raise InsufficientLiquidity(
            f"book exhausted: requested {order_size}, available {available} on {side.value} side",
            requested=order_size,
            available=available,
            side=side.value,
        )

    remaining = float(order_size)
    cost = 0.0
    used = 0
    for lv in levels:
        if remaining <= SIZE_EPS:
            break
        take = min(remaining, lv.size)
        if take <= 0:
            continue
        cost += take * lv.price
        remaining -= take
        used += 1

    filled = float(order_size)
    avg = cost / filled
    best = _best_price(levels)
    slip = avg - best
    return SlippageEstimate(
        side=side,
        requested_size=float(order_size),
        filled_size=filled,
        total_cost=cost,
        avg_fill_price=avg,
        best_price=best,
        slippage=slip,
        slippage_percent=slip / best * 100.0,
        levels_consumed=used,
    )


def depth_percentage(size: float, max_depth: float) -> float:
    """档位数量相对最大档位的百分比（上限 100），用于深度条渲染。"""
    if max_depth <= 0:
        return 0.0
    return min(size / max_depth * 100.0, 100.0)
