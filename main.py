"""TradingHub engine 统一命令行入口。

子命令：

- `analyze`：读取 K 线 CSV（可选权益曲线 CSV / SQLite 账本），输出最新指标与风险指标。
- `depth`：读取订单簿 JSON，输出累计深度、价差，并可按数量估算滑点。
"""

from __future__ import annotations

import argparse
import csv
import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from rich import box
from rich.console import Console
from rich.table import Table

from engine.analytics import AnalyticsFacade, AnalyticsView
from ledger.ledger import Ledger
from ledger.store import SqliteLedgerStore
from market.depth import BookDepth, SlippageEstimate, aggregate_depth, depth_percentage, slippage_for_size
from market_data.candles import load_candles_csv
from shared.config.config_loader import load_config
from shared.errors import InvalidInputSeries
from shared.models.models import EquityPoint
from shared.utils.logging import set_log_level

console = Console()


@dataclass
class CliArgs:
    """命令行参数。

    config: 配置文件路径
    task: 子命令 (analyze/depth)
    """
    config: str
    task: str
    candles: str | None = None
    symbol: str | None = None
    equity: str | None = None
    ledger: str | None = None
    book: str | None = None
    size: float | None = None
    side: str = "buy"
    quiet: bool = False


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="tradinghub", description="TradingHub 账本与分析引擎")

    def _add_config_arg(p: argparse.ArgumentParser, *, default: Any) -> None:
        p.add_argument("--config", default=default, help="配置文件路径 (默认: config/config.yml)")

    # 允许 `main.py --config ... analyze` 与 `main.py analyze --config ...`
    _add_config_arg(parser, default="config/config.yml")
    parser.add_argument("--quiet", action="store_true", help="不打印表格，只返回结果")

    sub = parser.add_subparsers(dest="task")

    p_analyze = sub.add_parser("analyze", help="指标 + 风险分析")
    _add_config_arg(p_analyze, default=argparse.SUPPRESS)
    p_analyze.add_argument("--candles", required=True, help="K 线 CSV（timestamp,open,high,low,close,volume）")
    p_analyze.add_argument("--symbol", default=None, help="品种名（默认取 CSV 文件名）")
    p_analyze.add_argument("--equity", default=None, help="权益曲线 CSV（timestamp,value）")
    p_analyze.add_argument("--ledger", default=None, help="SQLite 账本路径（覆盖配置中的 store_path）")

    p_depth = sub.add_parser("depth", help="订单簿深度 / 滑点")
    _add_config_arg(p_depth, default=argparse.SUPPRESS)
    p_depth.add_argument("--book", required=True, help='订单簿 JSON：{"bids": [[p, s], ...], "asks": [...]}')
    p_depth.add_argument("--size", type=float, default=None, help="估算滑点的下单数量")
    p_depth.add_argument("--side", choices=["buy", "sell"], default="buy")

    return parser


def parse_args(argv: list[str] | None = None) -> CliArgs:
    parser = build_parser()
    ns = parser.parse_args(argv)
    if not ns.task:
        parser.error("a subcommand is required (analyze/depth)")
    return CliArgs(
        config=str(getattr(ns, "config", "config/config.yml")),
        task=ns.task,
        candles=getattr(ns, "candles", None),
        symbol=getattr(ns, "symbol", None),
        equity=getattr(ns, "equity", None),
        ledger=getattr(ns, "ledger", None),
        book=getattr(ns, "book", None),
        size=getattr(ns, "size", None),
        side=str(getattr(ns, "side", "buy")),
        quiet=bool(getattr(ns, "quiet", False)),
    )


def load_equity_csv(path: str | Path) -> list[EquityPoint]:
    """读取权益曲线 CSV（表头：timestamp,value）。"""
    points: list[EquityPoint] = []
    with Path(path).open("r", newline="", encoding="utf-8") as f:
        reader = csv.DictReader(f)
        if not {"timestamp", "value"} <= set(reader.fieldnames or []):
            raise InvalidInputSeries(f"CSV {path} requires columns timestamp,value")
        for row in reader:
            try:
                points.append(EquityPoint(timestamp=int(float(row["timestamp"])), value=float(row["value"])))
            except ValueError as exc:
                raise InvalidInputSeries(f"CSV {path} row {len(points)} is malformed: {exc}") from exc
    return points


def load_book_json(path: str | Path) -> tuple[list, list]:
    data = json.loads(Path(path).read_text(encoding="utf-8"))
    if not isinstance(data, dict):
        raise InvalidInputSeries(f"order book {path} must be a JSON object")
    return list(data.get("bids") or []), list(data.get("asks") or [])


def _fmt(value: Any, digits: int = 4) -> str:
    if value is None:
        return "-"
    if isinstance(value, float):
        return f"{value:,.{digits}f}"
    return str(value)


def render_view(view: AnalyticsView) -> None:
    for symbol, ind in view.indicators.items():
        table = Table(title=f"📈 {symbol} 最新指标", box=box.ROUNDED)
        table.add_column("Indicator", style="cyan", no_wrap=True)
        table.add_column("Value", justify="right", style="green")
        for col, val in ind.latest().items():
            table.add_row(col, _fmt(val))
        if ind.rsi_signal is not None:
            table.add_row("rsi_signal", ind.rsi_signal.signal)
        if ind.macd_crossover is not None:
            table.add_row("macd_crossover", f"{ind.macd_crossover[1]} @ {ind.macd_crossover[0]}")
        if ind.bollinger_signal is not None:
            table.add_row("bollinger", f"{ind.bollinger_signal.signal} (%B={ind.bollinger_signal.percent_b:.2f})")
        console.print(table)

    risk = view.risk
    table = Table(title="🛡️ 组合风险", box=box.ROUNDED)
    table.add_column("Metric", style="cyan", no_wrap=True)
    table.add_column("Value", justify="right", style="yellow")
    table.add_row("Portfolio value", _fmt(risk.portfolio_value, 2))
    table.add_row("Cash", _fmt(risk.cash_balance, 2))
    table.add_row("Exposure %", _fmt(risk.exposure_percent, 2))
    table.add_row("Sharpe", _fmt(risk.sharpe_ratio))
    table.add_row("Sharpe (annualized)", _fmt(risk.annualized_sharpe))
    table.add_row("Max drawdown %", _fmt(risk.max_drawdown.max_drawdown_pct, 2))
    table.add_row("Volatility (annualized)", _fmt(risk.volatility))
    table.add_row(f"VaR {risk.var_confidence:.0%}", _fmt(risk.value_at_risk, 2))
    table.add_row("Win rate", f"{risk.trade_stats.win_rate:.1%}")
    table.add_row("Profit factor", _fmt(risk.trade_stats.profit_factor, 2))
    console.print(table)


def render_depth(depth: BookDepth, slippage: SlippageEstimate | None = None) -> None:
    table = Table(title="📊 订单簿深度", box=box.ROUNDED)
    table.add_column("Side", style="cyan")
    table.add_column("Price", justify="right")
    table.add_column("Size", justify="right")
    table.add_column("Cumulative", justify="right")
    table.add_column("Depth %", justify="right", style="magenta")
    for lv in reversed(depth.asks):
        table.add_row("[red]ask[/red]", _fmt(lv.price, 2), _fmt(lv.size), _fmt(lv.cumulative),
                      f"{depth_percentage(lv.size, depth.max_level_size):.0f}")
    for lv in depth.bids:
        table.add_row("[green]bid[/green]", _fmt(lv.price, 2), _fmt(lv.size), _fmt(lv.cumulative),
                      f"{depth_percentage(lv.size, depth.max_level_size):.0f}")
    console.print(table)
    mid = _fmt(depth.mid_price, 2) if depth.mid_price_defined else "-"
    console.print(
        f"mid={mid} spread={_fmt(depth.spread, 2)} ({depth.spread_percent:.3f}%) "
        f"imbalance={depth.imbalance:.2f}%"
    )
    if slippage is not None:
        console.print(
            f"{slippage.side.value} {slippage.requested_size}: avg={slippage.avg_fill_price:.4f} "
            f"slippage={slippage.slippage:.4f} ({slippage.slippage_percent:.4f}%) "
            f"levels={slippage.levels_consumed}"
        )


def run_analyze(args: CliArgs) -> dict[str, Any]:
    cfg = load_config(args.config)
    set_log_level(cfg.log_level)
    candles = load_candles_csv(args.candles)
    symbol = args.symbol or Path(args.candles).stem

    store_path = args.ledger or cfg.ledger.store_path
    equity: list = load_equity_csv(args.equity) if args.equity else []
    if store_path:
        with SqliteLedgerStore(store_path) as store:
            ledger = store.load(max_watchlist_symbols=cfg.ledger.max_watchlist_symbols) or Ledger.from_config(cfg.ledger)
            if not equity:
                equity = store.equity_curve()
    else:
        ledger = Ledger.from_config(cfg.ledger)
    if not equity:
        equity = [ledger.portfolio_value().total_value]

    facade = AnalyticsFacade(cfg.indicators, cfg.risk)
    view = facade.build_view(ledger.snapshot(), {symbol: candles}, equity)
    if not args.quiet:
        render_view(view)
    return view.to_dict()


def run_depth(args: CliArgs) -> dict[str, Any]:
    bids, asks = load_book_json(args.book)
    depth = aggregate_depth(bids, asks)
    slippage = slippage_for_size(bids, asks, args.size, args.side) if args.size is not None else None
    if not args.quiet:
        render_depth(depth, slippage)
    out = depth.to_dict()
    if slippage is not None:
        out["slippage"] = {
            "side": slippage.side.value,
            "requested_size": slippage.requested_size,
            "avg_fill_price": slippage.avg_fill_price,
            "best_price": slippage.best_price,
            "slippage": slippage.slippage,
            "slippage_percent": slippage.slippage_percent,
            "levels_consumed": slippage.levels_consumed,
        }
    return out


def main(argv: list[str] | None = None) -> Any:
    """程序主入口，返回对应子命令的结果 dict。"""
    args = parse_args(argv)

    if args.task == "analyze":
        return run_analyze(args)

    if args.task == "depth":
        return run_depth(args)

    raise ValueError(f"Unknown task: {args.task}")


if __name__ == "__main__":
    main()
