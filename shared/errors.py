"""引擎错误分类。

所有失败都以具体的异常类型抛出，调用方按类型（或 `code`）区分失败原因；
账本类错误保证抛出时状态未被修改。
"""

from __future__ import annotations


class EngineError(Exception):
    """引擎错误基类。"""

    code = "engine_error"

    def __init__(self, message: str, **details):
        super().__init__(message)
        self.details = details

    def to_dict(self) -> dict:
        return {"code": self.code, "message": str(self), **self.details}


class LedgerError(EngineError):
    """账本变更被拒绝（状态保持不变）。"""

    code = "ledger_error"


class InsufficientFunds(LedgerError):
    code = "insufficient_funds"


class PositionNotFound(LedgerError):
    code = "position_not_found"


class OrderNotFound(LedgerError):
    code = "order_not_found"


class InvalidStateTransition(LedgerError):
    code = "invalid_state_transition"


class InvalidQuantity(LedgerError, ValueError):
    """数量 <= 0，或超过可用数量。"""

    code = "invalid_quantity"


class InvalidPrice(LedgerError, ValueError):
    """价格 <= 0 或非有限值。"""

    code = "invalid_price"


class InsufficientLiquidity(EngineError):
    """深度遍历耗尽订单簿仍未凑够请求数量。"""

    code = "insufficient_liquidity"


class InvalidInputSeries(EngineError, ValueError):
    """输入序列不合法（OHLCV 顺序违例、NaN/Inf、时间戳倒序等）。"""

    code = "invalid_input_series"
