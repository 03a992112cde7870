"""
轻量日志封装。

Notes
-----
`setup_logger` 会避免重复添加 handler，否则多次调用会出现重复日志。
引擎内的 logger 统一挂在 `tradinghub.` 前缀下，便于 CLI 一次性调整级别。
"""

from __future__ import annotations

import logging

LOGGER_PREFIX = "tradinghub"
_FORMAT = "%(asctime)s [%(levelname)s] %(name)s - %(message)s"


def _coerce_level(level: int | str) -> int:
    if isinstance(level, int):
        return level
    resolved = logging.getLevelName(str(level).upper())
    if not isinstance(resolved, int):
        raise ValueError(f"Unknown log level: {level}")
    return resolved


def setup_logger(name: str = "engine", level: int | str = logging.INFO) -> logging.Logger:
    """
    创建或获取命名 logger。

    Parameters
    ----------
    name:
        Logger 名称（自动加上 `tradinghub.` 前缀）。
    level:
        日志级别，允许 int 或 "INFO"/"DEBUG" 这样的字符串。

    Returns
    -------
    logging.Logger
        已配置的 logger。
    """
    full_name = name if name.startswith(LOGGER_PREFIX) else f"{LOGGER_PREFIX}.{name}"
    logger = logging.getLogger(full_name)
    logger.setLevel(_coerce_level(level))
    logger.propagate = False

    has_stream = any(isinstance(h, logging.StreamHandler) for h in logger.handlers)
    if not has_stream:
        ch = logging.StreamHandler()
        ch.setFormatter(logging.Formatter(_FORMAT))
        logger.addHandler(ch)

    return logger


def set_log_level(level: int | str) -> None:
    """把所有已创建的引擎 logger 调整到同一级别（CLI `log_level` 使用）。"""
    resolved = _coerce_level(level)
    manager = logging.Logger.manager
    for name, obj in list(manager.loggerDict.items()):
        if name.startswith(LOGGER_PREFIX) and isinstance(obj, logging.Logger):
            obj.setLevel(resolved)
