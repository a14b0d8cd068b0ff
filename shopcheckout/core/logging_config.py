# shopcheckout/core/logging_config.py

import logging
import time
from logging.config import dictConfig
from typing import Callable, Dict

from shopcheckout.core.config import settings

LOGGING_CONFIG = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "default": {
            "format": "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            "datefmt": "%Y-%m-%d %H:%M:%S",
        },
    },
    "handlers": {
        "console": {
            "class": "logging.StreamHandler",
            "formatter": "default",
            "stream": "ext://sys.stdout",
        },
    },
    "loggers": {
        "uvicorn": {"handlers": ["console"], "level": "INFO"},
        "fastapi": {"handlers": ["console"], "level": "INFO"},
        "shopcheckout": {"handlers": ["console"], "level": "INFO", "propagate": False},
    },
    "root": {
        "level": "INFO",
        "handlers": ["console"],
    },
}

# Время последней записи по ключу
_last_log_time: Dict[str, float] = {}


def setup_logging():
    """Применяет конфигурацию логирования."""
    dictConfig(LOGGING_CONFIG)


def throttled_log(key: str, log_fn: Callable[[], None], interval: float | None = None) -> bool:
    """
    Вызывает log_fn не чаще одного раза в interval секунд для данного ключа.
    Нужен для "шумных" диагностических сообщений, которые срабатывают на каждое
    действие пользователя (переключение ваучера, смена адреса).
    Возвращает True, если сообщение было записано.
    """
    interval = settings.LOG_THROTTLE_SECONDS if interval is None else interval
    now = time.monotonic()
    last = _last_log_time.get(key)
    if last is not None and now - last < interval:
        return False
    log_fn()
    # ключи бывают на покупателя: истекшие записи больше ничего не подавляют
    horizon = max(interval, settings.LOG_THROTTLE_SECONDS)
    for stale_key in [k for k, ts in _last_log_time.items() if now - ts >= horizon]:
        del _last_log_time[stale_key]
    _last_log_time[key] = now
    return True
