from __future__ import annotations

import logging
import os
import sys
from dataclasses import dataclass

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine

from ledger_engine.models import BaseCurrency
from ledger_engine.months import LOOKBACK_LAST_YEAR, normalize_lookback

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


@dataclass(frozen=True)
class Settings:
    database_url: str
    default_currency: BaseCurrency
    stock_lookback: str = LOOKBACK_LAST_YEAR
    aggregation_workers: int = 4
    log_level: str = "INFO"


def load_settings() -> Settings:
    return Settings(
        database_url=os.getenv("DATABASE_URL", "sqlite:///./ledger.db"),
        default_currency=get_system_default_currency(),
        stock_lookback=_get_stock_lookback(),
        aggregation_workers=_get_positive_int("AGGREGATION_WORKERS", 4),
        log_level=os.getenv("LOG_LEVEL", "INFO").strip().upper() or "INFO",
    )


def get_system_default_currency() -> BaseCurrency:
    raw = os.getenv("DEFAULT_CURRENCY", "USD")
    code = raw.strip().upper()
    if len(code) != 3 or not code.isalpha():
        return BaseCurrency(code="USD", symbol="$", name="US Dollar")
    return BaseCurrency(
        code=code,
        symbol=os.getenv("DEFAULT_CURRENCY_SYMBOL", "$" if code == "USD" else code),
        name=os.getenv("DEFAULT_CURRENCY_NAME", "US Dollar" if code == "USD" else code),
    )


def create_db_engine(database_url: str) -> Engine:
    connect_args = {}
    if database_url.startswith("sqlite"):
        connect_args = {"check_same_thread": False}
    return create_engine(database_url, connect_args=connect_args)


def configure_logging(level: str = "INFO") -> logging.Logger:
    """Attach a single console handler to the package logger."""
    logger = logging.getLogger("ledger_engine")
    logger.setLevel(getattr(logging, level.upper(), logging.INFO))
    logger.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT))
    logger.addHandler(handler)
    return logger


def _get_stock_lookback() -> str:
    try:
        return normalize_lookback(os.getenv("STOCK_LOOKBACK", LOOKBACK_LAST_YEAR))
    except ValueError:
        return LOOKBACK_LAST_YEAR


def _get_positive_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        value = int(raw)
    except ValueError:
        return default
    return max(value, 1)
