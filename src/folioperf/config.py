"""Runtime settings read from the environment (and a ``.env`` file)."""

import os
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Mapping

from dotenv import load_dotenv

from .ledger import OversellPolicy
from .performance import PriceMode
from .pricingdata import (
    DEFAULT_PRICE,
    FixedPricingDataManager,
    MockPricingDataManager,
    PricingDataManager,
    YFinancePricingDataManager,
)

PRICE_SOURCES = ("mock", "fixed", "yfinance")

# Default port: 5080
DEFAULT_PORT = 5080


@dataclass
class Settings:
    """Engine and server settings."""
    price_source: str = "mock"
    fixed_price: Decimal = Decimal("100")
    default_price: Decimal = DEFAULT_PRICE
    oversell: OversellPolicy = OversellPolicy.CLAMP
    price_mode: PriceMode = PriceMode.SNAPSHOT
    max_workers: int = 4
    timeout_seconds: float | None = None
    port: int = DEFAULT_PORT


def _get_decimal(env: Mapping[str, str], key: str, default: Decimal) -> Decimal:
    raw = env.get(key)
    if raw is None or raw == "":
        return default
    try:
        value = Decimal(raw)
    except InvalidOperation:
        raise ValueError(f"{key} must be a decimal number, got {raw!r}")
    if value <= 0:
        raise ValueError(f"{key} must be greater than 0, got {raw!r}")
    return value


def _get_int(env: Mapping[str, str], key: str, default: int) -> int:
    raw = env.get(key)
    if raw is None or raw == "":
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ValueError(f"{key} must be an integer, got {raw!r}")
    if value < 1:
        raise ValueError(f"{key} must be at least 1, got {raw!r}")
    return value


def _get_choice(env: Mapping[str, str], key: str, default: str, choices) -> str:
    raw = env.get(key)
    if raw is None or raw == "":
        return default
    value = raw.strip().lower().replace("_", "-")
    if value not in choices:
        raise ValueError(f"{key} must be one of {', '.join(choices)}, got {raw!r}")
    return value


def load_settings(environ: Mapping[str, str] | None = None) -> Settings:
    """Build Settings from environment variables.

    Args:
        environ: Mapping to read instead of ``os.environ``. When omitted,
            a ``.env`` file in the working directory is loaded first.

    Returns:
        Settings populated from ``FOLIOPERF_*`` variables, defaults elsewhere.

    Raises:
        ValueError: If a variable holds an invalid value.
    """
    if environ is None:
        load_dotenv()
        environ = os.environ

    timeout_raw = environ.get("FOLIOPERF_TIMEOUT_SECONDS")
    timeout_seconds: float | None = None
    if timeout_raw:
        try:
            timeout_seconds = float(timeout_raw)
        except ValueError:
            raise ValueError(f"FOLIOPERF_TIMEOUT_SECONDS must be a number, got {timeout_raw!r}")

    return Settings(
        price_source=_get_choice(environ, "FOLIOPERF_PRICE_SOURCE", "mock", PRICE_SOURCES),
        fixed_price=_get_decimal(environ, "FOLIOPERF_FIXED_PRICE", Decimal("100")),
        default_price=_get_decimal(environ, "FOLIOPERF_DEFAULT_PRICE", DEFAULT_PRICE),
        oversell=OversellPolicy(_get_choice(environ, "FOLIOPERF_OVERSELL", "clamp", [p.value for p in OversellPolicy])),
        price_mode=PriceMode(_get_choice(environ, "FOLIOPERF_PRICE_MODE", "snapshot", [m.value for m in PriceMode])),
        max_workers=_get_int(environ, "FOLIOPERF_MAX_WORKERS", 4),
        timeout_seconds=timeout_seconds,
        port=_get_int(environ, "FOLIOPERF_PORT", DEFAULT_PORT),
    )


def create_pricing_manager(settings: Settings) -> PricingDataManager:
    """Instantiate the pricing manager named by ``settings.price_source``."""
    if settings.price_source == "fixed":
        return FixedPricingDataManager(settings.fixed_price)
    if settings.price_source == "yfinance":
        return YFinancePricingDataManager(default_price=settings.default_price)
    return MockPricingDataManager(default_price=settings.default_price)
