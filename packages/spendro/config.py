"""Runtime settings for ``spendro``.

All environment keys the package reads are defined here. Entry points load a
local ``.env`` (python-dotenv) before calling :meth:`Settings.from_env`;
library code receives a ``Settings`` instance and never reads the
environment itself.
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path


class ConfigError(ValueError):
    """Raised when an environment value cannot be parsed."""


def _int(env: Mapping[str, str], key: str, default: int, *, minimum: int = 0) -> int:
    raw = env.get(key)
    if raw is None or not raw.strip():
        return default
    try:
        value = int(raw.strip())
    except ValueError as e:
        raise ConfigError(f"{key} must be an integer, got {raw!r}") from e
    if value < minimum:
        raise ConfigError(f"{key} must be >= {minimum}, got {value}")
    return value


def _float(env: Mapping[str, str], key: str, default: float) -> float:
    raw = env.get(key)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw.strip())
    except ValueError as e:
        raise ConfigError(f"{key} must be a number, got {raw!r}") from e


@dataclass(frozen=True)
class Settings:
    """Resolved configuration values.

    Attributes
    ----------
    database_url:
        SQLAlchemy URL; ``None`` defers to ``db.client`` (``DATABASE_URL``).
    base_currency:
        The single currency all stored amounts are normalized to.
    foreign_category:
        Category assigned to foreign-currency items before merchant mappings
        apply. ``None`` disables the rule.
    fx_api_key / fx_base_url / fx_timeout / fx_cache_ttl:
        Exchange-rate service access and the rate cache lifetime (seconds).
    extraction_model:
        Model name for the statement extractor.
    recent_months / historical_months:
        Sizes of the eager and on-demand sync windows.
    blob_dir:
        Root directory for :class:`spendro.intake.LocalBlobStore`.
    """

    database_url: str | None = None
    base_currency: str = "SGD"
    foreign_category: str | None = "Travel"
    fx_api_key: str | None = None
    fx_base_url: str = "https://v6.exchangerate-api.com/v6"
    fx_timeout: float = 10.0
    fx_cache_ttl: int = 3600
    extraction_model: str = "gpt-5"
    recent_months: int = 6
    historical_months: int = 12
    blob_dir: Path = Path(".blobs")

    @classmethod
    def from_env(cls, env: Mapping[str, str] | None = None) -> Settings:
        e = os.environ if env is None else env
        foreign = e.get("SPENDRO_FOREIGN_CATEGORY", "Travel").strip()
        return cls(
            database_url=e.get("DATABASE_URL") or None,
            base_currency=(e.get("SPENDRO_BASE_CURRENCY") or "SGD").strip().upper(),
            foreign_category=foreign or None,
            fx_api_key=e.get("EXCHANGE_RATE_API_KEY") or None,
            fx_base_url=(e.get("SPENDRO_FX_BASE_URL") or cls.fx_base_url).rstrip("/"),
            fx_timeout=_float(e, "SPENDRO_FX_TIMEOUT", cls.fx_timeout),
            fx_cache_ttl=_int(e, "SPENDRO_FX_CACHE_TTL", cls.fx_cache_ttl),
            extraction_model=e.get("SPENDRO_EXTRACTION_MODEL") or cls.extraction_model,
            recent_months=_int(e, "SPENDRO_RECENT_MONTHS", cls.recent_months, minimum=1),
            historical_months=_int(
                e, "SPENDRO_HISTORICAL_MONTHS", cls.historical_months, minimum=1
            ),
            blob_dir=Path(e.get("SPENDRO_BLOB_DIR") or cls.blob_dir).expanduser(),
        )


__all__ = ["ConfigError", "Settings"]
