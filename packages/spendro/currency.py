"""Base-currency normalization.

``CurrencyNormalizer.normalize`` converts an amount into the configured base
currency using a :class:`RateSource`. Lookups are best-effort: any failure is
logged and the original amount is returned unchanged, so a flaky rate
service degrades an expense instead of dropping it.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Any, Protocol

import httpx

from .logging_setup import get_logger
from .models import quantize_amount

_logger = get_logger("spendro.currency")


class RateLookupError(RuntimeError):
    """Raised by a rate source when no usable rate could be obtained."""


class RateSource(Protocol):
    async def fetch_rate(self, currency: str, base: str, on_date: date) -> Decimal:
        """Return the multiplier converting one unit of ``currency`` into ``base``."""
        ...


class ExchangeRateApiSource:
    """exchangerate-api.com v6 client (``GET {base_url}/{key}/latest/{CUR}``).

    The service only exposes latest rates on this endpoint, so ``on_date`` is
    accepted for interface parity and ignored.
    """

    def __init__(
        self,
        api_key: str | None,
        *,
        base_url: str = "https://v6.exchangerate-api.com/v6",
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._api_key = api_key
        self._base_url = base_url.rstrip("/")
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(timeout, connect=min(timeout, 5.0))
        )

    async def fetch_rate(self, currency: str, base: str, on_date: date) -> Decimal:
        if not self._api_key:
            raise RateLookupError("EXCHANGE_RATE_API_KEY is not configured")
        url = f"{self._base_url}/{self._api_key}/latest/{currency.upper()}"
        try:
            response = await self._client.get(url)
            response.raise_for_status()
            body: Any = response.json()
        except (httpx.HTTPError, ValueError) as e:
            raise RateLookupError(f"rate request failed for {currency}: {e}") from e

        if not isinstance(body, dict) or body.get("result") != "success":
            raise RateLookupError(f"rate service returned an error for {currency}")
        rates = body.get("conversion_rates")
        raw = rates.get(base.upper()) if isinstance(rates, dict) else None
        if raw is None:
            raise RateLookupError(f"no {base} rate in response for {currency}")
        try:
            rate = Decimal(str(raw))
        except InvalidOperation as e:
            raise RateLookupError(f"malformed {base} rate for {currency}: {raw!r}") from e
        if rate <= 0:
            raise RateLookupError(f"non-positive {base} rate for {currency}: {rate}")
        return rate

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()


class CurrencyNormalizer:
    """Convert amounts to ``base_currency`` with a short-lived rate cache.

    Rates are cached per ``(currency, lookup day)`` for ``cache_ttl`` seconds,
    where the lookup day is the day the rate was fetched, not the transaction
    date: a statement spanning many dates costs one lookup per currency. Only
    successful lookups are cached and expired entries are pruned on each store.
    ``cache_ttl=0`` disables caching.
    """

    def __init__(
        self,
        source: RateSource,
        *,
        base_currency: str,
        cache_ttl: int = 3600,
        today: Callable[[], date] = date.today,
    ) -> None:
        self._source = source
        self.base_currency = base_currency.upper()
        self._cache_ttl = cache_ttl
        self._today = today
        self._cache: dict[tuple[str, date], tuple[float, Decimal]] = {}

    @property
    def cache_size(self) -> int:
        return len(self._cache)

    def _store(self, key: tuple[str, date], rate: Decimal) -> None:
        now = time.monotonic()
        for stale in [k for k, (expires_at, _rate) in self._cache.items() if now >= expires_at]:
            del self._cache[stale]
        self._cache[key] = (now + self._cache_ttl, rate)

    def _cached(self, key: tuple[str, date]) -> Decimal | None:
        hit = self._cache.get(key)
        if hit is None:
            return None
        expires_at, rate = hit
        if time.monotonic() >= expires_at:
            del self._cache[key]
            return None
        return rate

    async def normalize(self, amount: Decimal, from_currency: str, on_date: date) -> Decimal:
        currency = from_currency.upper()
        if currency == self.base_currency:
            return amount

        key = (currency, self._today())
        rate = self._cached(key)
        if rate is None:
            try:
                rate = await self._source.fetch_rate(currency, self.base_currency, on_date)
            except Exception as e:  # noqa: BLE001 - any lookup failure degrades to unconverted
                _logger.warning(
                    "currency:fallback currency=%s base=%s date=%s error=%s",
                    currency,
                    self.base_currency,
                    on_date.isoformat(),
                    e,
                )
                return amount
            if self._cache_ttl > 0:
                self._store(key, rate)
        return quantize_amount(amount * rate)


__all__ = ["CurrencyNormalizer", "ExchangeRateApiSource", "RateLookupError", "RateSource"]
