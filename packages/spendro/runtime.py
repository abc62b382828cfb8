"""Wiring of the ``spendro`` services from :class:`~spendro.config.Settings`.

Hosts (the CLI, a web app, tests) call :func:`build_runtime` once and share
the returned :class:`Runtime`; every component in it talks through the same
:class:`~spendro.changes.ChangeBus`, so writes made by one are visible to
views opened through another.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date

from .changes import ChangeBus
from .config import Settings
from .currency import CurrencyNormalizer, ExchangeRateApiSource, RateSource
from .extraction import OpenAIStatementExtractor, StatementExtractor
from .intake import BlobStore, IngestionSupervisor, LocalBlobStore
from .pipeline import IngestionPipeline
from .resolver import CategoryResolver
from .review import ReviewService
from .sync import DatabaseShapeSource, ExpenseFilters, ExpenseView


@dataclass
class Runtime:
    settings: Settings
    bus: ChangeBus
    rate_source: RateSource
    normalizer: CurrencyNormalizer
    resolver: CategoryResolver
    pipeline: IngestionPipeline
    blob_store: BlobStore
    shapes: DatabaseShapeSource
    review: ReviewService

    def supervisor(self) -> IngestionSupervisor:
        return IngestionSupervisor(
            self.pipeline,
            self.blob_store,
            database_url=self.settings.database_url,
            bus=self.bus,
        )

    def expense_view(
        self,
        user_id: str,
        *,
        today: date | None = None,
        filters: ExpenseFilters | None = None,
    ) -> ExpenseView:
        return ExpenseView(
            self.shapes,
            user_id,
            today=today,
            recent_months=self.settings.recent_months,
            historical_months=self.settings.historical_months,
            filters=filters,
        )

    async def aclose(self) -> None:
        if isinstance(self.rate_source, ExchangeRateApiSource):
            await self.rate_source.aclose()


def build_runtime(
    settings: Settings,
    *,
    extractor: StatementExtractor | None = None,
    rate_source: RateSource | None = None,
    blob_store: BlobStore | None = None,
) -> Runtime:
    bus = ChangeBus()
    source = rate_source or ExchangeRateApiSource(
        settings.fx_api_key, base_url=settings.fx_base_url, timeout=settings.fx_timeout
    )
    normalizer = CurrencyNormalizer(
        source, base_currency=settings.base_currency, cache_ttl=settings.fx_cache_ttl
    )
    resolver = CategoryResolver(database_url=settings.database_url, bus=bus)
    pipeline = IngestionPipeline(
        extractor=extractor
        or OpenAIStatementExtractor(
            model=settings.extraction_model, base_currency=settings.base_currency
        ),
        resolver=resolver,
        normalizer=normalizer,
        database_url=settings.database_url,
        bus=bus,
        foreign_category=settings.foreign_category,
    )
    return Runtime(
        settings=settings,
        bus=bus,
        rate_source=source,
        normalizer=normalizer,
        resolver=resolver,
        pipeline=pipeline,
        blob_store=blob_store or LocalBlobStore(settings.blob_dir),
        shapes=DatabaseShapeSource(database_url=settings.database_url, bus=bus),
        review=ReviewService(database_url=settings.database_url, bus=bus),
    )


__all__ = ["Runtime", "build_runtime"]
