"""Statement ingestion pipeline.

``IngestionPipeline.process_statement`` drives one statement from
``processing`` to a terminal status:

1. Load the user's category vocabulary (seeding defaults on first use).
2. Open the extractor stream and take candidates one at a time, in order.
3. Per candidate: merchant override or foreign-currency rule, category
   resolution, base-currency normalization, content hash, single insert.
4. ``completed`` when the stream ends after at least one candidate;
   ``failed`` when the stream raises or yields nothing.

Each candidate is fully persisted (or rejected) before the next is
requested. Per-item problems drop that item only; rows already inserted are
kept whatever the final status.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass

from db.client import session_scope
from sqlalchemy.exc import SQLAlchemyError

from .changes import EXPENSES, STATEMENTS, ChangeBus
from .currency import CurrencyNormalizer
from .extraction import StatementExtractor
from .logging_setup import get_logger
from .models import (
    ExpenseRecord,
    ExtractedTransaction,
    InsertKind,
    InsertOutcome,
    StatementStatus,
    quantize_amount,
)
from .persistence import compute_line_hash, insert_expense, mark_statement_terminal
from .resolver import CategoryResolutionError, CategoryResolver

_logger = get_logger("spendro.pipeline")


@dataclass(slots=True)
class RunSummary:
    statement_id: str
    observed: int = 0
    inserted: int = 0
    duplicates: int = 0
    dropped: int = 0
    status: StatementStatus = StatementStatus.PROCESSING

    @property
    def partial(self) -> bool:
        return self.status is StatementStatus.COMPLETED and self.dropped > 0


class IngestionPipeline:
    def __init__(
        self,
        *,
        extractor: StatementExtractor,
        resolver: CategoryResolver,
        normalizer: CurrencyNormalizer,
        database_url: str | None = None,
        bus: ChangeBus | None = None,
        foreign_category: str | None = "Travel",
    ) -> None:
        self._extractor = extractor
        self._resolver = resolver
        self._normalizer = normalizer
        self._database_url = database_url
        self._bus = bus
        self._foreign_category = foreign_category

    @property
    def base_currency(self) -> str:
        return self._normalizer.base_currency

    def _notify(self, table: str, user_id: str) -> None:
        if self._bus is not None:
            self._bus.notify(table, user_id=user_id)

    # ------------------------------------------------------------------
    # Per-item steps
    # ------------------------------------------------------------------

    async def _category_label(self, user_id: str, item: ExtractedTransaction) -> str:
        override = await self._resolver.resolve_merchant_override(user_id, item.merchant)
        if override:
            return override
        if self._foreign_category and item.original_currency != self.base_currency:
            return self._foreign_category
        return item.category

    def _insert_sync(self, record: ExpenseRecord) -> InsertOutcome:
        with session_scope(database_url=self._database_url) as session:
            return insert_expense(session, record)

    async def _process_item(
        self, statement_id: str, user_id: str, item: ExtractedTransaction, summary: RunSummary
    ) -> None:
        try:
            label = await self._category_label(user_id, item)
            category_id, category_name = await self._resolver.resolve(user_id, label)
        except CategoryResolutionError as e:
            summary.dropped += 1
            _logger.warning(
                "pipeline:item_dropped statement_id=%s reason=category error=%s",
                statement_id,
                e,
            )
            return

        if item.amount_base is not None:
            amount = quantize_amount(item.amount_base)
        else:
            amount = quantize_amount(
                await self._normalizer.normalize(
                    item.original_amount, item.original_currency, item.date
                )
            )

        try:
            record = ExpenseRecord(
                user_id=user_id,
                statement_id=statement_id,
                date=item.date,
                description=item.description,
                merchant=item.merchant or None,
                category=category_name,
                category_id=category_id,
                amount=amount,
                original_amount=quantize_amount(item.original_amount),
                original_currency=item.original_currency,
                currency=self.base_currency,
                line_hash=compute_line_hash(item.date, item.description, amount),
            )
        except ValueError as e:
            summary.dropped += 1
            _logger.warning(
                "pipeline:item_dropped statement_id=%s reason=invalid error=%s", statement_id, e
            )
            return

        try:
            outcome = await asyncio.to_thread(self._insert_sync, record)
        except SQLAlchemyError as e:
            # Commit-time failures surface here rather than as an outcome
            outcome = InsertOutcome.failed(str(e))

        if outcome.kind is InsertKind.INSERTED:
            summary.inserted += 1
            self._notify(EXPENSES, user_id)
        elif outcome.kind is InsertKind.DUPLICATE:
            summary.duplicates += 1
        else:
            summary.dropped += 1
            _logger.warning(
                "pipeline:item_dropped statement_id=%s reason=insert error=%s",
                statement_id,
                outcome.reason,
            )

    # ------------------------------------------------------------------
    # Statement run
    # ------------------------------------------------------------------

    def _finish_sync(self, statement_id: str, status: StatementStatus) -> bool:
        with session_scope(database_url=self._database_url) as session:
            return mark_statement_terminal(session, statement_id, status)

    async def _finish(self, statement_id: str, user_id: str, status: StatementStatus) -> None:
        try:
            await asyncio.shield(asyncio.to_thread(self._finish_sync, statement_id, status))
        except SQLAlchemyError:
            _logger.exception(
                "pipeline:status_write_failed statement_id=%s status=%s", statement_id, status
            )
            return
        self._notify(STATEMENTS, user_id)

    async def process_statement(
        self, statement_id: str, user_id: str, document: bytes
    ) -> RunSummary:
        """Ingest ``document`` for an existing ``processing`` statement.

        Never raises for extraction or per-item failures; the outcome is the
        statement's terminal status (also returned in the summary).
        """

        summary = RunSummary(statement_id=statement_id)
        status = StatementStatus.FAILED
        t0 = time.perf_counter()
        try:
            names = await self._resolver.category_names(user_id, seed_defaults=True)
            async for item in self._extractor.extract(document, names):
                summary.observed += 1
                await self._process_item(statement_id, user_id, item, summary)
            if summary.observed:
                status = StatementStatus.COMPLETED
            else:
                _logger.error(
                    "pipeline:statement_failed statement_id=%s reason=no_candidates", statement_id
                )
        except Exception:  # noqa: BLE001 - any stream failure is fatal to the statement
            _logger.exception(
                "pipeline:statement_failed statement_id=%s observed=%d",
                statement_id,
                summary.observed,
            )
        finally:
            summary.status = status
            await self._finish(statement_id, user_id, status)
            _logger.info(
                (
                    "pipeline:run_summary statement_id=%s status=%s observed=%d inserted=%d "
                    "duplicates=%d dropped=%d latency_ms=%.2f"
                ),
                statement_id,
                status,
                summary.observed,
                summary.inserted,
                summary.duplicates,
                summary.dropped,
                (time.perf_counter() - t0) * 1000.0,
            )
        return summary


__all__ = ["IngestionPipeline", "RunSummary"]
