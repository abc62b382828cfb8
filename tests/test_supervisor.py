from __future__ import annotations

import asyncio
import hashlib
import re
from collections.abc import Sequence

import pytest
from db.client import session_scope
from db.models.expenses import Statement
from sqlalchemy import select

from spendro.config import Settings
from spendro.intake import UploadRejected, upload_checksum
from spendro.runtime import build_runtime
from spendro.sync import wait_for_statement
from tests.helpers.db import count_expenses, statement_status
from tests.helpers.stubs import PDF_BYTES, StubRateSource, tx

USER = "user-1"
JAN = PDF_BYTES + b"january"
FEB = PDF_BYTES + b"february"
BROKEN = PDF_BYTES + b"broken"


class DocumentExtractor:
    """Yields a different batch per document; ``BROKEN`` raises immediately."""

    def __init__(self) -> None:
        self.batches = {
            JAN: [tx(description="Jan rent", date="2025-01-01"), tx(description="Jan coffee")],
            FEB: [tx(description="Feb rent", date="2025-02-01"), tx(description="Feb taxi")],
        }

    async def extract(self, document: bytes, categories: Sequence[str]):
        if document == BROKEN:
            raise RuntimeError("model unavailable")
        for item in self.batches[document]:
            await asyncio.sleep(0)
            yield item


def _runtime(settings: Settings):
    return build_runtime(
        settings, extractor=DocumentExtractor(), rate_source=StubRateSource({"USD": "1.35"})
    )


def test_concurrent_uploads_complete_independently(settings: Settings):
    runtime = _runtime(settings)

    async def _go():
        async with runtime.supervisor() as supervisor:
            ids = await asyncio.gather(
                supervisor.submit_upload(USER, "jan.pdf", JAN),
                supervisor.submit_upload(USER, "feb.pdf", FEB),
            )
        return ids, supervisor.in_flight

    (jan_id, feb_id), in_flight = asyncio.run(_go())

    assert in_flight == 0
    assert statement_status(settings.database_url, jan_id) == "completed"
    assert statement_status(settings.database_url, feb_id) == "completed"
    assert count_expenses(settings.database_url, user_id=USER) == 4


def test_accepted_upload_is_stored_under_a_unique_name(settings: Settings):
    runtime = _runtime(settings)

    async def _go():
        async with runtime.supervisor() as supervisor:
            return await supervisor.submit_upload(USER, "jan.pdf", JAN)

    statement_id = asyncio.run(_go())

    stored = list(settings.blob_dir.iterdir())
    assert len(stored) == 1
    assert re.fullmatch(r"jan-[0-9a-f]{16}\.pdf", stored[0].name)
    assert stored[0].read_bytes() == JAN
    with session_scope(database_url=settings.database_url) as s:
        row = s.execute(select(Statement).where(Statement.id == statement_id)).scalar_one()
        assert row.file_name == "jan.pdf"
        assert row.blob_url == stored[0].resolve().as_uri()
        assert len(row.checksum) == 64


def test_broken_extraction_fails_only_that_statement(settings: Settings):
    runtime = _runtime(settings)

    async def _go():
        async with runtime.supervisor() as supervisor:
            bad = await supervisor.submit_upload(USER, "bad.pdf", BROKEN)
            good = await supervisor.submit_upload(USER, "jan.pdf", JAN)
        return bad, good

    bad, good = asyncio.run(_go())

    assert statement_status(settings.database_url, bad) == "failed"
    assert statement_status(settings.database_url, good) == "completed"


def test_rejected_upload_creates_nothing(settings: Settings):
    runtime = _runtime(settings)

    async def _go():
        async with runtime.supervisor() as supervisor:
            with pytest.raises(UploadRejected):
                await supervisor.submit_upload(USER, "empty.pdf", b"")

    asyncio.run(_go())

    assert not settings.blob_dir.exists()
    with session_scope(database_url=settings.database_url) as s:
        assert s.execute(select(Statement)).first() is None


def test_closed_supervisor_refuses_new_uploads(settings: Settings):
    runtime = _runtime(settings)

    async def _go():
        supervisor = runtime.supervisor()
        async with supervisor:
            pass
        with pytest.raises(RuntimeError):
            await supervisor.submit_upload(USER, "jan.pdf", JAN)

    asyncio.run(_go())


def test_wait_for_statement_reports_each_status(settings: Settings):
    runtime = _runtime(settings)
    seen: list[str] = []

    async def _go():
        async with runtime.supervisor() as supervisor:
            statement_id = await supervisor.submit_upload(USER, "jan.pdf", JAN)
            return await asyncio.wait_for(
                wait_for_statement(
                    runtime.shapes,
                    user_id=USER,
                    statement_id=statement_id,
                    on_change=lambda row: seen.append(row.status),
                ),
                timeout=10,
            )

    final = asyncio.run(_go())

    assert final.status == "completed"
    assert final.file_name == "jan.pdf"
    assert seen[-1] == "completed"
    assert runtime.bus.listener_count() == 0


def test_upload_checksum_is_sha256_of_the_bytes():
    assert upload_checksum(PDF_BYTES) == hashlib.sha256(PDF_BYTES).hexdigest()
    with pytest.raises(UploadRejected):
        upload_checksum(b"")
