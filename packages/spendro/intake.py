"""Upload intake and supervised background ingestion.

An upload is accepted in three quick steps (checksum, blob write, statement
row in ``processing``) and then handed to a background task that runs
:meth:`spendro.pipeline.IngestionPipeline.process_statement`. Callers learn
the outcome only through the statement's status.

:class:`IngestionSupervisor` owns those tasks: they are tracked, their
failures are logged, and leaving the supervisor's context waits for them
rather than cancelling them.
"""

from __future__ import annotations

import asyncio
import hashlib
import secrets
from pathlib import Path
from types import TracebackType
from typing import Protocol

from db.client import session_scope

from .changes import STATEMENTS, ChangeBus
from .logging_setup import get_logger
from .persistence import create_statement
from .pipeline import IngestionPipeline

_logger = get_logger("spendro.intake")


class UploadRejected(ValueError):
    """The uploaded file cannot be accepted for ingestion."""


def upload_checksum(data: bytes) -> str:
    """SHA-256 checksum (hex) of a non-empty upload."""

    if not data:
        raise UploadRejected("No file provided.")
    return hashlib.sha256(data).hexdigest()


class BlobStore(Protocol):
    def put(self, file_name: str, data: bytes) -> str:
        """Persist ``data`` and return a URL for it."""
        ...


class LocalBlobStore:
    """Filesystem blob store writing ``<stem>-<random suffix><ext>`` under ``root``."""

    def __init__(self, root: Path) -> None:
        self._root = Path(root)

    def put(self, file_name: str, data: bytes) -> str:
        name = Path(file_name).name or "statement.pdf"
        stem, ext = Path(name).stem, Path(name).suffix
        self._root.mkdir(parents=True, exist_ok=True)
        target = self._root / f"{stem}-{secrets.token_hex(8)}{ext}"
        target.write_bytes(data)
        return target.resolve().as_uri()


class IngestionSupervisor:
    """Accepts uploads and runs one ingestion task per statement."""

    def __init__(
        self,
        pipeline: IngestionPipeline,
        blob_store: BlobStore,
        *,
        database_url: str | None = None,
        bus: ChangeBus | None = None,
    ) -> None:
        self._pipeline = pipeline
        self._blob_store = blob_store
        self._database_url = database_url
        self._bus = bus
        self._tasks: set[asyncio.Task[None]] = set()
        self._closed = False

    async def __aenter__(self) -> IngestionSupervisor:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self._closed = True
        await self.wait_idle()

    @property
    def in_flight(self) -> int:
        return len(self._tasks)

    def _create_statement_sync(
        self, user_id: str, checksum: str, file_name: str, blob_url: str
    ) -> str:
        with session_scope(database_url=self._database_url) as session:
            row = create_statement(
                session,
                user_id=user_id,
                checksum=checksum,
                file_name=file_name,
                blob_url=blob_url,
            )
            return row.id

    async def submit_upload(self, user_id: str, file_name: str, data: bytes) -> str:
        """Accept an upload and start ingesting it; returns the new statement id.

        Raises :class:`UploadRejected` for an empty upload. Storage or database
        errors while accepting propagate; nothing is scheduled in that case.
        """

        if self._closed:
            raise RuntimeError("IngestionSupervisor is closed")
        checksum = upload_checksum(data)
        blob_url = await asyncio.to_thread(self._blob_store.put, file_name, data)
        statement_id = await asyncio.to_thread(
            self._create_statement_sync, user_id, checksum, file_name, blob_url
        )
        if self._bus is not None:
            self._bus.notify(STATEMENTS, user_id=user_id)
        _logger.info(
            "intake:accepted statement_id=%s user_id=%s file=%s bytes=%d",
            statement_id,
            user_id,
            file_name,
            len(data),
        )

        task = asyncio.create_task(
            self._run(statement_id, user_id, data), name=f"ingest:{statement_id}"
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return statement_id

    async def _run(self, statement_id: str, user_id: str, data: bytes) -> None:
        try:
            await self._pipeline.process_statement(statement_id, user_id, data)
        except Exception:  # noqa: BLE001 - keep the supervisor alive; the task owns the failure
            _logger.exception("intake:task_crashed statement_id=%s", statement_id)

    async def wait_idle(self) -> None:
        """Wait until every submitted statement has reached its terminal status."""

        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)


__all__ = [
    "BlobStore",
    "IngestionSupervisor",
    "LocalBlobStore",
    "UploadRejected",
    "upload_checksum",
]
