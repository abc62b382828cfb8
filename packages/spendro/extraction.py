"""Statement extraction service.

``StatementExtractor.extract`` turns raw statement bytes into a lazy, finite,
non-restartable async stream of :class:`~spendro.models.ExtractedTransaction`.

:class:`OpenAIStatementExtractor` streams an OpenAI Responses API call whose
output is newline-delimited JSON. Each line is validated and yielded as soon
as it completes, so the pipeline can persist the first item while the model
is still producing the rest.
"""

from __future__ import annotations

import base64
import json
from collections.abc import AsyncIterator, Sequence
from typing import Any, Protocol

from openai import AsyncOpenAI, OpenAIError
from pydantic import ValidationError

from . import prompting
from .logging_setup import get_logger
from .models import ExtractedTransaction

_logger = get_logger("spendro.extraction")

_TEXT_DELTA = "response.output_text.delta"
_FAILURE_EVENTS = frozenset({"response.failed", "response.incomplete", "error"})


class ExtractionError(RuntimeError):
    """The extraction stream could not be opened or broke mid-stream."""


class StatementExtractor(Protocol):
    def extract(
        self, document: bytes, categories: Sequence[str]
    ) -> AsyncIterator[ExtractedTransaction]: ...


def parse_transaction_line(line: str) -> ExtractedTransaction | None:
    """Validate one NDJSON line; returns ``None`` (and logs) when it is unusable."""

    text = line.strip()
    if not text or text.startswith("```"):
        return None
    try:
        payload: Any = json.loads(text)
        if not isinstance(payload, dict):
            raise ValueError("line is not a JSON object")
        return ExtractedTransaction.model_validate(payload)
    except (ValueError, ValidationError) as e:
        _logger.warning("extraction:skip_malformed line=%.120s error=%s", text, e)
        return None


def _create_client() -> AsyncOpenAI:
    return AsyncOpenAI()


class OpenAIStatementExtractor:
    """Extract transactions from a PDF statement with the OpenAI Responses API."""

    def __init__(
        self,
        *,
        model: str = "gpt-5",
        base_currency: str = "SGD",
        file_name: str = "statement.pdf",
    ) -> None:
        self._model = model
        self._base_currency = base_currency
        self._file_name = file_name

    def _input(self, document: bytes) -> list[dict[str, Any]]:
        encoded = base64.b64encode(document).decode("ascii")
        return [
            {
                "role": "user",
                "content": [
                    {
                        "type": "input_file",
                        "filename": self._file_name,
                        "file_data": f"data:application/pdf;base64,{encoded}",
                    },
                    {
                        "type": "input_text",
                        "text": "Extract every expense transaction from this statement.",
                    },
                ],
            }
        ]

    async def extract(
        self, document: bytes, categories: Sequence[str]
    ) -> AsyncIterator[ExtractedTransaction]:
        instructions = prompting.build_extraction_instructions(
            categories, base_currency=self._base_currency
        )
        _logger.info(
            "extraction:start model=%s bytes=%d categories=%d",
            self._model,
            len(document),
            len(categories),
        )
        buffer = ""
        yielded = 0
        # One client per statement, closed with its connection pool on exit.
        async with _create_client() as client:
            try:
                stream = await client.responses.create(
                    model=self._model,
                    instructions=instructions,
                    input=self._input(document),
                    stream=True,
                )
                async for event in stream:
                    kind = getattr(event, "type", None)
                    if kind == _TEXT_DELTA:
                        buffer += getattr(event, "delta", "") or ""
                        while "\n" in buffer:
                            line, buffer = buffer.split("\n", 1)
                            item = parse_transaction_line(line)
                            if item is not None:
                                yielded += 1
                                yield item
                    elif kind in _FAILURE_EVENTS:
                        raise ExtractionError(f"extraction stream ended with {kind}")
            except OpenAIError as e:
                raise ExtractionError(f"extraction request failed: {e}") from e

            tail = parse_transaction_line(buffer)
            if tail is not None:
                yielded += 1
                yield tail
        _logger.info("extraction:done items=%d", yielded)


__all__ = [
    "ExtractionError",
    "OpenAIStatementExtractor",
    "StatementExtractor",
    "parse_transaction_line",
]
