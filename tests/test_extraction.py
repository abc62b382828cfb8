from __future__ import annotations

import asyncio
import base64
import json
from datetime import date
from decimal import Decimal

import pytest
from openai import OpenAIError

import spendro.extraction as extraction_mod
from spendro.extraction import ExtractionError, OpenAIStatementExtractor, parse_transaction_line
from spendro.prompting import build_extraction_instructions
from tests.helpers.stubs import PDF_BYTES, OpenAIStreamStub, delta_events


def _line(**overrides) -> str:
    payload = {
        "date": "2025-01-15",
        "merchant": "ACME",
        "description": "Coffee purchase",
        "category": "Food & Drink",
        "original_amount": 4.5,
        "original_currency": "SGD",
        "amount_base": None,
    }
    payload.update(overrides)
    return json.dumps(payload)


def _collect(extractor: OpenAIStatementExtractor, categories=("Food & Drink", "Travel")):
    async def _go():
        return [item async for item in extractor.extract(PDF_BYTES, list(categories))]

    return asyncio.run(_go())


@pytest.fixture
def openai_stub(monkeypatch: pytest.MonkeyPatch):
    holder: dict[str, OpenAIStreamStub] = {}

    def _install(events, *, error=None) -> OpenAIStreamStub:
        stub = OpenAIStreamStub(events, error=error)
        holder["stub"] = stub
        monkeypatch.setattr(extraction_mod, "_create_client", lambda: stub)
        return stub

    return _install


def test_lines_split_across_deltas_are_reassembled(openai_stub):
    first = _line(description="Coffee")
    second = _line(description="Taxi", original_amount="12.30", original_currency="usd")
    text = f"{first}\n{second}\n"
    openai_stub(delta_events([text[:10], text[10:70], text[70:]]))

    items = _collect(OpenAIStatementExtractor())

    assert [i.description for i in items] == ["Coffee", "Taxi"]
    assert items[1].original_currency == "USD"
    assert items[1].original_amount == Decimal("12.30")
    assert items[0].date == date(2025, 1, 15)


def test_trailing_line_without_newline_is_flushed(openai_stub):
    openai_stub(delta_events([_line(description="Last")]))

    items = _collect(OpenAIStatementExtractor())

    assert [i.description for i in items] == ["Last"]


def test_malformed_lines_are_skipped(openai_stub):
    chunks = [
        "```json\n",
        "not json at all\n",
        "[1, 2]\n",
        _line(original_amount=-5) + "\n",
        _line(description="Good") + "\n",
        "```\n",
    ]
    openai_stub(delta_events(chunks))

    items = _collect(OpenAIStatementExtractor())

    assert [i.description for i in items] == ["Good"]


def test_failure_event_raises_after_yielding_earlier_items(openai_stub):
    openai_stub(delta_events([_line(description="Kept") + "\n"], final="response.failed"))
    seen: list[str] = []

    async def _go():
        async for item in OpenAIStatementExtractor().extract(PDF_BYTES, ["Other"]):
            seen.append(item.description)

    with pytest.raises(ExtractionError):
        asyncio.run(_go())
    assert seen == ["Kept"]


def test_client_errors_are_wrapped(openai_stub):
    openai_stub(delta_events([]), error=OpenAIError("connection reset"))

    with pytest.raises(ExtractionError, match="connection reset"):
        _collect(OpenAIStatementExtractor())


def test_client_is_closed_after_success_and_failure(openai_stub):
    ok = openai_stub(delta_events([_line() + "\n"]))
    assert len(_collect(OpenAIStatementExtractor())) == 1
    assert ok.closed

    broken = openai_stub(delta_events([]), error=OpenAIError("connection reset"))
    with pytest.raises(ExtractionError):
        _collect(OpenAIStatementExtractor())
    assert broken.closed


def test_request_carries_pdf_and_category_vocabulary(openai_stub):
    stub = openai_stub(delta_events([]))

    _collect(OpenAIStatementExtractor(model="gpt-test", file_name="jan.pdf"), ["Groceries"])

    (call,) = stub.calls
    assert call["model"] == "gpt-test"
    assert call["stream"] is True
    assert "Groceries" in call["instructions"]
    content = call["input"][0]["content"]
    file_part = next(p for p in content if p["type"] == "input_file")
    assert file_part["filename"] == "jan.pdf"
    prefix = "data:application/pdf;base64,"
    assert file_part["file_data"].startswith(prefix)
    assert base64.b64decode(file_part["file_data"][len(prefix) :]) == PDF_BYTES


def test_parse_line_defaults_blank_category_and_drops_non_positive_base():
    item = parse_transaction_line(_line(category="", amount_base=0))

    assert item is not None
    assert item.category == "Other"
    assert item.amount_base is None
    assert parse_transaction_line("   ") is None


def test_instructions_always_offer_other_and_base_currency():
    text = build_extraction_instructions(["Travel", "travel ", "Travel"], base_currency="eur")

    assert "one of: Travel, travel, Other" in text
    assert "EUR" in text
    assert "NDJSON" in text
