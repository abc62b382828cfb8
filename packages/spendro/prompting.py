"""Prompt construction for statement extraction.

The extractor asks the model for newline-delimited JSON (one transaction
object per line) so items can be validated and persisted as soon as each
line completes.
"""

from __future__ import annotations

from collections.abc import Sequence

OUTPUT_FIELDS: tuple[str, ...] = (
    "date",
    "merchant",
    "description",
    "category",
    "original_amount",
    "original_currency",
    "amount_base",
)


def _category_list(categories: Sequence[str]) -> str:
    names = list(dict.fromkeys(c.strip() for c in categories if c and c.strip()))
    if "Other" not in names:
        names.append("Other")
    return ", ".join(names)


def build_extraction_instructions(categories: Sequence[str], *, base_currency: str = "SGD") -> str:
    """Return the system instructions for extracting expenses from one statement.

    ``categories`` is the user's vocabulary; ``"Other"`` is always allowed as
    the fallback.
    """

    return (
        "You are a financial data extraction expert. Analyze the attached bank or card "
        "statement and extract ALL expense transactions (outgoing payments, purchases, "
        "debits).\n\n"
        "INCLUDE:\n"
        "- Purchases from merchants, stores and restaurants\n"
        "- Bill payments (utilities, phone, insurance)\n"
        "- ATM withdrawals and bank fees\n"
        "- Subscription services and online payments\n"
        "- Foreign currency transactions\n\n"
        "EXCLUDE:\n"
        "- Deposits, credits and salary payments (money coming in)\n"
        '- Transfers between accounts (e.g. "Transfer", "TFR", "To:", "From:", "Savings", '
        '"Investment", "Own Account")\n'
        "- Interest earned or dividends\n"
        "- Refunds or reversals\n"
        "- Pending transactions\n\n"
        "OUTPUT FORMAT:\n"
        "Emit one JSON object per line (NDJSON), no array, no prose, no code fences. "
        f"Each object has exactly these keys: {', '.join(OUTPUT_FIELDS)}.\n"
        "1. date: posted date as YYYY-MM-DD\n"
        '2. description: concise but informative (e.g. "Coffee purchase", not '
        '"VISA PURCHASE 123456")\n'
        "3. merchant: cleaned merchant name without reference numbers or codes\n"
        f"4. category: one of: {_category_list(categories)}; if uncertain use \"Other\"\n"
        "5. original_amount: positive amount before any currency conversion, as a number\n"
        "6. original_currency: 3-letter currency code; if not shown use "
        f"{base_currency.upper()}\n"
        f"7. amount_base: the {base_currency.upper()} amount only when the statement "
        "prints it explicitly, otherwise null\n\n"
        "QUALITY CHECKS:\n"
        "- Every line is a genuine expense (money leaving the account)\n"
        "- Dates are valid and amounts are positive\n"
        "- Categories match the allowed list exactly"
    )


__all__ = ["OUTPUT_FIELDS", "build_extraction_instructions"]
