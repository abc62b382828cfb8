"""Category and merchant-mapping domain helpers.

Small, server-side operations over the ``categories`` and
``merchant_mappings`` tables. Every function takes a caller-owned
``Session`` and an explicit ``user_id``; rows belonging to other users are
never read or written.

Exports
-------
- ``get_or_create_category(...)``: case-insensitive get-or-create that is
  safe under concurrent first use (optimistic insert, read-after-conflict).
- ``seed_default_categories(...)`` / ``list_category_names(...)``: the
  per-user vocabulary handed to the extraction service.
- Merchant mapping CRUD plus ``recategorize_merchant_expenses(...)``.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass

from db.models.expenses import Category, Expense, MerchantMapping
from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from .logging_setup import get_logger

_logger = get_logger("spendro.categories")

DEFAULT_CATEGORIES: tuple[str, ...] = (
    "Food & Drink",
    "Transport",
    "Shopping",
    "Groceries",
    "Entertainment",
    "Bills",
    "Health",
    "Travel",
    "Other",
)

# ---------------------------
# Name normalization/validation
# ---------------------------


def normalize_name(name: str) -> str:
    """Return a trimmed, single-spaced representation of ``name``.

    Does not change case; the first writer's casing is kept.
    """

    return " ".join(name.strip().split())


@dataclass(frozen=True, slots=True)
class NameValidation:
    ok: bool
    reason: str | None = None


def validate_name(name: str, *, min_len: int = 1, max_len: int = 64) -> NameValidation:
    n = normalize_name(name)
    if len(n) < min_len:
        return NameValidation(False, "Name cannot be empty")
    if len(n) > max_len:
        return NameValidation(False, f"Name must be at most {max_len} characters")
    return NameValidation(True, None)


def _require_valid(name: str) -> str:
    n = normalize_name(name)
    v = validate_name(n)
    if not v.ok:
        raise ValueError(f"Invalid category name: {v.reason}")
    return n


# ---------------------------
# Categories
# ---------------------------


def find_category(session: Session, *, user_id: str, name: str) -> Category | None:
    """Case-insensitive lookup of one of the user's categories."""

    return (
        session.execute(
            select(Category).where(
                Category.user_id == user_id,
                func.lower(Category.name) == normalize_name(name).lower(),
            )
        )
        .scalars()
        .first()
    )


def get_or_create_category(
    session: Session,
    *,
    user_id: str,
    name: str,
    description: str | None = None,
    is_default: bool = False,
) -> tuple[Category, bool]:
    """Return ``(category, created)`` for ``name`` (case-insensitive).

    Concurrency
    -----------
    No locks are taken. When the insert loses a race against another writer
    creating the same name, the unique index on ``(user_id, lower(name))``
    rejects it. The insert runs inside a savepoint, so only that insert is
    rolled back: earlier uncommitted work in the caller's session survives.
    The winner's row is returned with ``created=False``. Any other integrity
    error propagates.
    """

    name_n = _require_valid(name)
    existing = find_category(session, user_id=user_id, name=name_n)
    if existing is not None:
        return existing, False

    row = Category(
        user_id=user_id,
        name=name_n,
        description=description,
        is_default=is_default,
    )
    try:
        with session.begin_nested():
            session.add(row)
    except IntegrityError:
        winner = find_category(session, user_id=user_id, name=name_n)
        if winner is None:
            # Not a name conflict; bubble up the original error
            raise
        _logger.debug("category:create_conflict user_id=%s name=%s", user_id, name_n)
        return winner, False
    return row, True


def list_category_names(session: Session, *, user_id: str) -> list[str]:
    rows = session.execute(
        select(Category.name).where(Category.user_id == user_id).order_by(Category.name)
    ).scalars()
    return list(rows)


def seed_default_categories(
    session: Session, *, user_id: str, names: Iterable[str] = DEFAULT_CATEGORIES
) -> int:
    """Idempotently install the default vocabulary; returns how many were created."""

    created = 0
    for name in names:
        _row, was_created = get_or_create_category(
            session, user_id=user_id, name=name, is_default=True
        )
        created += int(was_created)
    return created


# ---------------------------
# Merchant mappings
# ---------------------------


def normalize_merchant_key(merchant: str) -> str:
    """Upper-cased, whitespace-collapsed merchant key used for mapping lookups."""

    return " ".join(merchant.strip().split()).upper()


def get_merchant_mapping(
    session: Session, *, user_id: str, merchant: str
) -> MerchantMapping | None:
    key = normalize_merchant_key(merchant)
    if not key:
        return None
    return session.execute(
        select(MerchantMapping).where(
            MerchantMapping.user_id == user_id,
            MerchantMapping.merchant_name == key,
        )
    ).scalar_one_or_none()


def create_merchant_mapping(
    session: Session, *, user_id: str, merchant: str, category: str
) -> bool:
    """Create a mapping; returns ``False`` when one already exists for the merchant."""

    key = normalize_merchant_key(merchant)
    if not key:
        raise ValueError("merchant must be non-empty")
    row = MerchantMapping(user_id=user_id, merchant_name=key, category=_require_valid(category))
    try:
        with session.begin_nested():
            session.add(row)
    except IntegrityError:
        return False
    return True


def update_merchant_mapping(
    session: Session, *, user_id: str, merchant: str, category: str
) -> bool:
    result = session.execute(
        update(MerchantMapping)
        .where(
            MerchantMapping.user_id == user_id,
            MerchantMapping.merchant_name == normalize_merchant_key(merchant),
        )
        .values(category=_require_valid(category))
    )
    return result.rowcount == 1


def delete_merchant_mapping(session: Session, *, user_id: str, merchant: str) -> bool:
    row = get_merchant_mapping(session, user_id=user_id, merchant=merchant)
    if row is None:
        return False
    session.delete(row)
    session.flush()
    return True


def list_merchant_mappings(session: Session, *, user_id: str) -> list[MerchantMapping]:
    return list(
        session.execute(
            select(MerchantMapping)
            .where(MerchantMapping.user_id == user_id)
            .order_by(MerchantMapping.merchant_name)
        ).scalars()
    )


def recategorize_merchant_expenses(
    session: Session, *, user_id: str, merchant: str, category: str
) -> int:
    """Point every expense of ``merchant`` (case-insensitive) at ``category``.

    The category is resolved (and created if needed) first so ``category_id``
    stays consistent with the name. Returns the number of rows updated.
    """

    target, _created = get_or_create_category(session, user_id=user_id, name=category)
    result = session.execute(
        update(Expense)
        .where(
            Expense.user_id == user_id,
            func.lower(Expense.merchant) == normalize_name(merchant).lower(),
        )
        .values(category=target.name, category_id=target.id)
    )
    return result.rowcount or 0


__all__ = [
    "DEFAULT_CATEGORIES",
    "NameValidation",
    "create_merchant_mapping",
    "delete_merchant_mapping",
    "find_category",
    "get_merchant_mapping",
    "get_or_create_category",
    "list_category_names",
    "list_merchant_mappings",
    "normalize_merchant_key",
    "normalize_name",
    "recategorize_merchant_expenses",
    "seed_default_categories",
    "update_merchant_mapping",
]
