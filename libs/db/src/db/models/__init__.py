"""Shared SQLAlchemy models registry for the workspace database.

Currently includes the statement/expense models used by ``spendro``.
"""

from .expenses import Base, Category, Expense, MerchantMapping, Statement

__all__ = [
    "Base",
    "Category",
    "Expense",
    "MerchantMapping",
    "Statement",
]
