"""Public interface for the ``spendro`` package.

Statement ingestion (extraction, currency normalization, category
resolution, conflict-tolerant inserts) and the live, windowed expense view.
Only symbol re-exports live here.
"""

from .changes import ChangeBus
from .config import ConfigError, Settings
from .currency import CurrencyNormalizer, ExchangeRateApiSource, RateSource
from .extraction import ExtractionError, OpenAIStatementExtractor, StatementExtractor
from .intake import BlobStore, IngestionSupervisor, LocalBlobStore, UploadRejected
from .models import (
    DisplayExpense,
    ExpenseRecord,
    ExtractedTransaction,
    InsertKind,
    InsertOutcome,
    StatementStatus,
)
from .persistence import compute_line_hash, insert_expense
from .pipeline import IngestionPipeline, RunSummary
from .resolver import CategoryResolutionError, CategoryResolver
from .review import ReviewService
from .runtime import Runtime, build_runtime

__all__ = [
    # Wiring
    "Runtime",
    "Settings",
    "build_runtime",
    "ChangeBus",
    # Ingestion
    "IngestionPipeline",
    "IngestionSupervisor",
    "RunSummary",
    "StatementExtractor",
    "OpenAIStatementExtractor",
    "CurrencyNormalizer",
    "ExchangeRateApiSource",
    "RateSource",
    "CategoryResolver",
    "BlobStore",
    "LocalBlobStore",
    "ReviewService",
    "compute_line_hash",
    "insert_expense",
    # Models
    "DisplayExpense",
    "ExpenseRecord",
    "ExtractedTransaction",
    "InsertKind",
    "InsertOutcome",
    "StatementStatus",
    # Errors
    "CategoryResolutionError",
    "ConfigError",
    "ExtractionError",
    "UploadRejected",
]
