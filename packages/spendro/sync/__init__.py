"""Real-time synchronization of expense collections.

Public surface:
- :class:`WindowSpec` with :func:`recent_window` / :func:`historical_window`
- :class:`DatabaseShapeSource` and :class:`ShapeSubscription` (full snapshots)
- :func:`diff_snapshots` for id-set diffs
- :class:`ExpenseView` (merged, duplicate-flagged, filtered view)
- :func:`flag_duplicates` (presentation-level duplicate heuristic)
"""

from .diff import SnapshotDiff, diff_snapshots
from .duplicates import DUPLICATE_EPSILON, flag_duplicates
from .feed import (
    DatabaseShapeSource,
    ShapeSource,
    ShapeSubscription,
    StatementRow,
    StatementShape,
    SubscriptionError,
    wait_for_statement,
)
from .filters import ExpenseFilters
from .view import ExpenseView, ViewState, ViewUpdate
from .windows import WindowSpec, add_months, historical_window, recent_window, statement_window

__all__ = [
    "DUPLICATE_EPSILON",
    "DatabaseShapeSource",
    "ExpenseFilters",
    "ExpenseView",
    "ShapeSource",
    "ShapeSubscription",
    "SnapshotDiff",
    "StatementRow",
    "StatementShape",
    "SubscriptionError",
    "ViewState",
    "ViewUpdate",
    "WindowSpec",
    "add_months",
    "diff_snapshots",
    "flag_duplicates",
    "historical_window",
    "recent_window",
    "statement_window",
    "wait_for_statement",
]
