"""Id-set diffing of full snapshots."""

from __future__ import annotations

from collections.abc import Hashable, Sequence
from dataclasses import dataclass
from typing import Generic, Protocol, TypeVar


class _HasId(Protocol):
    @property
    def id(self) -> Hashable: ...


RowT = TypeVar("RowT", bound=_HasId)


@dataclass(frozen=True, slots=True)
class SnapshotDiff(Generic[RowT]):
    added: tuple[RowT, ...] = ()
    updated: tuple[RowT, ...] = ()
    removed: tuple[RowT, ...] = ()

    @property
    def empty(self) -> bool:
        return not (self.added or self.updated or self.removed)


def diff_snapshots(previous: Sequence[RowT], current: Sequence[RowT]) -> SnapshotDiff[RowT]:
    """Compare two snapshots by id.

    Rows present only in ``current`` are added, only in ``previous`` removed,
    and rows in both that compare unequal are updated (reported with their
    ``current`` value). Inputs are not modified; output order follows
    ``current`` for added/updated and ``previous`` for removed.
    """

    before = {row.id: row for row in previous}
    after_ids = {row.id for row in current}
    added: list[RowT] = []
    updated: list[RowT] = []
    for row in current:
        old = before.get(row.id)
        if old is None:
            added.append(row)
        elif old != row:
            updated.append(row)
    removed = [row for row in previous if row.id not in after_ids]
    return SnapshotDiff(tuple(added), tuple(updated), tuple(removed))


__all__ = ["SnapshotDiff", "diff_snapshots"]
