"""Change feed protocol consumed by the snapshot runner.

Defines ChangeEvent / ChangeItem (the per-row envelope) and ChangeFeedSource
(the one capability the runner needs: a finite, ordered traversal of a
database's changes from a given cursor).
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable


@dataclass(slots=True)
class ChangeEvent:
    """One row of the changes feed."""

    seq: str
    doc_id: str
    doc: dict[str, Any] | None = None
    deleted: bool = False


@dataclass(slots=True)
class ChangeItem:
    """A changes feed row that either parsed into an event or failed."""

    event: ChangeEvent | None = None
    error: Exception | None = None
    raw: Any = field(default=None, repr=False)

    @property
    def ok(self) -> bool:
        return self.error is None and self.event is not None


@runtime_checkable
class ChangeFeed(Protocol):
    """A single one-off traversal; iterate it once, in order."""

    @property
    def last_seq(self) -> str | None:
        """End-of-range marker reported by the server, once it has been seen."""
        ...

    def __aiter__(self) -> AsyncIterator[ChangeItem]: ...


@runtime_checkable
class ChangeFeedSource(Protocol):
    """Anything that can open a one-off changes traversal."""

    async def one_off(
        self,
        database: str,
        since: str,
        *,
        include_docs: bool = True,
    ) -> ChangeFeed:
        """Open a traversal from *since* to the current end of the feed.

        Raises FeedOpenError if the feed cannot be opened at all.
        """
        ...
