"""CouchChangesSource: ChangeFeedSource implementation for CouchDB / Cloudant."""

from __future__ import annotations

from collections.abc import AsyncIterator
from typing import Any

import structlog

from couchsnap.checkpoint.store import BEGINNING
from couchsnap.config.models import FeedConfig
from couchsnap.errors import FeedError, FeedOpenError
from couchsnap.sources.base import ChangeEvent, ChangeItem
from couchsnap.sources.couchdb.client import CouchClient, CouchError

logger = structlog.get_logger()


class MalformedChangeError(ValueError):
    """A changes feed row that cannot be turned into a ChangeEvent."""


def parse_change_row(row: Any, *, include_docs: bool) -> ChangeItem:
    """Convert one ``results`` row into a ChangeItem (never raises)."""
    try:
        if not isinstance(row, dict):
            raise MalformedChangeError(f"expected an object, got {type(row).__name__}")
        if "error" in row:
            raise MalformedChangeError(
                f"{row.get('error')}: {row.get('reason', 'unknown reason')}"
            )
        seq = row.get("seq")
        if isinstance(seq, int) and not isinstance(seq, bool):
            seq = str(seq)
        if not isinstance(seq, str) or not seq:
            raise MalformedChangeError("row has no usable seq")
        doc = row.get("doc")
        deleted = row.get("deleted") is True
        # Purged or compacted tombstones come back with "doc": null.
        if include_docs and not deleted and not isinstance(doc, dict):
            raise MalformedChangeError(f"row {seq} has no document body")
        event = ChangeEvent(
            seq=seq,
            doc_id=str(row.get("id", "")),
            doc=doc if isinstance(doc, dict) else None,
            deleted=deleted,
        )
    except MalformedChangeError as exc:
        return ChangeItem(error=exc, raw=row)
    return ChangeItem(event=event, raw=row)


class CouchChangesFeed:
    """One paged pass over ``/{db}/_changes`` from a cursor to the current end.

    The first page is fetched by :meth:`CouchChangesSource.one_off`; later
    pages are requested lazily while iterating.
    """

    def __init__(
        self,
        client: CouchClient,
        database: str,
        first_page: dict[str, Any],
        *,
        since: str,
        include_docs: bool,
        batch_size: int,
    ) -> None:
        self._client = client
        self._database = database
        self._first_page: dict[str, Any] | None = first_page
        self._since = since
        self._include_docs = include_docs
        self._batch_size = batch_size
        self._last_seq: str | None = None
        self.pages = 0

    @property
    def last_seq(self) -> str | None:
        return self._last_seq

    def __aiter__(self) -> AsyncIterator[ChangeItem]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[ChangeItem]:
        page = self._first_page
        self._first_page = None
        if page is None:
            msg = "changes feed can only be iterated once"
            raise RuntimeError(msg)

        since = self._since
        while True:
            self.pages += 1
            results = page.get("results") or []
            for row in results:
                yield parse_change_row(row, include_docs=self._include_docs)

            last_seq = page.get("last_seq")
            if isinstance(last_seq, int) and not isinstance(last_seq, bool):
                last_seq = str(last_seq)
            if isinstance(last_seq, str) and last_seq:
                self._last_seq = last_seq

            if self._is_last_page(page, results, since):
                break
            since = self._last_seq  # type: ignore[assignment]
            try:
                page = await self._client.post_changes(
                    self._database,
                    since=since,
                    include_docs=self._include_docs,
                    limit=self._batch_size,
                )
            except CouchError as exc:
                logger.error(
                    "changes.page_failed",
                    db=self._database,
                    page=self.pages + 1,
                    error=str(exc),
                )
                raise FeedError(
                    f"changes feed for '{self._database}' failed: {exc}"
                ) from exc

        logger.info(
            "changes.drained",
            db=self._database,
            pages=self.pages,
            last_seq=self._last_seq,
        )

    def _is_last_page(
        self, page: dict[str, Any], results: list[Any], since: str
    ) -> bool:
        if not results or self._last_seq is None or self._last_seq == since:
            return True
        pending = page.get("pending")
        if isinstance(pending, int):
            return pending <= 0
        return len(results) < self._batch_size


class CouchChangesSource:
    """Opens one-off traversals of a CouchDB database's changes feed."""

    def __init__(self, client: CouchClient, config: FeedConfig | None = None) -> None:
        self._client = client
        self._config = config or FeedConfig()

    async def one_off(
        self,
        database: str,
        since: str,
        *,
        include_docs: bool = True,
    ) -> CouchChangesFeed:
        # An empty cursor means "from the start"; CouchDB wants the literal "0".
        since = since or BEGINNING
        try:
            first_page = await self._client.post_changes(
                database,
                since=since,
                include_docs=include_docs,
                limit=self._config.batch_size,
            )
        except CouchError as exc:
            raise FeedOpenError(
                f"cannot open changes feed for '{database}': {exc}"
            ) from exc
        logger.info("changes.opened", db=database, since=since)
        return CouchChangesFeed(
            self._client,
            database,
            first_page,
            since=since,
            include_docs=include_docs,
            batch_size=self._config.batch_size,
        )
