"""Snapshot orchestrator: checkpoint → changes feed → JSONL file → commit.

A run moves through ``INIT → RESUMING → STREAMING → COMMITTING → DONE``.
Any exception moves it to ``FAILED``; the checkpoint is only written after
the snapshot file has been renamed to its final name, so a failed run leaves
the previous checkpoint in place and the next run re-reads the same range.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import StrEnum
from pathlib import Path
from typing import Any

import structlog

from couchsnap.checkpoint.store import (
    BEGINNING,
    CheckpointRecord,
    CheckpointStore,
    truncate_for_display,
)
from couchsnap.config.models import SnapshotConfig
from couchsnap.errors import CommitError, ConfigError
from couchsnap.snapshot.naming import (
    checkpoint_filename,
    snapshot_filename,
    temp_filename,
)
from couchsnap.snapshot.writer import SnapshotWriter
from couchsnap.sources.base import ChangeFeedSource

logger = structlog.get_logger()

REVISION_FIELD = "_rev"


class RunState(StrEnum):
    INIT = "init"
    RESUMING = "resuming"
    STREAMING = "streaming"
    COMMITTING = "committing"
    DONE = "done"
    FAILED = "failed"


@dataclass
class SnapshotResult:
    database: str
    output_path: Path
    checkpoint_path: Path
    since: str
    cursor: str
    written: int = 0
    deleted_skipped: int = 0
    failed: int = 0
    started_at: datetime | None = None
    completed_at: datetime | None = None


def strip_revision(doc: dict[str, Any]) -> dict[str, Any]:
    """Return a copy of *doc* without its revision marker."""
    return {k: v for k, v in doc.items() if k != REVISION_FIELD}


def _utcnow() -> datetime:
    return datetime.now(UTC)


class Snapshotter:
    """Takes one incremental snapshot of a database's changes feed."""

    def __init__(
        self,
        config: SnapshotConfig,
        source: ChangeFeedSource,
        *,
        clock: Callable[[], datetime] = _utcnow,
        echo: Callable[[str], None] | None = None,
    ) -> None:
        if not config.database:
            msg = "missing database name (--db/--dbname)"
            raise ConfigError(msg)
        self._config = config
        self._database: str = config.database
        self._source = source
        self._clock = clock
        self._echo = echo or (lambda _line: None)
        self.state = RunState.INIT

        self.started_at = clock()
        out_dir = Path(config.output_dir)
        self.filename = snapshot_filename(self._database, self.started_at)
        self.output_path = out_dir / self.filename
        self.temp_path = out_dir / temp_filename(self.filename)
        self.checkpoint = CheckpointStore(out_dir / checkpoint_filename(self._database))

    async def run(self) -> SnapshotResult:
        """Run the snapshot to completion; raises SnapshotError on failure."""
        try:
            return await self._run()
        except BaseException:
            self._transition(RunState.FAILED)
            raise

    def _transition(self, state: RunState) -> None:
        logger.debug(
            "snapshot.state", db=self._database, previous=self.state, state=state
        )
        self.state = state

    async def _run(self) -> SnapshotResult:
        self._transition(RunState.RESUMING)
        stored = self.checkpoint.load()
        since = stored or BEGINNING

        self._echo(
            f"spooling changes for {self._database} since {truncate_for_display(since)}"
        )
        self._echo(self.filename)
        logger.info(
            "snapshot.started",
            db=self._database,
            since=truncate_for_display(since),
            output=str(self.output_path),
        )

        result = SnapshotResult(
            database=self._database,
            output_path=self.output_path,
            checkpoint_path=self.checkpoint.path,
            since=since,
            cursor=stored,
            started_at=self.started_at,
        )

        self._transition(RunState.STREAMING)
        with SnapshotWriter() as writer:
            writer.open(self.temp_path)
            feed = await self._source.one_off(self._database, since, include_docs=True)
            tracked = False
            async for item in feed:
                if not item.ok or item.event is None:
                    result.failed += 1
                    logger.warning(
                        "snapshot.item_failed", db=self._database, error=str(item.error)
                    )
                    continue
                event = item.event
                if event.deleted and not self._config.include_deletions:
                    result.deleted_skipped += 1
                    result.cursor = event.seq
                    tracked = True
                    continue
                document = event.doc
                if document is None and event.deleted:
                    document = {"_id": event.doc_id, "_deleted": True}
                if document is None:
                    result.failed += 1
                    logger.warning(
                        "snapshot.item_without_doc", db=self._database, seq=event.seq
                    )
                    continue
                if not writer.write(strip_revision(document)):
                    result.failed += 1
                    continue
                result.written += 1
                result.cursor = event.seq
                tracked = True

            # Nothing tracked and nothing lost: jump to the end of the range.
            if not tracked and result.failed == 0 and feed.last_seq:
                result.cursor = feed.last_seq

            self._transition(RunState.COMMITTING)
            writer.finalize(self.temp_path, self.output_path)

        result.completed_at = self._clock()
        record = CheckpointRecord(
            source_name=self._database,
            cursor=result.cursor,
            started_at=self.started_at,
            completed_at=result.completed_at,
        )
        try:
            self.checkpoint.save(record)
        except OSError as exc:
            raise CommitError(
                f"cannot write checkpoint {self.checkpoint.path}: {exc}"
            ) from exc
        self._echo(self.checkpoint.path.name)

        self._transition(RunState.DONE)
        logger.info(
            "snapshot.completed",
            db=self._database,
            written=result.written,
            deleted_skipped=result.deleted_skipped,
            failed=result.failed,
            cursor=truncate_for_display(result.cursor or BEGINNING),
        )
        return result
