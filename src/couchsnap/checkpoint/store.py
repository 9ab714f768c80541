"""File-backed checkpoint store for snapshot runs.

The checkpoint is a small JSON document written next to the snapshot files::

    {"since": "...", "startTime": "...", "endTime": "...", "db": "..."}

``since`` is the changes feed sequence token to resume from on the next run.
"""

from __future__ import annotations

import json
import re
from datetime import datetime
from pathlib import Path

import structlog
from pydantic import BaseModel, ConfigDict, Field, ValidationError

logger = structlog.get_logger()

BEGINNING = "0"

_SEQ_SUFFIX = re.compile(r"-.*$", re.DOTALL)


class CheckpointRecord(BaseModel):
    """The last completed run for one database."""

    model_config = ConfigDict(populate_by_name=True)

    source_name: str = Field(alias="db")
    cursor: str = Field(default="", alias="since")
    started_at: datetime | None = Field(default=None, alias="startTime")
    completed_at: datetime | None = Field(default=None, alias="endTime")

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True)


def truncate_for_display(cursor: str) -> str:
    """Shorten a sequence token for log output.

    CouchDB sequence tokens look like ``1234-g1AAAA...``; only the numeric
    prefix is useful to a human.
    """
    if cursor == BEGINNING:
        return cursor
    return _SEQ_SUFFIX.sub("", cursor)


class CheckpointStore:
    """Reads and writes the ``<name>-meta.json`` checkpoint file."""

    def __init__(self, path: Path) -> None:
        self._path = path

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> str:
        """Return the stored cursor, or ``""`` if there is no usable checkpoint."""
        try:
            data = json.loads(self._path.read_text())
        except FileNotFoundError:
            logger.debug("checkpoint.not_found", path=str(self._path))
            return ""
        except (OSError, ValueError) as exc:
            logger.warning(
                "checkpoint.load_failed", path=str(self._path), error=str(exc)
            )
            return ""
        since = data.get("since") if isinstance(data, dict) else None
        if not isinstance(since, str):
            logger.warning("checkpoint.invalid_since", path=str(self._path))
            return ""
        return since

    def load_record(self) -> CheckpointRecord | None:
        """Return the full stored record, or None if missing or unreadable."""
        try:
            return CheckpointRecord.model_validate_json(self._path.read_bytes())
        except FileNotFoundError:
            return None
        except (OSError, ValidationError) as exc:
            logger.warning(
                "checkpoint.load_failed", path=str(self._path), error=str(exc)
            )
            return None

    def save(self, record: CheckpointRecord) -> None:
        """Overwrite the checkpoint file. Errors propagate to the caller."""
        self._path.write_text(record.to_json())
        logger.info(
            "checkpoint.saved",
            path=str(self._path),
            db=record.source_name,
            since=truncate_for_display(record.cursor),
        )
