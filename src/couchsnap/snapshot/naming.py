"""Snapshot and checkpoint file naming conventions."""

from __future__ import annotations

import re
from datetime import datetime

_UNSAFE = re.compile(r"[\s/\\]")

TMP_PREFIX = "_tmp_"


def safe_name(database: str) -> str:
    """Make a database name usable as a filename.

    Whitespace and path separators (CouchDB allows "/" in names) become "_".
    """
    return _UNSAFE.sub("_", database)


def checkpoint_filename(database: str) -> str:
    return f"{safe_name(database)}-meta.json"


def snapshot_filename(database: str, started_at: datetime) -> str:
    """``<name>-snapshot-<RFC 3339 start time, microseconds>.jsonl``."""
    timestamp = started_at.isoformat(timespec="microseconds")
    if timestamp.endswith("+00:00"):
        timestamp = timestamp[: -len("+00:00")] + "Z"
    return f"{safe_name(database)}-snapshot-{timestamp}.jsonl"


def temp_filename(filename: str) -> str:
    return f"{TMP_PREFIX}{filename}"
