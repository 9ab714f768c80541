"""Append-only JSONL writer for snapshot output."""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any

import structlog

from couchsnap.errors import CommitError, OutputOpenError, OutputWriteError

logger = structlog.get_logger()

_OPEN_FLAGS = os.O_CREAT | os.O_WRONLY | os.O_TRUNC
_FILE_MODE = 0o600


def _write_all(fd: int, data: bytes) -> None:
    view = memoryview(data)
    while view:
        written = os.write(fd, view)
        view = view[written:]


class SnapshotWriter:
    """Writes one JSON document per line to a temporary file.

    Each line goes straight to the file descriptor, so a failed write only
    affects the document being written. The file only becomes visible under
    its final name once :meth:`finalize` links it there.
    """

    def __init__(self) -> None:
        self._fd: int | None = None
        self._path: Path | None = None
        # Size of the file up to the end of the last complete line.
        self._offset = 0

    def open(self, temp_path: Path) -> None:
        """Create (or truncate) *temp_path* for writing."""
        try:
            self._fd = os.open(temp_path, _OPEN_FLAGS, _FILE_MODE)
        except OSError as exc:
            raise OutputOpenError(f"cannot open {temp_path}: {exc}") from exc
        self._path = temp_path
        self._offset = 0
        logger.debug("writer.opened", path=str(temp_path))

    def write(self, document: dict[str, Any]) -> bool:
        """Append *document* as one line. Returns False if it was skipped."""
        if self._fd is None:
            msg = "SnapshotWriter not open; call open() first"
            raise RuntimeError(msg)
        try:
            line = json.dumps(document, separators=(",", ":"), ensure_ascii=False)
            data = (line + "\n").encode("utf-8")
        except (TypeError, ValueError) as exc:
            logger.warning(
                "writer.serialize_failed", doc_id=document.get("_id"), error=str(exc)
            )
            return False
        try:
            _write_all(self._fd, data)
        except OSError as exc:
            self._discard_partial_line(self._fd)
            logger.warning(
                "writer.write_failed", doc_id=document.get("_id"), error=str(exc)
            )
            return False
        self._offset += len(data)
        return True

    def _discard_partial_line(self, fd: int) -> None:
        try:
            os.ftruncate(fd, self._offset)
            os.lseek(fd, self._offset, os.SEEK_SET)
        except OSError as exc:
            raise OutputWriteError(
                f"cannot discard partial line in {self._path}: {exc}"
            ) from exc

    def close(self) -> None:
        if self._fd is not None:
            fd, self._fd = self._fd, None
            os.close(fd)

    def finalize(self, temp_path: Path, final_path: Path) -> None:
        """Sync and close the file, then move it to *final_path*.

        The move is a hard link plus unlink, so an existing file at
        *final_path* is never overwritten.
        """
        try:
            if self._fd is not None:
                os.fsync(self._fd)
            self.close()
            os.link(temp_path, final_path)
        except OSError as exc:
            raise CommitError(
                f"cannot promote {temp_path} to {final_path}: {exc}"
            ) from exc
        try:
            os.unlink(temp_path)
        except OSError as exc:
            logger.warning(
                "writer.temp_cleanup_failed", path=str(temp_path), error=str(exc)
            )
        logger.info("writer.finalized", path=str(final_path), size=self._offset)

    def __enter__(self) -> SnapshotWriter:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()
