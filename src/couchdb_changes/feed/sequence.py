"""Sequence store implementations for CouchDB ``_changes`` resume positions."""

from __future__ import annotations

import contextlib
import logging
import os
import tempfile
from pathlib import Path
from typing import Optional, Union

from .errors import SequenceStoreError

logger = logging.getLogger(__name__)

Position = Union[int, str]

ZERO_POSITION = "0"


def normalize_position(position: Optional[Position]) -> str:
    """Stringify ``position`` for storage; ``None`` becomes the zero position."""
    if position is None:
        return ZERO_POSITION
    text = str(position).strip()
    return text or ZERO_POSITION


class InMemorySequenceStore:
    """Volatile sequence store, mostly useful for tests and dry runs."""

    def __init__(self, initial: Optional[Position] = None) -> None:
        self._value = normalize_position(initial)

    def read(self) -> str:
        return self._value

    def write(self, position: Optional[Position]) -> None:
        self._value = normalize_position(position)

    def reset(
        self,
        *,
        expected: Optional[Position] = None,
        new: Optional[Position] = None,
        force: bool = False,
    ) -> None:
        _check_reset(self._value, expected=expected, force=force)
        self._value = normalize_position(new)


class FileSequenceStore:
    """Durable sequence store holding the last position as a single text value."""

    def __init__(self, path: Path | str, *, fsync: bool = False) -> None:
        self._path = Path(path)
        self._fsync = fsync
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as exc:  # pragma: no cover - only raised on permission issues
            logger.warning(
                "unable to create sequence directory %s: %s",
                self._path.parent,
                exc,
            )

    @property
    def path(self) -> Path:
        return self._path

    def read(self) -> str:
        if not self._path.exists():
            return ZERO_POSITION
        try:
            raw = self._path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            logger.warning(
                "failed to read sequence file %s: %s; starting from %s",
                self._path,
                exc,
                ZERO_POSITION,
            )
            return ZERO_POSITION
        return normalize_position(raw)

    def write(self, position: Optional[Position]) -> None:
        self._write(normalize_position(position))

    def reset(
        self,
        *,
        expected: Optional[Position] = None,
        new: Optional[Position] = None,
        force: bool = False,
    ) -> None:
        """Overwrite the stored position, guarded by the expected current value."""
        _check_reset(self.read(), expected=expected, force=force)
        self._write(normalize_position(new))

    def _write(self, value: str) -> None:
        temp_path: Optional[str] = None
        try:
            temp_fd, temp_path = tempfile.mkstemp(
                prefix=f".{self._path.name}.", dir=str(self._path.parent)
            )
            with os.fdopen(temp_fd, "w", encoding="utf-8") as tmp:
                tmp.write(value)
                tmp.flush()
                if self._fsync:
                    os.fsync(tmp.fileno())
            os.replace(temp_path, self._path)
            temp_path = None
            if self._fsync:
                _fsync_directory(self._path.parent)
        except OSError as exc:
            logger.error("failed to persist sequence file %s: %s", self._path, exc)
            raise SequenceStoreError(
                f"unable to persist sequence to {self._path}: {exc}"
            ) from exc
        finally:
            if temp_path is not None:
                with contextlib.suppress(OSError):
                    os.unlink(temp_path)


def _fsync_directory(directory: Path) -> None:
    try:
        dir_fd = os.open(directory, os.O_RDONLY)
    except OSError:  # pragma: no cover - directories cannot be opened on Windows
        return
    try:
        os.fsync(dir_fd)
    finally:
        os.close(dir_fd)


def _check_reset(current: str, *, expected: Optional[Position], force: bool) -> None:
    if force:
        return
    if expected is None:
        raise ValueError("expected position required; supply force=True to reset")
    if normalize_position(expected) != current:
        raise ValueError(
            f"unexpected sequence value: stored {current!r}, expected {str(expected)!r}"
        )


__all__ = [
    "FileSequenceStore",
    "InMemorySequenceStore",
    "Position",
    "ZERO_POSITION",
    "normalize_position",
]
