"""Newline framing for the continuous ``_changes`` byte stream."""

from __future__ import annotations

from typing import List, Optional

DELIMITER = b"\n"


class StreamTokenizer:
    """Splits network-sized chunks into complete newline-terminated records.

    The partial tail of each chunk is kept and prefixed to the next one, so a
    record (or a multi-byte character) split across chunks comes out whole.
    Blank records are returned as-is; the heartbeat keep-alive CouchDB sends on
    an idle feed is an empty line and the caller decides what to do with it.
    """

    def __init__(self) -> None:
        self._buffer = bytearray()

    @property
    def buffered_bytes(self) -> int:
        return len(self._buffer)

    def feed(self, chunk: bytes) -> List[str]:
        if not chunk:
            return []
        self._buffer.extend(chunk)
        if DELIMITER not in chunk:
            return []
        *complete, tail = bytes(self._buffer).split(DELIMITER)
        self._buffer = bytearray(tail)
        return [_decode(line) for line in complete]

    def flush(self) -> Optional[str]:
        """Return and clear whatever partial record is still buffered."""
        if not self._buffer:
            return None
        remainder = _decode(bytes(self._buffer))
        self._buffer.clear()
        return remainder


def _decode(line: bytes) -> str:
    if line.endswith(b"\r"):
        line = line[:-1]
    # invalid bytes survive as lone surrogates so the decoder can reject the record
    return line.decode("utf-8", errors="surrogateescape")


__all__ = ["StreamTokenizer"]
