"""Decoding of ``_changes`` feed lines into normalized change records."""

from __future__ import annotations

import json
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional, Union

from .errors import MalformedRecord
from .sequence import Position

ID_FIELD = "_id"
REVISION_FIELD = "_rev"
DELETED_FIELD = "_deleted"


class ChangeAction(str, Enum):
    UPDATE = "update"
    DELETE = "delete"


@dataclass(frozen=True)
class Change:
    """One document mutation taken from the feed."""

    document_id: str
    action: ChangeAction
    position: Position
    document: Optional[Dict[str, Any]] = None
    revision: Optional[str] = None

    def to_event(self) -> Dict[str, Any]:
        """Build the upsert/delete envelope handed to downstream indexers."""
        event: Dict[str, Any] = {
            "@metadata": {
                "_id": self.document_id,
                "action": self.action.value,
                "seq": self.position,
            }
        }
        if self.action is ChangeAction.UPDATE:
            event["doc"] = dict(self.document or {})
            event["doc_as_upsert"] = True
        return event


@dataclass(frozen=True)
class ControlRecord:
    """Feed line that carries no document mutation."""

    kind: str  # heartbeat, end
    position: Optional[Position] = None

    @property
    def is_end(self) -> bool:
        return self.kind == "end"


HEARTBEAT = ControlRecord(kind="heartbeat")

DecodedRecord = Union[Change, ControlRecord]


class ChangeDecoder:
    """Turns one JSON line from a continuous feed into a ``Change``.

    ``keep_revision`` keeps ``_rev`` inside the document body (and exposes it
    as ``Change.revision``); by default it is stripped.
    """

    def __init__(self, *, keep_revision: bool = False) -> None:
        self._keep_revision = keep_revision

    def decode(self, record: str) -> DecodedRecord:
        if not record.strip():
            return HEARTBEAT
        try:
            record.encode("utf-8")
        except UnicodeEncodeError as exc:
            raise MalformedRecord("feed record is not valid UTF-8", record) from exc
        try:
            row = json.loads(record)
        except json.JSONDecodeError as exc:
            raise MalformedRecord(f"feed record is not valid JSON: {exc}", record) from exc
        if not isinstance(row, dict):
            raise MalformedRecord("feed record is not a JSON object", record)

        if "last_seq" in row:
            return ControlRecord(kind="end", position=row["last_seq"])

        position = row.get("seq")
        if not _is_position(position):
            raise MalformedRecord("feed record has no usable sequence", record)

        doc = row.get("doc")
        if doc is not None and not isinstance(doc, dict):
            raise MalformedRecord("feed record document is not an object", record)
        doc = doc or {}

        document_id = doc.get(ID_FIELD, row.get("id"))
        if not isinstance(document_id, str) or not document_id:
            raise MalformedRecord("feed record has no document id", record)

        if doc.get(DELETED_FIELD) or row.get("deleted"):
            return Change(
                document_id=document_id,
                action=ChangeAction.DELETE,
                position=position,
            )

        document = dict(doc)
        document.pop(ID_FIELD, None)
        revision: Optional[str] = None
        if self._keep_revision:
            revision = document.get(REVISION_FIELD)
        else:
            document.pop(REVISION_FIELD, None)
        return Change(
            document_id=document_id,
            action=ChangeAction.UPDATE,
            position=position,
            document=document,
            revision=revision,
        )


def _is_position(value: object) -> bool:
    if isinstance(value, bool):
        return False
    if isinstance(value, int):
        return True
    return isinstance(value, str) and bool(value.strip())


__all__ = [
    "Change",
    "ChangeAction",
    "ChangeDecoder",
    "ControlRecord",
    "DecodedRecord",
    "HEARTBEAT",
]
