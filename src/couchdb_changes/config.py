"""Runtime configuration helpers for the CouchDB changes feed service."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

DEFAULT_SEQUENCE_FILENAME = ".couchdb_seq"


@dataclass(frozen=True)
class Settings:
    """Immutable container for service configuration."""

    host: str
    port: int
    db: str
    secure: bool
    ca_file: Optional[str]
    username: Optional[str]
    password: Optional[str]
    heartbeat_ms: int
    timeout_ms: Optional[int]
    sequence_backend: str
    sequence_path: Path
    sequence_fsync: bool
    initial_sequence: Optional[str]
    keep_revision: bool
    always_reconnect: bool
    reconnect_delay_seconds: float
    connect_timeout_seconds: float = 10.0
    read_timeout_seconds: float = 60.0
    write_jsonl: bool = False
    jsonl_path: Path = Path("changes.jsonl")
    jsonl_fsync: bool = False
    log_level: str = "INFO"


def _as_bool(value: Optional[str], default: bool) -> bool:
    """Convert environment strings to booleans."""
    if value is None:
        return default
    return value.strip().lower() not in {"0", "false", "no"}


def _optional(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    return value or None


def _optional_int(value: Optional[str]) -> Optional[int]:
    value = _optional(value)
    return int(value) if value is not None else None


def _coerce_sequence_backend(value: Optional[str]) -> str:
    if value is None:
        return "file"
    normalized = value.strip().lower()
    if normalized in {"memory", "file"}:
        return normalized
    return "file"


def _default_sequence_path() -> Path:
    home = os.getenv("HOME")
    if not home:
        raise ValueError(
            "No HOME environment variable set; cannot decide where to keep the "
            "feed sequence. Set HOME or SEQUENCE_PATH."
        )
    return Path(home) / DEFAULT_SEQUENCE_FILENAME


def load_settings() -> Settings:
    """Load configuration from the environment (and `.env`)."""
    load_dotenv()
    host = os.getenv("COUCHDB_HOST", "localhost")
    port = int(os.getenv("COUCHDB_PORT", "5984"))
    db = os.getenv("COUCHDB_DB", "").strip()
    secure = _as_bool(os.getenv("COUCHDB_SECURE"), False)
    ca_file = _optional(os.getenv("COUCHDB_CA_FILE"))
    username = _optional(os.getenv("COUCHDB_USERNAME"))
    password = os.getenv("COUCHDB_PASSWORD")

    heartbeat_ms = int(os.getenv("COUCHDB_HEARTBEAT_MS", "1000"))
    timeout_ms = _optional_int(os.getenv("COUCHDB_TIMEOUT_MS"))
    connect_timeout_seconds = float(
        os.getenv("COUCHDB_CONNECT_TIMEOUT_SECONDS", "10")
    )
    read_timeout_seconds = float(os.getenv("COUCHDB_READ_TIMEOUT_SECONDS", "60"))

    sequence_backend = _coerce_sequence_backend(os.getenv("SEQUENCE_BACKEND"))
    raw_sequence_path = _optional(os.getenv("SEQUENCE_PATH"))
    sequence_path = (
        Path(raw_sequence_path) if raw_sequence_path else _default_sequence_path()
    )
    sequence_fsync = _as_bool(os.getenv("SEQUENCE_FSYNC"), False)
    initial_sequence = _optional(os.getenv("INITIAL_SEQUENCE"))

    keep_revision = _as_bool(os.getenv("KEEP_REVISION"), False)
    always_reconnect = _as_bool(os.getenv("ALWAYS_RECONNECT"), True)
    reconnect_delay_seconds = float(os.getenv("RECONNECT_DELAY_SECONDS", "10"))

    write_jsonl = _as_bool(os.getenv("WRITE_JSONL"), False)
    jsonl_path = Path(os.getenv("JSONL_PATH", "changes.jsonl"))
    jsonl_fsync = _as_bool(os.getenv("JSONL_FSYNC"), False)
    log_level = os.getenv("LOG_LEVEL", "INFO").strip().upper() or "INFO"

    return Settings(
        host=host,
        port=port,
        db=db,
        secure=secure,
        ca_file=ca_file,
        username=username,
        password=password,
        heartbeat_ms=heartbeat_ms,
        timeout_ms=timeout_ms,
        sequence_backend=sequence_backend,
        sequence_path=sequence_path,
        sequence_fsync=sequence_fsync,
        initial_sequence=initial_sequence,
        keep_revision=keep_revision,
        always_reconnect=always_reconnect,
        reconnect_delay_seconds=reconnect_delay_seconds,
        connect_timeout_seconds=connect_timeout_seconds,
        read_timeout_seconds=read_timeout_seconds,
        write_jsonl=write_jsonl,
        jsonl_path=jsonl_path,
        jsonl_fsync=jsonl_fsync,
        log_level=log_level,
    )
