"""Service runtime wiring the changes feed consumer to its output sink."""

from __future__ import annotations

import json
import logging
import os
import threading
from pathlib import Path
from typing import Callable, Optional

import httpx

from .config import Settings, load_settings
from .feed import (
    Change,
    ChangeDecoder,
    FeedClient,
    FeedClientSettings,
    FeedConsumer,
    FeedTerminated,
    FileSequenceStore,
    InMemorySequenceStore,
    SequenceStore,
)

logger = logging.getLogger(__name__)


class JsonlChangeSink:
    """Appends each change envelope to a JSON Lines file.

    Each line is flushed before the call returns. With ``fsync`` the file is
    also synced to disk, otherwise a host crash can lose lines whose sequence
    was already checkpointed.
    """

    def __init__(self, path: Path | str, *, fsync: bool = False) -> None:
        self._path = Path(path)
        self._fsync = fsync
        self._lock = threading.Lock()

    @property
    def path(self) -> Path:
        return self._path

    def __call__(self, change: Change) -> None:
        line = json.dumps(change.to_event(), ensure_ascii=False, sort_keys=True)
        with self._lock:
            with self._path.open("a", encoding="utf-8") as handle:
                handle.write(line + "\n")
                handle.flush()
                if self._fsync:
                    os.fsync(handle.fileno())


def build_sequence_store(
    settings: Settings,
) -> FileSequenceStore | InMemorySequenceStore:
    if settings.sequence_backend == "memory":
        return InMemorySequenceStore()
    return FileSequenceStore(settings.sequence_path, fsync=settings.sequence_fsync)


def build_feed_client(
    settings: Settings, *, http_client: Optional[httpx.Client] = None
) -> FeedClient:
    client_settings = FeedClientSettings(
        db=settings.db,
        host=settings.host,
        port=settings.port,
        secure=settings.secure,
        ca_file=settings.ca_file,
        username=settings.username,
        password=settings.password,
        heartbeat_ms=settings.heartbeat_ms,
        timeout_ms=settings.timeout_ms,
        connect_timeout_seconds=settings.connect_timeout_seconds,
        read_timeout_seconds=settings.read_timeout_seconds,
    )
    return FeedClient(client_settings, http_client=http_client)


def build_feed_consumer(
    settings: Settings,
    *,
    sink: Callable[[Change], None],
    http_client: Optional[httpx.Client] = None,
    sequence_store: Optional[SequenceStore] = None,
    sleep: Optional[Callable[[float], object]] = None,
) -> FeedConsumer:
    """Construct a feed consumer using application settings."""

    if not settings.db:
        raise ValueError("COUCHDB_DB must be configured")

    store = sequence_store or build_sequence_store(settings)
    if isinstance(store, FileSequenceStore):
        logger.info("tracking changes feed sequence in %s", store.path)

    return FeedConsumer(
        client=build_feed_client(settings, http_client=http_client),
        sink=sink,
        sequence_store=store,
        decoder=ChangeDecoder(keep_revision=settings.keep_revision),
        initial_position=settings.initial_sequence,
        always_reconnect=settings.always_reconnect,
        reconnect_delay_seconds=settings.reconnect_delay_seconds,
        sleep=sleep,
    )


class ServiceRuntime:
    """Runs the feed consumer on a background thread and forwards its changes."""

    def __init__(
        self,
        settings: Settings,
        *,
        http_client: Optional[httpx.Client] = None,
        sequence_store: Optional[SequenceStore] = None,
    ) -> None:
        self.settings = settings
        self._jsonl_sink: Optional[JsonlChangeSink] = None
        if settings.write_jsonl:
            self._jsonl_sink = JsonlChangeSink(
                settings.jsonl_path, fsync=settings.jsonl_fsync
            )
        self.consumer = build_feed_consumer(
            settings,
            sink=self._handle_change,
            http_client=http_client,
            sequence_store=sequence_store,
        )
        self._thread: Optional[threading.Thread] = None
        self._failure: Optional[BaseException] = None

    @property
    def failure(self) -> Optional[BaseException]:
        return self._failure

    def start(self) -> None:
        if self._thread and self._thread.is_alive():
            return
        self._thread = threading.Thread(
            target=self._run_consumer,
            name="feed-consumer",
            daemon=True,
        )
        self._thread.start()
        logger.info("changes feed consumer started in background")

    def run(self) -> None:
        self.start()
        try:
            while self._thread is not None and self._thread.is_alive():
                self._thread.join(timeout=0.5)
        except KeyboardInterrupt:
            logger.info("shutdown requested (KeyboardInterrupt)")
        finally:
            self.stop()

    def stop(self, timeout: float = 5.0) -> None:
        self.consumer.stop()
        if self._thread and self._thread.is_alive():
            self._thread.join(timeout=timeout)
        self._thread = None
        self.consumer.close()

    def _run_consumer(self) -> None:
        try:
            self.consumer.run()
        except FeedTerminated as exc:
            self._failure = exc
            logger.error("changes feed consumer terminated: %s", exc)
        except Exception as exc:  # noqa: BLE001
            self._failure = exc
            logger.exception("changes feed consumer encountered an unrecoverable error")

    def _handle_change(self, change: Change) -> None:
        if self._jsonl_sink is not None:
            self._jsonl_sink(change)
        logger.info(
            "change emitted: %s %s seq=%s",
            change.action.value,
            change.document_id,
            change.position,
        )


def configure_logging(level_name: str = "INFO") -> None:
    if logging.getLogger().handlers:
        return
    logging.basicConfig(
        level=getattr(logging, level_name.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s - %(message)s",
    )


def main() -> None:
    """Entrypoint used by both python -m and the console script hook."""
    settings = load_settings()
    configure_logging(settings.log_level)
    runtime = ServiceRuntime(settings)
    runtime.run()
    if runtime.failure is not None:
        raise SystemExit(1)
