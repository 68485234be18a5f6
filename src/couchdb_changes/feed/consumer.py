"""Feed consumer driving the connect, stream, checkpoint and reconnect cycle."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from threading import Event
from typing import Callable, Dict, Optional, Protocol

import httpx

from .client import FeedClient
from .decoder import Change, ChangeAction, ChangeDecoder, ControlRecord
from .errors import (
    DatabaseNotFound,
    FeedRequestError,
    FeedTerminated,
    MalformedRecord,
    SinkError,
)
from .sequence import Position
from .tokenizer import StreamTokenizer

logger = logging.getLogger(__name__)

ChangeSink = Callable[[Change], None]

# Request failures after which the feed is reopened from the last position,
# including bodies httpx cannot decode.
RETRYABLE_ERRORS = (httpx.RequestError, OSError, DatabaseNotFound)


class SequenceStore(Protocol):
    """Persistence backend holding the last handed-off feed position."""

    def read(self) -> Position: ...

    def write(self, position: Optional[Position]) -> None: ...


class ConnectionState(str, Enum):
    IDLE = "idle"
    CONNECTING = "connecting"
    STREAMING = "streaming"
    BACKOFF = "backoff"
    TERMINATED = "terminated"


@dataclass
class FeedConsumerMetrics:
    """In-process counters for one feed consumer."""

    records_total: int = 0
    heartbeats_total: int = 0
    updates_total: int = 0
    deletes_total: int = 0
    malformed_total: int = 0
    end_markers_total: int = 0
    connects_total: int = 0
    reconnects_total: int = 0
    errors_total: int = 0
    state: str = ConnectionState.IDLE.value

    @property
    def changes_total(self) -> int:
        return self.updates_total + self.deletes_total

    def inc_change(self, action: ChangeAction) -> None:
        if action is ChangeAction.DELETE:
            self.deletes_total += 1
        else:
            self.updates_total += 1

    def snapshot(self) -> Dict[str, int | str]:
        return {
            "records_total": self.records_total,
            "heartbeats_total": self.heartbeats_total,
            "changes_total": self.changes_total,
            "updates_total": self.updates_total,
            "deletes_total": self.deletes_total,
            "malformed_total": self.malformed_total,
            "end_markers_total": self.end_markers_total,
            "connects_total": self.connects_total,
            "reconnects_total": self.reconnects_total,
            "errors_total": self.errors_total,
            "state": self.state,
        }


class FeedConsumer:
    """Consumes one ``_changes`` feed with at-least-once delivery to ``sink``.

    Each change is handed to the sink first and only then is its position
    written to the sequence store, so a crash can at worst redeliver the last
    change on the next start. Failures never escape ``run`` as transport
    errors: they move the consumer to ``backoff`` and, when reconnecting is
    enabled, the feed is reopened from the last handed-off position after a
    fixed delay.
    """

    def __init__(
        self,
        *,
        client: FeedClient,
        sink: ChangeSink,
        sequence_store: SequenceStore,
        decoder: Optional[ChangeDecoder] = None,
        initial_position: Optional[Position] = None,
        always_reconnect: bool = True,
        reconnect_delay_seconds: float = 10.0,
        metrics: Optional[FeedConsumerMetrics] = None,
        sleep: Optional[Callable[[float], object]] = None,
    ) -> None:
        if reconnect_delay_seconds < 0:
            raise ValueError("reconnect_delay_seconds must be >= 0")
        self._client = client
        self._sink = sink
        self._sequence_store = sequence_store
        self._decoder = decoder or ChangeDecoder()
        self._initial_position = initial_position
        self._always_reconnect = always_reconnect
        self._reconnect_delay = reconnect_delay_seconds
        self._metrics = metrics or FeedConsumerMetrics()
        self._stop_event = Event()
        self._sleep = sleep or self._stop_event.wait
        self._state = ConnectionState.IDLE
        self._position: Optional[Position] = None
        self._persisted_position: Optional[Position] = None
        self._feed_end_position: Optional[Position] = None
        self._last_error: Optional[BaseException] = None

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def position(self) -> Optional[Position]:
        """Position of the last change handed to the sink (or the start position)."""
        return self._position

    @property
    def feed_end_position(self) -> Optional[Position]:
        """``last_seq`` of the most recent end-of-feed marker, if any."""
        return self._feed_end_position

    @property
    def metrics(self) -> FeedConsumerMetrics:
        return self._metrics

    def stop(self) -> None:
        """Ask the worker to stop at the next record boundary or backoff wait."""
        self._stop_event.set()

    def close(self) -> None:
        self._client.close()

    def run(self) -> None:
        if self._state is not ConnectionState.IDLE:
            raise RuntimeError(f"consumer cannot start from state {self._state.value}")
        self._load_position()
        while self._state is not ConnectionState.TERMINATED:
            if self._stop_event.is_set():
                self._transition(ConnectionState.TERMINATED)
                break
            self._transition(ConnectionState.CONNECTING)
            try:
                self._stream_once()
            except RETRYABLE_ERRORS as exc:
                self._on_retryable_failure(exc)
            except FeedRequestError as exc:
                if exc.retryable:
                    self._on_retryable_failure(exc)
                else:
                    self._fail(exc)
            except Exception as exc:  # noqa: BLE001 - sink and checkpoint failures are fatal
                self._fail(exc)
            else:
                if self._stop_event.is_set():
                    self._transition(ConnectionState.TERMINATED)
                    break
                self._transition(ConnectionState.BACKOFF)
            if self._state is ConnectionState.BACKOFF:
                self._backoff()
        self._flush_position()
        logger.info(
            "changes feed consumer stopped at position %s", self._position
        )

    # ------------------------------------------------------------------ Internal
    def _load_position(self) -> None:
        stored = self._sequence_store.read()
        if self._initial_position is not None:
            logger.info(
                "using initial sequence %s instead of stored sequence %s",
                self._initial_position,
                stored,
            )
            self._position = self._initial_position
        else:
            self._position = stored
        self._persisted_position = self._position

    def _stream_once(self) -> None:
        tokenizer = StreamTokenizer()
        self._metrics.connects_total += 1
        logger.info(
            "connecting to CouchDB changes feed %s since=%s",
            self._client.describe(),
            self._position,
        )
        with self._client.open(self._position) as chunks:
            self._transition(ConnectionState.STREAMING)
            self._last_error = None
            for chunk in chunks:
                for record in tokenizer.feed(chunk):
                    if not self._process_record(record):
                        return
                if self._stop_event.is_set():
                    return
            remainder = tokenizer.flush()
            if remainder is not None and not self._process_record(remainder):
                return
        logger.info("changes feed closed by server at position %s", self._position)

    def _process_record(self, record: str) -> bool:
        """Handle one feed line; return False when the stream should be left."""
        if self._stop_event.is_set():
            return False
        self._metrics.records_total += 1
        # idle feeds send blank keep-alive lines
        if not record.strip():
            self._metrics.heartbeats_total += 1
            return True
        try:
            decoded = self._decoder.decode(record)
        except MalformedRecord as exc:
            self._metrics.malformed_total += 1
            logger.warning("skipping malformed feed record: %s: %.200r", exc, exc.record)
            return True
        if isinstance(decoded, ControlRecord):
            if not decoded.is_end:
                self._metrics.heartbeats_total += 1
                return True
            self._metrics.end_markers_total += 1
            self._feed_end_position = decoded.position
            logger.info(
                "changes feed ended with last_seq=%s; reopening", decoded.position
            )
            return False
        self._emit(decoded)
        return True

    def _emit(self, change: Change) -> None:
        logger.debug(
            "change %s %s seq=%s", change.action.value, change.document_id, change.position
        )
        try:
            self._sink(change)
        except Exception as exc:  # noqa: BLE001 - surfaced as a fatal sink failure
            raise SinkError(
                f"sink rejected change {change.document_id} at seq {change.position}"
            ) from exc
        self._metrics.inc_change(change.action)
        self._position = change.position
        self._sequence_store.write(self._position)
        self._persisted_position = self._position

    def _flush_position(self) -> None:
        if self._position is None or self._position == self._persisted_position:
            return
        self._sequence_store.write(self._position)
        self._persisted_position = self._position

    def _on_retryable_failure(self, exc: BaseException) -> None:
        self._metrics.errors_total += 1
        self._last_error = exc
        if isinstance(exc, DatabaseNotFound):
            # retried like a transport failure: the database may be created later
            logger.error(
                "unable to connect to database %s: %s", exc.database, exc
            )
        elif self._always_reconnect:
            logger.error(
                "connection problem encountered: %s; retrying connection in %.1fs",
                exc,
                self._reconnect_delay,
            )
        else:
            logger.error("connection problem encountered: %s", exc)
        self._transition(ConnectionState.BACKOFF)

    def _fail(self, exc: BaseException) -> None:
        self._metrics.errors_total += 1
        self._transition(ConnectionState.TERMINATED)
        logger.error("changes feed consumer terminated: %s", exc)
        raise FeedTerminated(f"changes feed stopped: {exc}") from exc

    def _backoff(self) -> None:
        if not self._always_reconnect:
            self._transition(ConnectionState.TERMINATED)
            if self._last_error is not None:
                logger.error("reconnect disabled; giving up on changes feed")
                raise FeedTerminated(
                    f"changes feed stopped: {self._last_error}"
                ) from self._last_error
            return
        self._metrics.reconnects_total += 1
        logger.info(
            "reconnecting to changes feed in %.1fs (attempt %d)",
            self._reconnect_delay,
            self._metrics.reconnects_total,
        )
        self._sleep(self._reconnect_delay)
        if self._stop_event.is_set():
            self._transition(ConnectionState.TERMINATED)

    def _transition(self, state: ConnectionState) -> None:
        if (
            self._state is ConnectionState.TERMINATED
            and state is not ConnectionState.TERMINATED
        ):
            raise RuntimeError("terminated consumer cannot change state")
        if state is not self._state:
            logger.debug("feed state %s -> %s", self._state.value, state.value)
        self._state = state
        self._metrics.state = state.value


__all__ = [
    "ChangeSink",
    "ConnectionState",
    "FeedConsumer",
    "FeedConsumerMetrics",
    "RETRYABLE_ERRORS",
    "SequenceStore",
]
