"""Streaming consumption of the CouchDB ``_changes`` feed with resumable positions."""

from .client import FeedClient, FeedClientSettings
from .consumer import (
    ChangeSink,
    ConnectionState,
    FeedConsumer,
    FeedConsumerMetrics,
    SequenceStore,
)
from .decoder import Change, ChangeAction, ChangeDecoder, ControlRecord
from .errors import (
    DatabaseNotFound,
    FeedError,
    FeedRequestError,
    FeedTerminated,
    MalformedRecord,
    SequenceStoreError,
    SinkError,
)
from .sequence import FileSequenceStore, InMemorySequenceStore, Position
from .tokenizer import StreamTokenizer

__all__ = [
    "Change",
    "ChangeAction",
    "ChangeDecoder",
    "ChangeSink",
    "ConnectionState",
    "ControlRecord",
    "DatabaseNotFound",
    "FeedClient",
    "FeedClientSettings",
    "FeedConsumer",
    "FeedConsumerMetrics",
    "FeedError",
    "FeedRequestError",
    "FeedTerminated",
    "FileSequenceStore",
    "InMemorySequenceStore",
    "MalformedRecord",
    "Position",
    "SequenceStore",
    "SequenceStoreError",
    "SinkError",
    "StreamTokenizer",
]
