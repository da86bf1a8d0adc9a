"""
Changes SDK - Resumable consumer for database changes feeds.

This SDK follows a CouchDB-style `_changes` feed over long-polling HTTP:
- ChangesReader: poll loop with resumable position and retry policy
- EventChannel: ordered change / batch / seq / error / end events
- ChangesClient: per-database readers over a shared transport

Example:
    >>> from changes_sdk import ChangesClient
    >>>
    >>> async with ChangesClient("http://localhost:5984") as client:
    ...     reader = client.db("orders").changes_reader
    ...     channel = reader.start(since="now")
    ...     channel.on("change", lambda change: print(change.id))
    ...     channel.on("seq", save_checkpoint)
    ...     await reader.wait()

Invariants:
    - Events for one request are published before the next request is sent
    - Transient failures (429, 5xx, network) never lose the position
    - Fatal failures (other 4xx) stop the reader after an error event

Version: 1.0.0
"""

__version__ = "1.0.0"

from .client import ChangesClient, Database
from .config import ClientSettings, ReaderConfig
from .errors import (
    ChangesError,
    ConfigurationError,
    FatalServerError,
    MalformedResponseError,
    TransientServerError,
    TransportError,
    error_for_status,
    is_fatal_status,
)
from .events import Event, EventChannel, EventKind, Subscription
from .memory import ScriptedTransport
from .reader import ChangesReader, FeedSession, ReaderState
from .transport import HttpTransport, Transport
from .types import BEGINNING, NOW, Batch, ChangeRecord, FeedPosition

__all__ = [
    # Version
    "__version__",
    # Types
    "BEGINNING",
    "NOW",
    "Batch",
    "ChangeRecord",
    "FeedPosition",
    # Reader
    "ChangesReader",
    "FeedSession",
    "ReaderState",
    # Events
    "Event",
    "EventChannel",
    "EventKind",
    "Subscription",
    # Transport
    "HttpTransport",
    "ScriptedTransport",
    "Transport",
    # Client
    "ChangesClient",
    "Database",
    # Config
    "ClientSettings",
    "ReaderConfig",
    # Errors
    "ChangesError",
    "ConfigurationError",
    "FatalServerError",
    "MalformedResponseError",
    "TransientServerError",
    "TransportError",
    "error_for_status",
    "is_fatal_status",
]
