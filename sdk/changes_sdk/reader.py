"""
Changes reader for a database `_changes` feed.

The ChangesReader turns successive long-poll requests into an ordered event
stream. It:
- Issues one long-poll exchange at a time through a Transport
- Publishes change / batch / seq events on an EventChannel
- Tracks the resumable position (since token)
- Retries transient failures forever on the same position
- Stops on fatal client errors, on stop(), or when a ceiling is reached
- In bounded mode (get), stops and emits end once caught up

Invariants:
    - At most one exchange is in flight per reader
    - Per exchange: change events, then batch, then seq
    - Events of exchange N are published before request N+1 is sent
    - After the first successful exchange, since is always a server value
    - A halted reader has a default session and a fresh channel

How to change safely:
    - Keep classification of failures in errors.is_fatal_status()
    - Test ordering with listeners that call stop() mid-batch
    - Never add client-side sleeps between polls; the server long-poll and
      429 responses are the pacing mechanism
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional
from urllib.parse import quote

from .config import DEFAULT_BATCH_SIZE, DEFAULT_HEARTBEAT_MS, DEFAULT_TIMEOUT_MS, ReaderConfig
from .errors import ConfigurationError, TransientServerError, TransportError
from .events import EventChannel, EventKind
from .transport import Transport
from .types import NOW, Batch, ChangeRecord, FeedPosition, normalize_position

logger = logging.getLogger(__name__)


def _on_loop(loop: asyncio.AbstractEventLoop) -> bool:
    """Whether the caller is running inside `loop`."""
    try:
        return asyncio.get_running_loop() is loop
    except RuntimeError:
        return False


def _resume_position(records: List[ChangeRecord]) -> Optional[FeedPosition]:
    """Position just after the last delivered record, if the record carries one."""
    if not records or records[-1].seq is None:
        return None
    try:
        return normalize_position(records[-1].seq)
    except TypeError:
        return None


class ReaderState(Enum):
    """Lifecycle of a changes reader run."""

    IDLE = "idle"
    POLLING = "polling"
    HALTING = "halting"
    HALTED = "halted"


@dataclass
class FeedSession:
    """Mutable state of one reader run.

    Attributes:
        since: Current position, sent as `since` on the next request
        batch_size: Changes requested per exchange
        include_docs: Whether to request document bodies
        max_changes: Ceiling on delivered changes (None = unbounded)
        timeout_ms: Long-poll timeout sent to the server
        heartbeat_ms: Heartbeat interval sent to the server
        delivered: Changes delivered so far in this run
        stop_requested: Whether no further exchange may be issued
        running: Whether a loop task owns this session
        stop_on_caught_up: Bounded mode (get)
        end_emitted: Whether the end event was published
    """

    since: FeedPosition = NOW
    batch_size: int = DEFAULT_BATCH_SIZE
    include_docs: bool = False
    max_changes: Optional[int] = None
    timeout_ms: int = DEFAULT_TIMEOUT_MS
    heartbeat_ms: int = DEFAULT_HEARTBEAT_MS
    delivered: int = 0
    stop_requested: bool = False
    running: bool = False
    stop_on_caught_up: bool = False
    end_emitted: bool = False

    @classmethod
    def from_config(cls, config: ReaderConfig) -> FeedSession:
        session = cls()
        session.reset(config)
        return session

    def apply(self, config: ReaderConfig) -> None:
        """Copy configurable options from a validated config."""
        self.since = config.since
        self.batch_size = config.batch_size
        self.include_docs = config.include_docs
        self.max_changes = config.max_changes
        self.timeout_ms = config.timeout_ms
        self.heartbeat_ms = config.heartbeat_ms

    def reset(self, defaults: ReaderConfig) -> None:
        """Reinitialize every field to its default value."""
        self.apply(defaults)
        self.delivered = 0
        self.stop_requested = False
        self.running = False
        self.stop_on_caught_up = False
        self.end_emitted = False

    def options(self) -> ReaderConfig:
        """Current configurable options as a ReaderConfig."""
        return ReaderConfig(
            batch_size=self.batch_size,
            since=self.since,
            include_docs=self.include_docs,
            max_changes=self.max_changes,
            timeout_ms=self.timeout_ms,
            heartbeat_ms=self.heartbeat_ms,
        )

    def request_limit(self) -> int:
        """Page size for the next request, clamped to the remaining allowance."""
        if self.max_changes is None:
            return self.batch_size
        return max(0, min(self.batch_size, self.max_changes - self.delivered))

    def ceiling_reached(self) -> bool:
        return self.max_changes is not None and self.delivered >= self.max_changes

    def should_continue(self) -> bool:
        return not self.stop_requested and not self.ceiling_reached()


class ChangesReader:
    """Consumes a database changes feed with long-polling.

    Two modes:
    - start(): follow the feed until stop() or a fatal error
    - get(): drain the feed until caught up, then emit end

    Thread safety:
        The reader runs as a single asyncio task. start()/get() must be
        called from inside the running event loop. stop() may be called
        from anywhere, including event listeners and other threads; off the
        loop it is handed to the loop with call_soon_threadsafe.

    Example:
        >>> reader = ChangesReader("orders", transport)
        >>> channel = reader.start(since="0", include_docs=True)
        >>> channel.on("change", handle_change).on("seq", save_checkpoint)
        >>> ...
        >>> reader.stop()
        >>> await reader.wait()
    """

    def __init__(
        self,
        db_name: str,
        transport: Transport,
        config: Optional[ReaderConfig] = None,
    ) -> None:
        """Initialize the reader.

        Args:
            db_name: Database name (unescaped)
            transport: Transport used for every exchange
            config: Defaults the session resets to after each run

        Raises:
            ConfigurationError: If config is invalid
        """
        self.db_name = db_name
        self.transport = transport
        self.defaults = config or ReaderConfig()
        self.defaults.validate()

        self._session = FeedSession.from_config(self.defaults)
        self._channel = EventChannel()
        self._state = ReaderState.IDLE
        self._task: Optional[asyncio.Task[None]] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None

    @property
    def path(self) -> str:
        """Request path for the feed, relative to the server root."""
        return quote(self.db_name, safe="") + "/_changes"

    @property
    def state(self) -> ReaderState:
        return self._state

    @property
    def running(self) -> bool:
        return self._session.running

    @property
    def since(self) -> FeedPosition:
        """Position the next request will start from."""
        return self._session.since

    @property
    def delivered(self) -> int:
        """Changes delivered in the current run."""
        return self._session.delivered

    @property
    def channel(self) -> EventChannel:
        """Channel of the current run (or of the next one, when idle)."""
        return self._channel

    def configure(
        self,
        batch_size: Optional[int] = None,
        since: Optional[Any] = None,
        include_docs: Optional[bool] = None,
        max_changes: Optional[int] = None,
        timeout_ms: Optional[int] = None,
        heartbeat_ms: Optional[int] = None,
    ) -> ChangesReader:
        """Override options for the next run.

        Omitted options keep their current value. Overrides last until the
        run ends; the session then resets to the reader defaults.

        Returns:
            This reader, for chaining

        Raises:
            ConfigurationError: If an option is invalid or the reader is running
        """
        if self._session.running:
            raise ConfigurationError("Cannot configure a running changes reader")

        options = self._session.options().with_overrides(
            batch_size=batch_size,
            since=since,
            include_docs=include_docs,
            max_changes=max_changes,
            timeout_ms=timeout_ms,
            heartbeat_ms=heartbeat_ms,
        )
        self._session.apply(options)
        return self

    def start(self, **options: Any) -> EventChannel:
        """Follow the changes feed until stopped.

        Idempotent: if already running, returns the current channel and
        ignores options.

        Args:
            **options: Same keywords as configure()

        Returns:
            EventChannel receiving this run's events

        Raises:
            ConfigurationError: If an option is invalid
            RuntimeError: If no event loop is running
        """
        return self._begin(bounded=False, options=options)

    def get(self, **options: Any) -> EventChannel:
        """Drain the changes feed up to its current tail.

        Like start(), but stops and emits end once a page returns fewer
        results than requested.
        """
        return self._begin(bounded=True, options=options)

    def stop(self) -> None:
        """Request a graceful halt.

        The in-flight exchange completes and its events are published; no
        further exchange is issued. No-op when not running. Safe to call
        from another thread.
        """
        loop = self._loop
        if loop is not None and not loop.is_closed() and not _on_loop(loop):
            loop.call_soon_threadsafe(self._request_stop)
            return
        self._request_stop()

    def _request_stop(self) -> None:
        session = self._session
        if not session.running or session.stop_requested:
            return
        session.stop_requested = True
        self._state = ReaderState.HALTING
        logger.info("Stopping changes reader", extra={"db": self.db_name, "since": session.since})

    async def wait(self, timeout: Optional[float] = None) -> None:
        """Wait for the current run to finish.

        Args:
            timeout: Maximum seconds to wait (None = forever)

        Raises:
            asyncio.TimeoutError: If the run is still going after timeout
        """
        task = self._task
        if task is None or task.done():
            return
        await asyncio.wait_for(asyncio.shield(task), timeout=timeout)

    def _begin(self, bounded: bool, options: Dict[str, Any]) -> EventChannel:
        if self._session.running:
            return self._channel

        loop = asyncio.get_running_loop()
        if options:
            self.configure(**options)

        session = self._session
        session.running = True
        session.stop_requested = False
        session.stop_on_caught_up = bounded
        self._state = ReaderState.POLLING

        channel = self._channel
        self._loop = loop
        self._task = loop.create_task(self._run(session, channel), name=f"changes-reader:{self.db_name}")
        return channel

    async def _run(self, session: FeedSession, channel: EventChannel) -> None:
        """Poll loop. Runs until stop, fatal error, end or ceiling."""
        logger.info(
            "Starting changes reader",
            extra={
                "db": self.db_name,
                "since": session.since,
                "batch_size": session.batch_size,
                "max_changes": session.max_changes,
                "bounded": session.stop_on_caught_up,
            },
        )

        try:
            while session.should_continue():
                await self._poll_once(session, channel)
                # Let stop() callers and subscribers run between exchanges
                await asyncio.sleep(0)

        except asyncio.CancelledError:
            logger.info("Changes reader cancelled", extra={"db": self.db_name})
            raise

        finally:
            self._halt(session, channel)

    async def _poll_once(self, session: FeedSession, channel: EventChannel) -> None:
        limit = session.request_limit()
        params = {
            "feed": "longpoll",
            "timeout": session.timeout_ms,
            "since": session.since,
            "limit": limit,
            "heartbeat": session.heartbeat_ms,
            "seq_interval": session.batch_size,
            "include_docs": session.include_docs,
        }
        logger.debug(
            "Polling changes feed",
            extra={"db": self.db_name, "since": session.since, "limit": limit},
        )

        try:
            body = await self.transport.exchange("GET", self.path, params)
            batch = Batch.from_response(body)
        except TransportError as e:
            self._on_failure(session, channel, e)
            return
        except Exception as e:
            error = TransientServerError(f"Changes transport failed: {type(e).__name__}: {e}")
            error.__cause__ = e
            self._on_failure(session, channel, error)
            return

        self._on_batch(session, channel, batch, limit)

    def _on_batch(
        self,
        session: FeedSession,
        channel: EventChannel,
        batch: Batch,
        limit: int,
    ) -> None:
        records = batch.records
        last_seq = batch.last_seq
        if session.max_changes is not None:
            allowance = session.max_changes - session.delivered
            if len(records) > allowance:
                records = records[:allowance]
                last_seq = _resume_position(records)
                logger.warning(
                    "Server returned more changes than requested, truncating",
                    extra={"db": self.db_name, "limit": limit, "count": len(batch.records), "kept": allowance},
                )

        if records:
            for record in records:
                channel.emit(EventKind.CHANGE, record)
            channel.emit(EventKind.BATCH, list(records))
            session.delivered += len(records)

        # Empty pages still move the cursor
        if last_seq is not None and last_seq != session.since:
            session.since = last_seq
            channel.emit(EventKind.SEQ, session.since)

        logger.debug(
            "Changes batch consumed",
            extra={
                "db": self.db_name,
                "count": len(records),
                "since": session.since,
                "pending": batch.pending,
                "delivered": session.delivered,
            },
        )

        if not session.stop_on_caught_up:
            return
        if batch.results is not None and len(batch.results) < limit:
            self._finish(session, channel, reason="caught_up")
        elif session.ceiling_reached():
            self._finish(session, channel, reason="max_changes")

    def _finish(self, session: FeedSession, channel: EventChannel, reason: str) -> None:
        """End a bounded run: publish end once and request halt."""
        if not session.end_emitted:
            session.end_emitted = True
            channel.emit(EventKind.END)
        session.stop_requested = True
        self._state = ReaderState.HALTING
        logger.info(
            "Changes feed drained",
            extra={"db": self.db_name, "reason": reason, "since": session.since, "delivered": session.delivered},
        )

    def _on_failure(self, session: FeedSession, channel: EventChannel, error: TransportError) -> None:
        channel.emit(EventKind.ERROR, error)

        if error.fatal:
            session.stop_requested = True
            self._state = ReaderState.HALTING
            logger.error(
                "Fatal changes feed error, stopping",
                extra={
                    "db": self.db_name,
                    "since": session.since,
                    "status_code": error.status_code,
                    "reason": error.reason,
                },
            )
        else:
            logger.warning(
                "Transient changes feed error, retrying",
                extra={
                    "db": self.db_name,
                    "since": session.since,
                    "status_code": error.status_code,
                    "error": str(error),
                },
            )

    def _halt(self, session: FeedSession, channel: EventChannel) -> None:
        """Reset the session to defaults and retire the run's channel."""
        since, delivered = session.since, session.delivered

        session.reset(self.defaults)
        self._channel = EventChannel()
        self._state = ReaderState.HALTED
        channel.close()

        logger.info(
            "Changes reader halted",
            extra={"db": self.db_name, "since": since, "delivered": delivered},
        )

    def __repr__(self) -> str:
        return f"ChangesReader(db={self.db_name!r}, state={self._state.value}, since={self._session.since!r})"
