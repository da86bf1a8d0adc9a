"""
Event channel for changes feed notifications.

The reader publishes to one EventChannel per run; callers subscribe either
with synchronous listeners (on/off) or with async iterators (subscribe).

Invariants:
    - Events reach every subscriber in publish order
    - emit() never waits on a subscriber
    - No replay: a subscriber only sees events published after it joined
    - A failing listener never prevents delivery to the others

How to change safely:
    - New event kinds must be added to EventKind and documented on the reader
    - Keep emit() synchronous; the reader relies on it for ordering
"""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, FrozenSet, List, Union

logger = logging.getLogger(__name__)

Listener = Callable[..., Any]


class EventKind(str, Enum):
    """Kinds of events published by the changes reader."""

    CHANGE = "change"
    BATCH = "batch"
    SEQ = "seq"
    ERROR = "error"
    END = "end"


@dataclass(frozen=True)
class Event:
    """A published event as seen by async subscribers.

    Attributes:
        kind: Event kind
        payload: ChangeRecord, list of records, position, error, or None for END
    """

    kind: EventKind
    payload: Any = None


_CLOSED = object()


class Subscription:
    """Async iterator over events of one channel.

    Backed by an unbounded queue so the publisher never blocks. Iteration
    ends when the channel closes or close() is called.

    Example:
        >>> sub = channel.subscribe(EventKind.CHANGE, EventKind.END)
        >>> async for event in sub:
        ...     print(event.kind, event.payload)
    """

    def __init__(self, channel: EventChannel, kinds: FrozenSet[EventKind]) -> None:
        self._channel = channel
        self.kinds = kinds
        self._queue: asyncio.Queue[Any] = asyncio.Queue()
        self._done = False

    def _accepts(self, kind: EventKind) -> bool:
        return not self.kinds or kind in self.kinds

    def _put(self, event: Any) -> None:
        if not self._done:
            self._queue.put_nowait(event)

    def close(self) -> None:
        """Stop receiving events. Events already queued are still yielded."""
        self._channel._detach(self)
        self._done = True
        self._queue.put_nowait(_CLOSED)

    def pending(self) -> int:
        """Number of events queued and not yet consumed."""
        return self._queue.qsize()

    def __aiter__(self) -> Subscription:
        return self

    async def __anext__(self) -> Event:
        item = await self._queue.get()
        if item is _CLOSED:
            self._done = True
            raise StopAsyncIteration
        return item


class EventChannel:
    """Multi-subscriber, push-based notification surface.

    The changes reader is the only publisher. Listeners registered with on()
    are called synchronously during emit() in registration order; async
    subscribers get events through their own queue.

    Example:
        >>> channel = reader.start()
        >>> channel.on("change", print).on("seq", save_checkpoint)
    """

    def __init__(self) -> None:
        self._listeners: Dict[EventKind, List[Listener]] = defaultdict(list)
        self._subscriptions: List[Subscription] = []
        self._closed = False

    @property
    def closed(self) -> bool:
        """Whether the run that owns this channel has finished."""
        return self._closed

    def on(self, kind: Union[EventKind, str], listener: Listener) -> EventChannel:
        """Register a listener for an event kind.

        Args:
            kind: Event kind (enum or its string value)
            listener: Callable receiving the payload (no argument for END)

        Returns:
            This channel, for chaining
        """
        self._listeners[EventKind(kind)].append(listener)
        return self

    def off(self, kind: Union[EventKind, str], listener: Listener) -> EventChannel:
        """Remove a previously registered listener (no-op if absent)."""
        listeners = self._listeners[EventKind(kind)]
        if listener in listeners:
            listeners.remove(listener)
        return self

    def listener_count(self, kind: Union[EventKind, str]) -> int:
        """Number of synchronous listeners for a kind."""
        return len(self._listeners[EventKind(kind)])

    def subscribe(self, *kinds: Union[EventKind, str]) -> Subscription:
        """Create an async subscription.

        Args:
            kinds: Kinds to receive; all kinds if omitted

        Returns:
            Subscription (already finished if the channel is closed)
        """
        subscription = Subscription(self, frozenset(EventKind(k) for k in kinds))
        if self._closed:
            subscription.close()
        else:
            self._subscriptions.append(subscription)
        return subscription

    def emit(self, kind: EventKind, payload: Any = None) -> None:
        """Publish an event to all current subscribers.

        Args:
            kind: Event kind
            payload: Event payload (ignored for END)
        """
        if self._closed:
            logger.warning("Emit on closed channel ignored", extra={"kind": kind.value})
            return

        for listener in list(self._listeners[kind]):
            try:
                if kind is EventKind.END:
                    listener()
                else:
                    listener(payload)
            except Exception:
                logger.exception(
                    "Changes listener failed",
                    extra={"kind": kind.value, "listener": getattr(listener, "__name__", repr(listener))},
                )

        event = Event(kind, None if kind is EventKind.END else payload)
        for subscription in list(self._subscriptions):
            if subscription._accepts(kind):
                subscription._put(event)

    def close(self) -> None:
        """Finish all async subscriptions and refuse further events."""
        if self._closed:
            return
        self._closed = True
        for subscription in list(self._subscriptions):
            subscription._put(_CLOSED)
        self._subscriptions.clear()

    def _detach(self, subscription: Subscription) -> None:
        if subscription in self._subscriptions:
            self._subscriptions.remove(subscription)

    def __repr__(self) -> str:
        counts = {k.value: len(v) for k, v in self._listeners.items() if v}
        return f"EventChannel(listeners={counts}, subscriptions={len(self._subscriptions)}, closed={self._closed})"
