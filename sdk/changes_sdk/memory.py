"""
In-memory transport for testing.

This module provides a scripted Transport for:
- Unit tests of the changes reader
- Examples and local development without a database server

Invariants:
    - Every exchange is recorded, in order, before it is answered
    - Scripted steps are consumed exactly once, in order
    - With the script exhausted, behaves like an idle long-poll

How to change safely:
    - This is test-only code, changes don't affect production
    - Keep it compatible with the Transport protocol
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Deque, Dict, List, Mapping, Optional, Union

from .errors import TransientServerError, error_for_status

logger = logging.getLogger(__name__)


@dataclass
class RecordedRequest:
    """A request seen by the scripted transport."""

    method: str
    path: str
    params: Dict[str, Any] = field(default_factory=dict)


Step = Union[Dict[str, Any], BaseException, Any]


class ScriptedTransport:
    """Scripted implementation of the Transport protocol.

    Steps are queued with reply()/fail()/fail_status() and consumed one per
    exchange. A step that is an exception is raised; anything else is
    returned as the decoded body.

    When no step is left, the exchange waits `idle_delay` seconds (the
    long-poll timing out) and answers an empty page that repeats `since`.

    Example:
        >>> transport = ScriptedTransport()
        >>> transport.reply({"results": [], "last_seq": "1-0"})
        >>> transport.fail_status(500)
        >>> reader = ChangesReader("db", transport)
    """

    def __init__(self, idle_delay: float = 0.01) -> None:
        """Initialize scripted transport.

        Args:
            idle_delay: Seconds an exchange waits once the script is exhausted
        """
        self.idle_delay = idle_delay
        self.requests: List[RecordedRequest] = []
        self._steps: Deque[Step] = deque()
        self._new_step = asyncio.Event()

    def reply(
        self,
        body: Any = None,
        *,
        results: Optional[List[Dict[str, Any]]] = None,
        last_seq: Any = None,
        pending: Optional[int] = None,
    ) -> ScriptedTransport:
        """Queue a successful response.

        Either pass a complete body or build one from keywords.
        """
        if body is None:
            body = {"results": results if results is not None else []}
            if last_seq is not None:
                body["last_seq"] = last_seq
            if pending is not None:
                body["pending"] = pending
        self._steps.append(body)
        self._new_step.set()
        return self

    def fail(self, error: BaseException) -> ScriptedTransport:
        """Queue a failure raised as-is."""
        self._steps.append(error)
        self._new_step.set()
        return self

    def fail_status(self, status_code: int, reason: Optional[str] = None) -> ScriptedTransport:
        """Queue a server failure with the given HTTP status."""
        return self.fail(error_for_status(status_code, reason))

    def fail_network(self, message: str = "connection reset") -> ScriptedTransport:
        """Queue a status-less transport failure."""
        return self.fail(TransientServerError(message))

    @property
    def remaining(self) -> int:
        """Number of scripted steps not yet consumed."""
        return len(self._steps)

    @property
    def request_count(self) -> int:
        return len(self.requests)

    def since_values(self) -> List[Any]:
        """The `since` parameter of every recorded request (testing helper)."""
        return [r.params.get("since") for r in self.requests]

    def limit_values(self) -> List[Any]:
        """The `limit` parameter of every recorded request (testing helper)."""
        return [r.params.get("limit") for r in self.requests]

    async def exchange(
        self,
        method: str,
        path: str,
        params: Mapping[str, Any],
    ) -> Any:
        """Answer the next scripted step.

        Raises:
            TransportError: If the step is a failure
        """
        self.requests.append(RecordedRequest(method=method, path=path, params=dict(params)))

        if not self._steps:
            self._new_step.clear()
            try:
                await asyncio.wait_for(self._new_step.wait(), timeout=self.idle_delay)
            except asyncio.TimeoutError:
                logger.debug("Scripted long-poll idle", extra={"since": params.get("since")})
                return {"results": [], "last_seq": params.get("since"), "pending": 0}

        step = self._steps.popleft()
        if isinstance(step, BaseException):
            raise step
        return step

    async def wait_for_requests(self, count: int, timeout: float = 5.0) -> bool:
        """Wait until at least `count` exchanges were made (testing helper).

        Returns:
            True if count reached, False if timeout
        """
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while loop.time() < deadline:
            if len(self.requests) >= count:
                return True
            await asyncio.sleep(0.005)
        return len(self.requests) >= count


__all__ = ["RecordedRequest", "ScriptedTransport"]
