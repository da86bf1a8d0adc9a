"""
Changes client for Python SDK.

This module provides the entry point most callers use:
- ChangesClient: Owns the transport to a database server
- Database: Per-database handle exposing its changes reader

Example:
    >>> async with ChangesClient("http://localhost:5984") as client:
    ...     reader = client.db("orders").changes_reader
    ...     async for event in reader.get(since="0").subscribe("change", "end"):
    ...         print(event.payload)

Invariants:
    - One ChangesReader per Database handle, created lazily
    - Readers of different databases share the transport, nothing else
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from .config import ClientSettings, ReaderConfig
from .reader import ChangesReader
from .transport import HttpTransport, Transport

logger = logging.getLogger(__name__)


class Database:
    """Handle on one database of a server.

    Attributes:
        name: Database name
        transport: Transport shared with the client
    """

    def __init__(
        self,
        name: str,
        transport: Transport,
        reader_config: Optional[ReaderConfig] = None,
    ) -> None:
        self.name = name
        self.transport = transport
        self._reader_config = reader_config
        self._changes_reader: Optional[ChangesReader] = None

    @property
    def changes_reader(self) -> ChangesReader:
        """The changes reader for this database."""
        if self._changes_reader is None:
            self._changes_reader = ChangesReader(self.name, self.transport, self._reader_config)
        return self._changes_reader

    def __repr__(self) -> str:
        return f"Database(name={self.name!r})"


class ChangesClient:
    """Client for consuming database changes feeds.

    Either builds an HttpTransport from a URL/settings or uses an injected
    transport (for authentication, custom HTTP clients, or tests).

    Attributes:
        settings: Client settings
        reader_config: Defaults for every reader created by this client
    """

    def __init__(
        self,
        url: Optional[str] = None,
        *,
        transport: Optional[Transport] = None,
        settings: Optional[ClientSettings] = None,
        reader_config: Optional[ReaderConfig] = None,
    ) -> None:
        """Initialize the client.

        Args:
            url: Server base URL (overrides settings.url)
            transport: Transport to use instead of an HttpTransport
            settings: Connection settings (loaded from env if not provided)
            reader_config: Reader defaults (library defaults if not provided)
        """
        self.settings = settings or ClientSettings()
        if url is not None:
            self.settings = self.settings.model_copy(update={"url": url})
        self.reader_config = reader_config or ReaderConfig()
        self.reader_config.validate()

        if transport is None:
            self.settings.check_timeouts(self.reader_config)
            transport = HttpTransport(
                self.settings.url,
                request_timeout=self.settings.request_timeout,
                connect_timeout=self.settings.connect_timeout,
            )
        self.transport = transport
        self._databases: Dict[str, Database] = {}

    async def connect(self) -> None:
        """Open the transport, if it needs opening."""
        connect = getattr(self.transport, "connect", None)
        if connect is not None:
            await connect()
        logger.info("Changes client connected", extra={"url": self.settings.url})

    async def close(self) -> None:
        """Stop all readers and close the transport."""
        for database in self._databases.values():
            if database._changes_reader is not None:
                database._changes_reader.stop()
                await database._changes_reader.wait()
        close = getattr(self.transport, "close", None)
        if close is not None:
            await close()
        logger.info("Changes client closed", extra={"url": self.settings.url})

    async def __aenter__(self) -> ChangesClient:
        await self.connect()
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()

    def db(self, name: str) -> Database:
        """Get the handle for a database (same handle for the same name)."""
        database = self._databases.get(name)
        if database is None:
            database = Database(name, self.transport, self.reader_config)
            self._databases[name] = database
        return database
