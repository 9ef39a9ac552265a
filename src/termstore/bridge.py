"""Request/response bridge to the UI process that owns the legacy store.

The engine sends::

    {"kind": "indexdb-migration:request-data", "source": "aliases"}

and the UI process answers once with::

    {"kind": "indexdb-migration:data-response:aliases", "payload": [...]}

A payload of ``{"error": "..."}`` reports a failure on the UI side.
"""

from __future__ import annotations

import asyncio
import json
import logging
from abc import ABC, abstractmethod
from collections.abc import Callable
from typing import Any

from termstore.config import DEFAULT_BRIDGE_TIMEOUT
from termstore.errors import BridgeRemoteError, BridgeTimeoutError

logger = logging.getLogger(__name__)

REQUEST_KIND = "indexdb-migration:request-data"
RESPONSE_PREFIX = "indexdb-migration:data-response:"

Message = dict[str, Any]


def response_kind(source: str) -> str:
    """Message kind the UI process uses to answer a request for ``source``."""
    return f"{RESPONSE_PREFIX}{source}"


class Channel(ABC):
    """Outbound half of the link to the UI process.

    Inbound messages are handed to ``DataBridge.dispatch`` by whoever reads
    the link.
    """

    @abstractmethod
    async def send(self, message: Message) -> None:
        """Deliver ``message`` to the UI process."""

    async def close(self) -> None:
        """Release the link. Nothing to do by default."""


class StreamChannel(Channel):
    """Newline-delimited JSON over an asyncio stream pair (pipe or socket)."""

    def __init__(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        self._reader = reader
        self._writer = writer
        self._task: asyncio.Task | None = None

    async def send(self, message: Message) -> None:
        """Write one JSON line and wait for the buffer to drain."""
        self._writer.write((json.dumps(message) + "\n").encode("utf-8"))
        await self._writer.drain()

    def start(self, on_message: Callable[[Message], Any]) -> None:
        """Start reading inbound messages in a background task."""
        if self._task and not self._task.done():
            logger.warning("Stream channel already reading")
            return
        self._task = asyncio.create_task(self._read_loop(on_message), name="bridge-reader")

    @property
    def running(self) -> bool:
        """Return True while the read loop is active."""
        return self._task is not None and not self._task.done()

    async def _read_loop(self, on_message: Callable[[Message], Any]) -> None:
        while True:
            line = await self._reader.readline()
            if not line:
                logger.info("UI process closed the bridge stream")
                return
            line = line.strip()
            if not line:
                continue
            try:
                message = json.loads(line)
            except json.JSONDecodeError as e:
                logger.warning("Dropping malformed bridge message: %s", e)
                continue
            if not isinstance(message, dict):
                logger.warning("Dropping non-object bridge message: %r", message)
                continue
            on_message(message)

    async def close(self) -> None:
        """Stop reading and close the writer."""
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        self._writer.close()
        await self._writer.wait_closed()


class DataBridge:
    """Fetch legacy store contents from the UI process.

    One request per source may be outstanding at a time; each waits on a
    future keyed by the expected response kind.
    """

    def __init__(self, channel: Channel, timeout: float = DEFAULT_BRIDGE_TIMEOUT) -> None:
        self._channel = channel
        self._timeout = timeout
        self._pending: dict[str, asyncio.Future] = {}

    @classmethod
    def from_streams(
        cls,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
        timeout: float = DEFAULT_BRIDGE_TIMEOUT,
    ) -> DataBridge:
        """Build a bridge over a stream pair and start reading responses."""
        channel = StreamChannel(reader, writer)
        bridge = cls(channel, timeout=timeout)
        channel.start(bridge.dispatch)
        return bridge

    @property
    def channel(self) -> Channel:
        """The outbound channel."""
        return self._channel

    @property
    def pending(self) -> set[str]:
        """Response kinds currently awaited."""
        return set(self._pending)

    async def request_legacy_data(self, source: str, timeout: float | None = None) -> Any:
        """Ask the UI process for ``source`` and wait for its answer.

        Raises:
            BridgeTimeoutError: No response within ``timeout`` seconds.
            BridgeRemoteError: The response carried an error marker.
        """
        timeout = self._timeout if timeout is None else timeout
        key = response_kind(source)
        loop = asyncio.get_running_loop()
        future: asyncio.Future = loop.create_future()
        self._pending[key] = future
        started = loop.time()

        logger.info("Requesting %s data from UI process...", source)
        try:
            await self._channel.send({"kind": REQUEST_KIND, "source": source})
            payload = await asyncio.wait_for(future, timeout)
        except asyncio.TimeoutError as exc:
            elapsed = (loop.time() - started) * 1000
            logger.error("Timeout after %.0fms waiting for %s", elapsed, source)
            raise BridgeTimeoutError(f"Timeout waiting for legacy data: {source}") from exc
        finally:
            if self._pending.get(key) is future:
                del self._pending[key]

        elapsed = (loop.time() - started) * 1000
        logger.info("Received %s data in %.0fms", source, elapsed)

        if isinstance(payload, dict) and payload.get("error"):
            raise BridgeRemoteError(str(payload["error"]))
        return payload

    def dispatch(self, message: Message) -> bool:
        """Resolve the pending request ``message`` answers.

        Returns False when nothing was waiting for it (late or unknown).
        """
        kind = message.get("kind")
        future = self._pending.pop(kind, None) if isinstance(kind, str) else None
        if future is None or future.done():
            logger.debug("Dropping unexpected bridge message: %s", kind)
            return False
        future.set_result(message.get("payload"))
        return True
