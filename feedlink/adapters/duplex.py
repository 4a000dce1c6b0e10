"""Duplex adapter: MQTT topic pair exposed as a pull/push byte stream."""

from __future__ import annotations

import asyncio
import inspect
from enum import Enum
from typing import Any, AsyncIterator, Callable, Optional, Union

from feedlink.adapters.base import StreamAdapter
from feedlink.adapters.connection import ConnectionManager, ConnectionState
from feedlink.adapters.events import EventHub, Listener
from feedlink.services.stream_config import StreamConfig
from feedlink.telemetry.logging import get_logger

Consumer = Callable[[bytes], Any]

FORWARDED_EVENTS = ("connected", "error", "message")


class PullState(str, Enum):
    READY = "ready"
    AWAITING_CONNECTION = "awaiting_connection"
    AWAITING_MESSAGE = "awaiting_message"


class PushState(str, Enum):
    READY = "ready"
    AWAITING_CONNECTION = "awaiting_connection"


class DuplexAdapter(StreamAdapter):
    """Read side drains the subscribe topic, write side publishes to the publish topic.

    Every wait is a one-shot observer on the connection's notifications and
    every resumption re-checks its guard from the top, since the connection
    may have dropped again before the waiting task runs. Transport failures
    are never raised from ``read``/``write``; observe them with
    ``adapter.on("error", callback)``.
    """

    def __init__(
        self,
        config: Optional[StreamConfig] = None,
        *,
        connection: Optional[ConnectionManager] = None,
        **connection_options: Any,
    ) -> None:
        if connection is None:
            if config is None:
                raise ValueError("DuplexAdapter needs a config or a connection")
            connection = ConnectionManager(config, **connection_options)
        elif config is not None and config != connection.config:
            raise ValueError("config does not match connection.config")
        elif connection_options:
            raise TypeError("connection options are ignored when a connection is given")
        self._connection = connection
        self._buffer = self._connection.buffer
        self._events = EventHub()
        self._read_lock = asyncio.Lock()
        self.pull_state = PullState.READY
        self.push_state = PushState.READY
        self._logger = get_logger("duplex_adapter", stream_id=connection.stream_id)
        for event in FORWARDED_EVENTS:
            self._connection.events.on(event, self._forward(event))

    def _forward(self, event: str) -> Listener:
        def _emit(*args: Any) -> None:
            self._events.emit(event, *args)

        return _emit

    @property
    def connection(self) -> ConnectionManager:
        return self._connection

    @property
    def state(self) -> ConnectionState:
        return self._connection.state

    @property
    def connected(self) -> bool:
        return self._connection.connected

    def on(self, event: str, callback: Listener) -> None:
        self._events.on(event, callback)

    def once(self, event: str, callback: Listener) -> None:
        self._events.once(event, callback)

    def off(self, event: str, callback: Listener) -> None:
        self._events.off(event, callback)

    def connect(self, stream_id: Optional[str] = None) -> None:
        self._connection.connect(stream_id)
        self._logger = get_logger("duplex_adapter", stream_id=self._connection.stream_id)

    def close(self) -> None:
        self._connection.close()

    async def pull(self, consumer: Consumer) -> None:
        """Deliver the oldest buffered message to ``consumer``.

        A consumer that raises gets the same message again once another
        message has arrived; the message goes back to the front of the buffer
        instead of being dropped.
        """

        async with self._read_lock:
            notifications = self._connection.events
            while True:
                if not self._connection.connected:
                    self.pull_state = PullState.AWAITING_CONNECTION
                    await notifications.wait_for("connected")
                    continue

                message = self._buffer.pop_or_none()
                if message is None:
                    self.pull_state = PullState.AWAITING_MESSAGE
                    await notifications.wait_for("message")
                    continue

                self.pull_state = PullState.READY
                self._record_depth()
                try:
                    result = consumer(message)
                    if inspect.isawaitable(result):
                        await result
                except asyncio.CancelledError:
                    self._requeue(message)
                    raise
                except Exception as exc:
                    self._requeue(message)
                    self._logger.warning(f"consumer rejected chunk, requeued: {exc!r}")
                    self.pull_state = PullState.AWAITING_MESSAGE
                    await notifications.wait_for("message")
                    continue
                return

    async def read(self) -> bytes:
        chunks: list[bytes] = []
        await self.pull(chunks.append)
        return chunks[0]

    async def pipe_to(self, consumer: Consumer) -> None:
        """Pull forever into ``consumer``; stops only when cancelled."""

        while True:
            await self.pull(consumer)

    def __aiter__(self) -> AsyncIterator[bytes]:
        return self.listen()

    async def write(self, data: Union[bytes, str]) -> None:
        """Publish ``data`` stripped of surrounding whitespace as one message.

        Returns as soon as the publish call returns; there is no broker
        acknowledgement to wait for.
        """

        while not self._connection.connected:
            self.push_state = PushState.AWAITING_CONNECTION
            await self._connection.events.wait_for("connected")
        self.push_state = PushState.READY

        if isinstance(data, (bytes, bytearray, memoryview)):
            text = bytes(data).decode("utf-8", errors="replace")
        else:
            text = str(data)
        self._connection.publish(self._connection.publish_topic, text.strip())

    def _requeue(self, message: bytes) -> None:
        self._buffer.push_front(message)
        self._connection.registry.record_requeue(self._connection.stream_id)
        self._record_depth()

    def _record_depth(self) -> None:
        self._connection.registry.record_buffer_depth(self._connection.stream_id, len(self._buffer))


__all__ = ["Consumer", "DuplexAdapter", "PullState", "PushState"]
