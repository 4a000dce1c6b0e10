"""MQTT connection manager: one paho client, one subscription, one stream."""

from __future__ import annotations

import asyncio
import uuid
from enum import Enum
from typing import Callable, Optional, Union

import paho.mqtt.client as mqtt

from feedlink.adapters.buffer import InboundBuffer
from feedlink.adapters.events import EventHub
from feedlink.adapters.topics import publish_topic, subscribe_topic
from feedlink.errors import BrokerConnectionError, FeedlinkError, PublishError, StreamConfigError
from feedlink.services.stream_config import StreamConfig
from feedlink.subscribers.registry import StreamRegistry
from feedlink.subscribers.registry import registry as stream_registry
from feedlink.subscribers.retry import RetryPolicy
from feedlink.telemetry.logging import get_logger

CONNECT_TIMEOUT = 60.0
KEEPALIVE = 3600


def _is_success(reason_code: int | mqtt.ReasonCode) -> bool:
    """Paho/MQTT result code helper (0 is success)."""

    return getattr(reason_code, "value", reason_code) == 0


def _code(reason_code: int | mqtt.ReasonCode) -> int:
    return int(getattr(reason_code, "value", reason_code))


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    OFFLINE = "offline"


ClientFactory = Callable[[StreamConfig], mqtt.Client]


def create_client(config: StreamConfig) -> mqtt.Client:
    """Build a paho client for ``config``; TLS only on the secure port."""

    client = mqtt.Client(
        client_id=f"feedlink-{uuid.uuid4().hex[:12]}",
        protocol=mqtt.MQTTv311,
        callback_api_version=mqtt.CallbackAPIVersion.VERSION2,
    )
    if config.credential_name:
        client.username_pw_set(config.credential_name, config.credential_secret or None)
    if config.secure:
        client.tls_set()
    client.connect_timeout = CONNECT_TIMEOUT
    return client


class ConnectionManager:
    """Owns the broker connection of a single stream.

    Paho callbacks run in its network thread; every one of them is handed to
    the owning asyncio loop with ``call_soon_threadsafe`` and the state
    machine only changes there. Notifications on ``events``:

    - ``connect`` / ``reconnect``: first / later successful connection
    - ``connected``: after either of the above, once subscribed
    - ``offline`` / ``close``: unexpected / requested disconnect
    - ``error``: refused connect, failed connect, failed publish
    - ``message``: a payload was appended to ``buffer``
    """

    def __init__(
        self,
        config: StreamConfig,
        *,
        buffer: Optional[InboundBuffer] = None,
        events: Optional[EventHub] = None,
        client_factory: Optional[ClientFactory] = None,
        retry_policy: Optional[RetryPolicy] = None,
        registry: Optional[StreamRegistry] = None,
    ) -> None:
        self._config = config
        self.buffer = buffer if buffer is not None else InboundBuffer()
        self.events = events if events is not None else EventHub()
        self._client_factory = client_factory or create_client
        self._policy = retry_policy or RetryPolicy()
        self.registry = registry or stream_registry
        self._client: Optional[mqtt.Client] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._state = ConnectionState.DISCONNECTED
        self._generation = 0
        self._established = False
        self._stop_requested = False
        self._logger = self._make_logger()

    def _make_logger(self):
        return get_logger(
            "mqtt_connection",
            stream_id=self._config.stream_id,
            broker=self._config.host,
            port=self._config.port,
        )

    @property
    def config(self) -> StreamConfig:
        return self._config

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def connected(self) -> bool:
        return self._state is ConnectionState.CONNECTED

    @property
    def stream_id(self) -> str:
        return self._config.stream_id

    @property
    def subscribe_topic(self) -> str:
        return subscribe_topic(self._config)

    @property
    def publish_topic(self) -> str:
        return publish_topic(self._config)

    def connect(self, stream_id: Optional[str] = None) -> None:
        """Start connecting; returns without waiting for the broker.

        Must be called from the event loop that consumes the stream. Calling it
        again replaces the paho client and resets the state to CONNECTING.
        ``stream_id`` overrides the configured stream for this connection.
        """

        loop = asyncio.get_running_loop()
        config = self._config.with_stream_id(stream_id)
        if not config.stream_id:
            raise StreamConfigError("stream_id is required to connect")

        if self._client is not None:
            self._logger.info("Replacing MQTT client")
            self._teardown_client()
            self.registry.deactivate(self.stream_id)

        self._config = config
        self._logger = self._make_logger()
        self._loop = loop
        self._generation += 1
        self._established = False
        self._stop_requested = False

        client = self._client_factory(config)
        client.user_data_set(self._generation)
        client.on_connect = self._on_connect
        client.on_connect_fail = self._on_connect_fail
        client.on_disconnect = self._on_disconnect
        client.on_message = self._on_message
        min_delay, max_delay = self._policy.reconnect_window()
        client.reconnect_delay_set(min_delay=min_delay, max_delay=max_delay)

        self._client = client
        self._state = ConnectionState.CONNECTING
        self._logger.debug(f"Establish connection to server {config.host}:{config.port}")
        client.connect_async(config.host, config.port, keepalive=KEEPALIVE)
        client.loop_start()

    def publish(self, topic: str, payload: Union[str, bytes]) -> None:
        """Fire-and-forget qos 0 publish; failures arrive as ``error`` notifications."""

        client = self._client
        if client is None:
            self._report_error_soon(PublishError(topic=topic, code=mqtt.MQTT_ERR_NO_CONN), "publish_failed")
            return
        info = client.publish(topic, payload=payload, qos=0, retain=False)
        if info.rc != mqtt.MQTT_ERR_SUCCESS:
            self._report_error_soon(PublishError(topic=topic, code=info.rc), "publish_failed")
            return
        self.registry.record_publish(self.stream_id)
        self._logger.debug(f"Published to {topic}")

    def close(self) -> None:
        """Stop the network loop and disconnect; there is no drain."""

        if self._client is None:
            return
        self._teardown_client()
        if self._state is not ConnectionState.CONNECTED and self._state is not ConnectionState.DISCONNECTED:
            # 未建立连接时 paho 不一定回调 on_disconnect；丢弃旧连接的迟到回调
            self._generation += 1
            self._handle_disconnect(mqtt.MQTT_ERR_SUCCESS)

    def report_error(self, exc: BaseException, reason: str) -> None:
        self.registry.record_error(self.stream_id, reason)
        self._logger.error(f"MQTT stream error: {exc}")
        self.events.emit("error", exc)

    async def wait_connected(self) -> None:
        while not self.connected:
            await self.events.wait_for("connected")

    def _teardown_client(self) -> None:
        client = self._client
        if client is None:
            return
        self._stop_requested = True
        self._client = None
        client.disconnect()
        client.loop_stop()

    def _report_error_soon(self, exc: FeedlinkError, reason: str) -> None:
        # 不在调用方栈上同步回调 error 监听
        if self._loop is not None and not self._loop.is_closed():
            self._loop.call_soon(self.report_error, exc, reason)
        else:
            self.report_error(exc, reason)

    # paho network thread

    def _on_connect(self, client: mqtt.Client, userdata, flags, reason_code, properties=None) -> None:
        self._call_in_loop(userdata, self._handle_connect, reason_code)

    def _on_connect_fail(self, client: mqtt.Client, userdata) -> None:
        self._call_in_loop(userdata, self._handle_connect_fail)

    def _on_disconnect(self, client: mqtt.Client, userdata, flags, reason_code, properties=None) -> None:
        self._call_in_loop(userdata, self._handle_disconnect, reason_code)

    def _on_message(self, client: mqtt.Client, userdata, msg: mqtt.MQTTMessage) -> None:
        self._call_in_loop(userdata, self._handle_message, bytes(msg.payload))

    def _call_in_loop(self, generation: int, handler: Callable[..., None], *args) -> None:
        loop = self._loop
        if loop is None or loop.is_closed():
            return
        loop.call_soon_threadsafe(self._run_handler, generation, handler, args)

    def _run_handler(self, generation: int, handler: Callable[..., None], args: tuple) -> None:
        if generation != self._generation:
            # 已被替换的旧连接
            return
        handler(*args)

    # event loop thread

    def _handle_connect(self, reason_code) -> None:
        if not _is_success(reason_code):
            code = _code(reason_code)
            self._logger.warning(f"MQTT connect refused; code={code}")
            self.report_error(BrokerConnectionError("MQTT connect refused", code), "connect_refused")
            return

        lifecycle = "reconnect" if self._established else "connect"
        self._established = True
        if self._client is not None:
            # 重连后重新订阅；broker 端对已订阅的 topic 是幂等的
            self._client.subscribe(self.subscribe_topic, qos=0)
        self._state = ConnectionState.CONNECTED
        self.registry.activate(self.stream_id, self.subscribe_topic)
        if lifecycle == "reconnect":
            self.registry.record_reconnect(self.stream_id)
            self._logger.info("MQTT reconnected")
        else:
            self._logger.info("MQTT connected")
        self.events.emit(lifecycle)
        self.events.emit("connected")

    def _handle_connect_fail(self) -> None:
        config = self._config
        self.report_error(
            BrokerConnectionError(f"MQTT connect to {config.host}:{config.port} failed"),
            "connect_failed",
        )

    def _handle_disconnect(self, reason_code) -> None:
        code = _code(reason_code)
        self.registry.deactivate(self.stream_id)
        if self._stop_requested or _is_success(reason_code):
            self._state = ConnectionState.DISCONNECTED
            self._logger.info(f"MQTT closed; code={code}")
            self.events.emit("close")
        else:
            self._state = ConnectionState.OFFLINE
            self._logger.info(f"MQTT offline; code={code}")
            self.events.emit("offline")

    def _handle_message(self, payload: bytes) -> None:
        if not self._established:
            self._logger.warning("MQTT message before connect, dropped")
            return
        self.buffer.push(payload)
        self.registry.record_ingress(self.stream_id)
        self.registry.record_buffer_depth(self.stream_id, len(self.buffer))
        self._logger.debug(f"Received message {payload!r}")
        self.events.emit("message", payload)


__all__ = [
    "CONNECT_TIMEOUT",
    "KEEPALIVE",
    "ClientFactory",
    "ConnectionManager",
    "ConnectionState",
    "create_client",
]
