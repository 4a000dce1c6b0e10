from __future__ import annotations

import asyncio
from unittest import TestCase

from asgiref.sync import async_to_sync

from feedlink.adapters.connection import ConnectionManager
from feedlink.adapters.duplex import DuplexAdapter, PullState, PushState
from feedlink.adapters.tests.fakes import FakeClient, MockBroker, make_adapter, make_config, settle
from feedlink.errors import ConsumerBusyError
from feedlink.subscribers.registry import StreamRegistry

SUB_TOPIC = "io_acme/feeds/pump-1/json"
PUB_TOPIC = "io_acme/feeds/pump-1"


class DuplexAdapterPullTests(TestCase):
    def test_reads_in_arrival_order(self) -> None:
        adapter, client = make_adapter()
        payloads = [f"m{i}".encode() for i in range(50)]

        async def scenario() -> list:
            adapter.connect()
            client.fire_connect()
            await settle()
            for payload in payloads:
                client.fire_message(SUB_TOPIC, payload)
            await settle()
            return [await adapter.read() for _ in payloads]

        self.assertEqual(async_to_sync(scenario)(), payloads)

    def test_inbound_growth_never_drops(self) -> None:
        adapter, client = make_adapter()
        total = 10_000

        async def scenario() -> list:
            adapter.connect()
            client.fire_connect()
            await settle()
            for i in range(total):
                client.fire_message(SUB_TOPIC, str(i).encode())
            await settle()
            self.assertEqual(len(adapter.connection.buffer), total)
            return [await adapter.read() for _ in range(total)]

        received = async_to_sync(scenario)()

        self.assertEqual(len(received), total)
        self.assertEqual(received[0], b"0")
        self.assertEqual(received[-1], str(total - 1).encode())
        self.assertEqual(len(adapter.connection.buffer), 0)

    def test_read_waits_for_connection(self) -> None:
        adapter, client = make_adapter()

        async def scenario() -> bytes:
            adapter.connect()
            task = asyncio.create_task(adapter.read())
            await settle()
            self.assertFalse(task.done())
            self.assertIs(adapter.pull_state, PullState.AWAITING_CONNECTION)
            client.fire_connect()
            await settle()
            self.assertFalse(task.done())
            self.assertIs(adapter.pull_state, PullState.AWAITING_MESSAGE)
            client.fire_message(SUB_TOPIC, b"hello")
            await settle()
            self.assertTrue(task.done())
            self.assertIs(adapter.pull_state, PullState.READY)
            return task.result()

        self.assertEqual(async_to_sync(scenario)(), b"hello")

    def test_read_pauses_while_offline(self) -> None:
        adapter, client = make_adapter()

        async def scenario() -> bytes:
            adapter.connect()
            client.fire_connect()
            await settle()
            client.fire_message(SUB_TOPIC, b"buffered")
            await settle()
            client.fire_drop()
            await settle()
            task = asyncio.create_task(adapter.read())
            await settle()
            self.assertFalse(task.done())
            self.assertIs(adapter.pull_state, PullState.AWAITING_CONNECTION)
            client.fire_connect()
            await settle()
            self.assertTrue(task.done())
            return task.result()

        self.assertEqual(async_to_sync(scenario)(), b"buffered")

    def test_repeated_waits_do_not_leak_observers(self) -> None:
        adapter, client = make_adapter()
        events = adapter.connection.events

        async def scenario() -> None:
            adapter.connect()
            client.fire_connect()
            await settle()
            for i in range(20):
                task = asyncio.create_task(adapter.read())
                await settle()
                client.fire_message(SUB_TOPIC, str(i).encode())
                await settle()
                self.assertTrue(task.done())
            # 仅剩转发给适配器观察者的常驻监听
            self.assertEqual(events.listener_count("message"), 1)
            self.assertEqual(events.listener_count("connected"), 1)

        async_to_sync(scenario)()

    def test_cancelled_read_removes_its_observer(self) -> None:
        adapter, client = make_adapter()
        events = adapter.connection.events

        async def scenario() -> None:
            adapter.connect()
            task = asyncio.create_task(adapter.read())
            await settle()
            self.assertEqual(events.listener_count("connected"), 2)
            task.cancel()
            await settle()
            self.assertEqual(events.listener_count("connected"), 1)

        async_to_sync(scenario)()

    def test_rejected_chunk_is_requeued_and_redelivered(self) -> None:
        adapter, client = make_adapter()
        delivered = []
        attempts = {"count": 0}

        def consumer(chunk: bytes) -> None:
            attempts["count"] += 1
            if attempts["count"] == 1:
                raise ConsumerBusyError("not now")
            delivered.append(chunk)

        async def scenario() -> None:
            adapter.connect()
            client.fire_connect()
            await settle()
            client.fire_message(SUB_TOPIC, b"first")
            await settle()
            task = asyncio.create_task(adapter.pull(consumer))
            await settle()
            self.assertFalse(task.done())
            self.assertIs(adapter.pull_state, PullState.AWAITING_MESSAGE)
            self.assertEqual(len(adapter.connection.buffer), 1)
            client.fire_message(SUB_TOPIC, b"second")
            await settle()
            self.assertTrue(task.done())
            await adapter.pull(consumer)

        async_to_sync(scenario)()

        self.assertEqual(delivered, [b"first", b"second"])

    def test_async_iteration(self) -> None:
        adapter, client = make_adapter()

        async def scenario() -> list:
            adapter.connect()
            client.fire_connect()
            await settle()
            for payload in (b"a", b"b", b"c"):
                client.fire_message(SUB_TOPIC, payload)
            await settle()
            received = []
            async for chunk in adapter:
                received.append(chunk)
                if len(received) == 3:
                    break
            return received

        self.assertEqual(async_to_sync(scenario)(), [b"a", b"b", b"c"])

    def test_pipe_to_async_consumer(self) -> None:
        adapter, client = make_adapter()

        async def scenario() -> list:
            sink: asyncio.Queue = asyncio.Queue()
            adapter.connect()
            client.fire_connect()
            await settle()
            task = asyncio.create_task(adapter.pipe_to(sink.put))
            client.fire_message(SUB_TOPIC, b"x")
            client.fire_message(SUB_TOPIC, b"y")
            received = [await sink.get(), await sink.get()]
            task.cancel()
            await settle()
            return received

        self.assertEqual(async_to_sync(scenario)(), [b"x", b"y"])

    def test_adapter_observers_receive_forwarded_notifications(self) -> None:
        adapter, client = make_adapter()
        seen = []
        adapter.on("connected", lambda: seen.append("connected"))
        adapter.on("message", lambda payload: seen.append(payload))
        adapter.on("error", lambda exc: seen.append(type(exc).__name__))

        async def scenario() -> None:
            adapter.connect()
            client.fire_connect()
            await settle()
            client.fire_message(SUB_TOPIC, b"m")
            client.fire_connect_fail()
            await settle()

        async_to_sync(scenario)()

        self.assertEqual(seen, ["connected", b"m", "BrokerConnectionError"])


class DuplexAdapterPushTests(TestCase):
    def test_scenario_topics_and_trimmed_payload(self) -> None:
        adapter, client = make_adapter(make_config(identity="io_acme", channel_type="feeds", stream_id="pump-1"))

        async def scenario() -> None:
            adapter.connect()
            client.fire_connect()
            await settle()
            await adapter.write(b"on\n")

        async_to_sync(scenario)()

        self.assertEqual(client.subscribe_calls, [SUB_TOPIC])
        self.assertEqual(client.published, [(PUB_TOPIC, "on")])

    def test_write_waits_for_connection(self) -> None:
        adapter, client = make_adapter()

        async def scenario() -> None:
            adapter.connect()
            first = asyncio.create_task(adapter.write("  one "))
            second = asyncio.create_task(adapter.write("two\r\n"))
            await settle()
            self.assertFalse(first.done())
            self.assertIs(adapter.push_state, PushState.AWAITING_CONNECTION)
            self.assertEqual(client.published, [])
            client.fire_connect()
            await settle()
            self.assertTrue(first.done())
            self.assertTrue(second.done())
            self.assertIs(adapter.push_state, PushState.READY)

        async_to_sync(scenario)()

        self.assertEqual(client.published, [(PUB_TOPIC, "one"), (PUB_TOPIC, "two")])

    def test_write_does_not_wait_for_acknowledgement(self) -> None:
        # FakePublishInfo.wait_for_publish fails the test if it is ever called
        adapter, client = make_adapter()

        async def scenario() -> None:
            adapter.connect()
            client.fire_connect()
            await settle()
            await asyncio.wait_for(adapter.write("ping"), timeout=1)

        async_to_sync(scenario)()

        self.assertEqual(client.published, [(PUB_TOPIC, "ping")])

    def test_write_failure_is_not_raised(self) -> None:
        adapter, client = make_adapter(client=FakeClient(publish_rc=4))
        errors = []
        adapter.on("error", errors.append)

        async def scenario() -> None:
            adapter.connect()
            client.fire_connect()
            await settle()
            await adapter.write("on")
            await settle()

        async_to_sync(scenario)()

        self.assertEqual(len(errors), 1)

    def test_loopback_through_mock_broker_delivers_once(self) -> None:
        broker = MockBroker()
        adapter, client = make_adapter(client=FakeClient(broker=broker))

        async def scenario() -> bytes:
            adapter.connect()
            client.fire_connect()
            await settle()
            for _ in range(3):
                client.fire_drop()
                client.fire_connect()
                await settle()
            broker.publish(SUB_TOPIC, b"reply")
            await settle()
            self.assertEqual(len(adapter.connection.buffer), 1)
            return await adapter.read()

        self.assertEqual(async_to_sync(scenario)(), b"reply")


class DuplexAdapterConstructionTests(TestCase):
    def _make_connection(self, **overrides) -> ConnectionManager:
        return ConnectionManager(
            make_config(**overrides),
            client_factory=lambda _config: FakeClient(),
            registry=StreamRegistry(),
        )

    def test_config_taken_from_connection(self) -> None:
        connection = self._make_connection(stream_id="pump-7")
        adapter = DuplexAdapter(connection=connection)

        self.assertIs(adapter.connection, connection)
        self.assertEqual(adapter.connection.publish_topic, "io_acme/feeds/pump-7")

    def test_matching_config_and_connection_accepted(self) -> None:
        connection = self._make_connection()
        adapter = DuplexAdapter(make_config(), connection=connection)

        self.assertIs(adapter.connection, connection)

    def test_mismatched_config_rejected(self) -> None:
        connection = self._make_connection(stream_id="pump-1")

        with self.assertRaises(ValueError):
            DuplexAdapter(make_config(stream_id="pump-2"), connection=connection)

    def test_connection_options_with_connection_rejected(self) -> None:
        connection = self._make_connection()

        with self.assertRaises(TypeError):
            DuplexAdapter(connection=connection, registry=StreamRegistry())

    def test_config_or_connection_required(self) -> None:
        with self.assertRaises(ValueError):
            DuplexAdapter()
