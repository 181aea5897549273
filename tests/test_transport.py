import asyncio

import pytest

from rtclink.errors import TransportError
from rtclink.transport.memory import InMemoryBroker, LocalTransport
from rtclink.transport.websocket import WebSocketTransport


def test_broker_filters_and_history() -> None:
    broker = InMemoryBroker()
    received = []
    token = broker.subscribe("dl/PK/+/data", lambda topic, payload: received.append((topic, payload)))

    assert broker.publish("dl/PK/DEV/data", "one") == 1
    assert broker.publish("dl/PK/DEV/other", "two") == 0
    broker.unsubscribe(token)
    assert broker.publish("dl/PK/DEV/data", "three") == 0

    assert received == [("dl/PK/DEV/data", "one")]
    assert broker.published_on("dl/PK/DEV/data") == ["one", "three"]


def test_local_transport_delivers_on_the_loop() -> None:
    async def scenario():
        broker = InMemoryBroker()
        sender = LocalTransport(broker, "sender")
        receiver = LocalTransport(broker, "receiver")
        inbox = []
        receiver.on_message = lambda topic, payload: inbox.append((topic, payload))
        await sender.connect()
        await receiver.connect()
        receiver.subscribe("a/b")
        receiver.subscribe("a/b")
        sender.publish("a/b", "hi")
        immediately = list(inbox)
        await asyncio.sleep(0)
        subscriptions = receiver.subscriptions
        await receiver.close()
        sender.publish("a/b", "late")
        await asyncio.sleep(0)
        return immediately, inbox, subscriptions, receiver.subscriptions

    immediately, inbox, subscriptions, after_close = asyncio.run(scenario())

    assert immediately == []
    assert inbox == [("a/b", "hi")]
    assert subscriptions == {"a/b"}
    assert after_close == set()


def test_handler_failure_is_contained() -> None:
    async def scenario():
        broker = InMemoryBroker()
        transport = LocalTransport(broker, "t")
        await transport.connect()

        def explode(topic, payload):
            raise ValueError("bad handler")

        transport.on_message = explode
        transport.subscribe("x")
        broker.publish("x", "payload")
        await asyncio.sleep(0)
        return transport.connected

    assert asyncio.run(scenario()) is True


def test_operations_require_a_connection() -> None:
    local = LocalTransport(InMemoryBroker(), "local")
    remote = WebSocketTransport("ws://127.0.0.1:1/broker", "remote")

    for transport in (local, remote):
        with pytest.raises(TransportError):
            transport.publish("a/b", "x")
        with pytest.raises(TransportError):
            transport.subscribe("a/b")
