"""AmqpBroker connection handling, with aio-pika's connect patched out."""

import pytest

from estate_rpc.errors import BrokerUnavailableError
from estate_rpc.transport import amqp
from estate_rpc.transport.amqp import AmqpBroker


class FakeChannel:
    def __init__(self):
        self.is_closed = False
        self.prefetch = None

    async def set_qos(self, prefetch_count):
        self.prefetch = prefetch_count


class FakeConnection:
    def __init__(self):
        self.is_closed = False
        self.channels = []
        self.close_calls = 0

    async def channel(self):
        self.channels.append(FakeChannel())
        return self.channels[-1]

    async def close(self):
        self.close_calls += 1
        self.is_closed = True


@pytest.fixture
def connections(monkeypatch):
    opened = []

    async def connect_robust(url, timeout=None):
        opened.append(FakeConnection())
        return opened[-1]

    monkeypatch.setattr(amqp.aio_pika, "connect_robust", connect_robust)
    return opened


@pytest.mark.asyncio
async def test_connect_sets_prefetch(connections):
    broker = AmqpBroker("amqp://test/")
    await broker.connect()
    await broker.connect()
    assert broker.connected
    assert len(connections) == 1
    assert connections[0].channels[0].prefetch == 1


@pytest.mark.asyncio
async def test_dropped_connection_fails_fast_without_second_connection(connections):
    broker = AmqpBroker("amqp://test/")
    await broker.connect()
    connections[0].is_closed = True  # robust connection is reconnecting

    assert not broker.connected
    with pytest.raises(BrokerUnavailableError):
        await broker.connect()
    assert len(connections) == 1

    await broker.close()
    assert connections[0].close_calls == 1


@pytest.mark.asyncio
async def test_closed_channel_reopened_on_live_connection(connections):
    broker = AmqpBroker("amqp://test/")
    await broker.connect()
    connections[0].channels[0].is_closed = True

    await broker.connect()
    assert broker.connected
    assert len(connections) == 1
    assert len(connections[0].channels) == 2
    assert connections[0].channels[1].prefetch == 1


@pytest.mark.asyncio
async def test_reconnect_after_close(connections):
    broker = AmqpBroker("amqp://test/")
    await broker.connect()
    await broker.close()
    assert not broker.connected
    await broker.connect()
    assert len(connections) == 2
    assert connections[0].close_calls == 1
