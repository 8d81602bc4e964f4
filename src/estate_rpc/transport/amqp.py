"""
RabbitMQ broker over aio-pika.

One robust connection and one channel per broker instance. Messages go
through the default exchange (routing key = queue name), are persistent,
and are consumed with manual acknowledgement and prefetch 1.
"""

import asyncio
import logging
from contextlib import contextmanager
from typing import Iterator, Optional

import aio_pika
from aio_pika.abc import AbstractChannel, AbstractIncomingMessage, AbstractQueue, AbstractRobustConnection
from aio_pika.exceptions import AMQPConnectionError, AMQPException, ChannelClosed, ConnectionClosed

from estate_rpc.errors import BrokerError, BrokerUnavailableError
from estate_rpc.transport.broker import Broker, Callback, Delivery

logger = logging.getLogger(__name__)


@contextmanager
def _broker_errors(operation: str) -> Iterator[None]:
    try:
        yield
    except (AMQPConnectionError, ConnectionClosed, ConnectionError, OSError, asyncio.TimeoutError) as e:
        raise BrokerUnavailableError(f"{operation} failed: {e}") from e
    except (ChannelClosed, AMQPException) as e:
        raise BrokerError(f"{operation} failed: {e}") from e


class AmqpBroker(Broker):
    def __init__(self, url: str, prefetch_count: int = 1, connect_timeout: float = 5.0):
        self._url = url
        self._prefetch_count = prefetch_count
        self._connect_timeout = connect_timeout
        self._connection: Optional[AbstractRobustConnection] = None
        self._channel: Optional[AbstractChannel] = None
        self._queues: dict[str, AbstractQueue] = {}
        self._consumers: dict[str, AbstractQueue] = {}

    @property
    def connected(self) -> bool:
        return (
            self._connection is not None and not self._connection.is_closed
            and self._channel is not None and not self._channel.is_closed
        )

    def _require_channel(self) -> AbstractChannel:
        if not self.connected:
            raise BrokerUnavailableError("Not connected to broker")
        return self._channel  # type: ignore[return-value]

    async def connect(self) -> None:
        """Open the connection, or reopen the channel on a live one.

        A robust connection that dropped keeps reconnecting on its own; until
        it is back this raises BrokerUnavailableError at once instead of
        opening a second connection.
        """
        if self.connected:
            return
        if self._connection is not None:
            if self._connection.is_closed:
                raise BrokerUnavailableError("Broker connection lost, reconnecting")
            with _broker_errors("open channel"):
                await self._open_channel()
            logger.info("Reopened broker channel")
            return
        with _broker_errors("connect"):
            self._connection = await aio_pika.connect_robust(self._url, timeout=self._connect_timeout)
            await self._open_channel()
        logger.info("Connected to broker (prefetch=%d)", self._prefetch_count)

    async def _open_channel(self) -> None:
        self._queues.clear()
        self._consumers.clear()
        self._channel = await self._connection.channel()  # type: ignore[union-attr]
        await self._channel.set_qos(prefetch_count=self._prefetch_count)

    async def close(self) -> None:
        self._queues.clear()
        self._consumers.clear()
        if self._connection is not None:
            # also stops a robust connection that is still reconnecting
            await self._connection.close()
        self._connection = None
        self._channel = None

    async def declare_queue(self, name: str = "", *, durable: bool = True,
                            exclusive: bool = False, auto_delete: bool = False) -> str:
        channel = self._require_channel()
        with _broker_errors(f"declare queue {name or '<server-named>'}"):
            queue = await channel.declare_queue(
                name or None, durable=durable, exclusive=exclusive, auto_delete=auto_delete,
            )
        self._queues[queue.name] = queue
        return queue.name

    async def delete_queue(self, name: str) -> None:
        channel = self._require_channel()
        self._queues.pop(name, None)
        with _broker_errors(f"delete queue {name}"):
            await channel.queue_delete(name)

    async def publish(self, queue: str, body: bytes, *, correlation_id: Optional[str] = None,
                      reply_to: Optional[str] = None) -> None:
        channel = self._require_channel()
        message = aio_pika.Message(
            body,
            content_type="application/json",
            correlation_id=correlation_id,
            reply_to=reply_to,
            delivery_mode=aio_pika.DeliveryMode.PERSISTENT,
        )
        with _broker_errors(f"publish to {queue}"):
            await channel.default_exchange.publish(message, routing_key=queue)

    async def consume(self, queue: str, callback: Callback) -> str:
        channel = self._require_channel()
        target = self._queues.get(queue)
        with _broker_errors(f"consume {queue}"):
            if target is None:
                target = await channel.get_queue(queue, ensure=True)
                self._queues[queue] = target

            async def on_message(message: AbstractIncomingMessage) -> None:
                await callback(Delivery(
                    queue,
                    message.body,
                    correlation_id=message.correlation_id,
                    reply_to=message.reply_to,
                    delivery_tag=message.delivery_tag,
                    redelivered=bool(message.redelivered),
                    raw=message,
                ))

            tag = await target.consume(on_message, no_ack=False)
        self._consumers[tag] = target
        return tag

    async def cancel(self, consumer_tag: str) -> None:
        target = self._consumers.pop(consumer_tag, None)
        if target is None:
            return
        self._require_channel()
        with _broker_errors(f"cancel consumer {consumer_tag}"):
            await target.cancel(consumer_tag)

    async def ack(self, delivery: Delivery) -> None:
        if delivery.raw is None:
            raise BrokerError(f"Delivery {delivery.delivery_tag} did not come from this broker")
        with _broker_errors(f"ack {delivery.delivery_tag}"):
            await delivery.raw.ack()
