"""
In-process broker with AMQP-like delivery semantics.

Used by the test-suite and for running a gateway and its workers inside one
process. Each consumer is an asyncio task that hands over one message at a
time and waits for its callback before taking the next (prefetch 1).
Messages stay unacknowledged until ``ack()``; ``recover()`` puts them back
as redelivered, which is what a broker does when a consumer's connection
drops.
"""

import asyncio
import itertools
import logging
import uuid
from typing import Optional

from estate_rpc.errors import BrokerError, BrokerUnavailableError
from estate_rpc.transport.broker import Broker, Callback, Delivery

logger = logging.getLogger(__name__)


class _MemoryQueue:
    def __init__(self, name: str, durable: bool, exclusive: bool, auto_delete: bool):
        self.name = name
        self.params = (durable, exclusive, auto_delete)
        self.auto_delete = auto_delete
        self.ready: asyncio.Queue[Delivery] = asyncio.Queue()
        self.unacked: dict[int, Delivery] = {}
        self.consumers: dict[str, asyncio.Task] = {}


class InMemoryBroker(Broker):
    def __init__(self) -> None:
        self.available = True
        self.queues: dict[str, _MemoryQueue] = {}
        self.published: list[Delivery] = []
        self.acked: list[int] = []
        self._connected = False
        self._tags = itertools.count(1)
        self._consumer_ids = itertools.count(1)
        self._consumer_queues: dict[str, str] = {}

    @property
    def connected(self) -> bool:
        return self._connected and self.available

    def _check(self) -> None:
        if not self.available:
            self._connected = False
            raise BrokerUnavailableError("in-memory broker is unavailable")
        if not self._connected:
            raise BrokerError("not connected")

    async def connect(self) -> None:
        if not self.available:
            raise BrokerUnavailableError("in-memory broker is unavailable")
        self._connected = True

    async def close(self) -> None:
        for tag in list(self._consumer_queues):
            await self._stop_consumer(tag)
        self._connected = False

    async def declare_queue(self, name: str = "", *, durable: bool = True,
                            exclusive: bool = False, auto_delete: bool = False) -> str:
        self._check()
        name = name or f"amq.gen-{uuid.uuid4().hex}"
        existing = self.queues.get(name)
        params = (durable, exclusive, auto_delete)
        if existing is not None:
            if existing.params != params:
                raise BrokerError(f"PRECONDITION_FAILED - inequivalent arguments for queue {name!r}")
            return name
        self.queues[name] = _MemoryQueue(name, durable, exclusive, auto_delete)
        return name

    async def delete_queue(self, name: str) -> None:
        self._check()
        queue = self.queues.get(name)
        if queue is None:
            return
        for tag in list(queue.consumers):
            await self._stop_consumer(tag)
        self.queues.pop(name, None)

    async def publish(self, queue: str, body: bytes, *, correlation_id: Optional[str] = None,
                      reply_to: Optional[str] = None) -> None:
        self._check()
        delivery = Delivery(queue, body, correlation_id=correlation_id, reply_to=reply_to)
        self.published.append(delivery)
        target = self.queues.get(queue)
        if target is None:
            logger.debug("Dropping unroutable message for %s", queue)
            return
        self._enqueue(target, delivery)

    def _enqueue(self, queue: _MemoryQueue, delivery: Delivery, redelivered: bool = False) -> None:
        queue.ready.put_nowait(Delivery(
            queue.name, delivery.body,
            correlation_id=delivery.correlation_id,
            reply_to=delivery.reply_to,
            delivery_tag=next(self._tags),
            redelivered=redelivered,
        ))

    async def consume(self, queue: str, callback: Callback) -> str:
        self._check()
        target = self.queues.get(queue)
        if target is None:
            raise BrokerError(f"NOT_FOUND - no queue {queue!r}")
        tag = f"ctag-{next(self._consumer_ids)}"
        target.consumers[tag] = asyncio.create_task(self._consume_loop(target, callback), name=tag)
        self._consumer_queues[tag] = queue
        return tag

    async def _consume_loop(self, queue: _MemoryQueue, callback: Callback) -> None:
        while True:
            delivery = await queue.ready.get()
            queue.unacked[delivery.delivery_tag] = delivery  # type: ignore[index]
            try:
                await callback(delivery)
            except Exception:
                logger.exception("Consumer callback failed on %s; message left unacknowledged", queue.name)

    async def cancel(self, consumer_tag: str) -> None:
        self._check()
        queue_name = self._consumer_queues.get(consumer_tag)
        await self._stop_consumer(consumer_tag)
        queue = self.queues.get(queue_name) if queue_name else None
        if queue is not None and queue.auto_delete and not queue.consumers:
            del self.queues[queue.name]

    async def _stop_consumer(self, consumer_tag: str) -> None:
        queue_name = self._consumer_queues.pop(consumer_tag, None)
        queue = self.queues.get(queue_name) if queue_name else None
        task = queue.consumers.pop(consumer_tag, None) if queue else None
        if task is None or task is asyncio.current_task():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def ack(self, delivery: Delivery) -> None:
        self._check()
        queue = self.queues.get(delivery.queue)
        if queue is None or queue.unacked.pop(delivery.delivery_tag, None) is None:  # type: ignore[arg-type]
            raise BrokerError(f"PRECONDITION_FAILED - unknown delivery tag {delivery.delivery_tag}")
        self.acked.append(delivery.delivery_tag)  # type: ignore[arg-type]

    async def recover(self, queue: str) -> int:
        """Requeue every unacknowledged message on ``queue`` as redelivered."""
        target = self.queues.get(queue)
        if target is None:
            return 0
        pending = list(target.unacked.values())
        target.unacked.clear()
        for delivery in pending:
            self._enqueue(target, delivery, redelivered=True)
        return len(pending)

    def depth(self, queue: str) -> int:
        target = self.queues.get(queue)
        return target.ready.qsize() if target else 0
