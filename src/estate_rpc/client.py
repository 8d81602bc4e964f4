"""
AsyncRpcClient / RpcClient: request/reply over the broker.
"""

import asyncio
import logging
import threading
import uuid
from typing import Any, Mapping, Optional

from estate_rpc.config import Settings
from estate_rpc.errors import BrokerError
from estate_rpc.models.actions import topic_for
from estate_rpc.models.envelope import SERVICE_UNAVAILABLE, TIMEOUT, error_envelope
from estate_rpc.router import ReplyRouter
from estate_rpc.transport.broker import Broker
from estate_rpc.transport.envelope import encode_request

logger = logging.getLogger(__name__)


class AsyncRpcClient:
    """Async RPC client (primary).

    Every call gets its own correlation id and its own exclusive,
    auto-deleting reply queue. Calls may run concurrently; operations on the
    shared channel are serialized by a lock while the waits overlap.
    """

    def __init__(
        self,
        broker: Optional[Broker] = None,
        settings: Optional[Settings] = None,
        timeout: Optional[float] = None,
    ):
        self._settings = settings or Settings.load()
        if broker is None:
            from estate_rpc.transport.amqp import AmqpBroker
            broker = AmqpBroker(self._settings.broker_url)
        self._broker = broker
        self._timeout = self._settings.rpc_timeout if timeout is None else timeout
        if self._timeout <= 0:
            raise ValueError("timeout must be positive")
        self._router = ReplyRouter(broker)
        self._lock = asyncio.Lock()

    @property
    def settings(self) -> Settings:
        return self._settings

    @property
    def timeout(self) -> float:
        return self._timeout

    @property
    def broker(self) -> Broker:
        return self._broker

    @property
    def router(self) -> ReplyRouter:
        return self._router

    @property
    def connected(self) -> bool:
        return self._broker.connected

    def queue_for(self, action: str) -> str:
        return self._settings.queues.for_topic(topic_for(action))

    async def connect(self) -> None:
        await self._broker.connect()

    async def close(self) -> None:
        await self._broker.close()

    async def call(
        self,
        action: str,
        payload: Optional[Mapping[str, Any]] = None,
        timeout: Optional[float] = None,
        *,
        queue: Optional[str] = None,
    ) -> dict[str, Any]:
        """Publish ``{action, payload}`` and wait for the matching reply.

        Never raises for broker trouble: an unreachable broker returns the
        "service unavailable" envelope straight away, a missing reply returns
        the "timeout" envelope once ``timeout`` seconds have passed.
        """
        if not isinstance(action, str) or not action:
            raise ValueError("action must be a non-empty string")
        if payload is not None and not isinstance(payload, Mapping):
            raise ValueError("payload must be a mapping")
        timeout = self._timeout if timeout is None else timeout
        if timeout <= 0:
            raise ValueError("timeout must be positive")
        try:
            body = encode_request(action, payload)
        except TypeError as e:
            raise ValueError(f"payload must be JSON-serializable: {e}") from e
        target = queue or self.queue_for(action)
        correlation_id = uuid.uuid4().hex

        reply_queue: Optional[str] = None
        consumer_tag: Optional[str] = None
        # cleanup runs on every exit, cancellation of the caller included
        try:
            try:
                async with self._lock:
                    if not self._broker.connected:
                        await self._broker.connect()
                    reply_queue = await self._broker.declare_queue(
                        "", durable=False, exclusive=True, auto_delete=True,
                    )
                    waiter = self._router.register(correlation_id)
                    consumer_tag = await self._broker.consume(reply_queue, self._router.on_delivery)
                    await self._broker.publish(
                        target, body, correlation_id=correlation_id, reply_to=reply_queue,
                    )
            except BrokerError as e:
                logger.warning("Broker unavailable for %s: %s", action, e)
                return error_envelope(SERVICE_UNAVAILABLE)

            logger.debug("Published %s to %s [correlation_id=%s]", action, target, correlation_id)
            try:
                return await asyncio.wait_for(waiter, timeout=timeout)
            except asyncio.TimeoutError:
                logger.warning("No reply for %s within %.1fs [correlation_id=%s]", action, timeout, correlation_id)
                return error_envelope(TIMEOUT)
        finally:
            self._router.discard(correlation_id)
            await self._teardown(reply_queue, consumer_tag)

    async def _teardown(self, reply_queue: Optional[str], consumer_tag: Optional[str]) -> None:
        if reply_queue is None:
            return
        try:
            async with self._lock:
                if consumer_tag is not None:
                    await self._broker.cancel(consumer_tag)
                await self._broker.delete_queue(reply_queue)
        except BrokerError as e:
            logger.warning("Failed to delete reply queue %s: %s", reply_queue, e)


class RpcClient:
    """Blocking wrapper around AsyncRpcClient.

    Runs an event loop in a background thread, so any number of threads can
    call concurrently.
    """

    def __init__(self, **kwargs: Any):
        self._loop = asyncio.new_event_loop()
        self._thread = threading.Thread(target=self._loop.run_forever, name="estate-rpc-loop", daemon=True)
        self._thread.start()
        self._async = AsyncRpcClient(**kwargs)

    def _run(self, coro: Any) -> Any:
        return asyncio.run_coroutine_threadsafe(coro, self._loop).result()

    @property
    def connected(self) -> bool:
        return self._async.connected

    def connect(self) -> None:
        self._run(self._async.connect())

    def call(
        self,
        action: str,
        payload: Optional[Mapping[str, Any]] = None,
        timeout: Optional[float] = None,
        *,
        queue: Optional[str] = None,
    ) -> dict[str, Any]:
        return self._run(self._async.call(action, payload, timeout, queue=queue))

    def close(self) -> None:
        if self._loop.is_closed():
            return
        self._run(self._async.close())
        self._loop.call_soon_threadsafe(self._loop.stop)
        self._thread.join()
        self._loop.close()

    def __enter__(self) -> "RpcClient":
        return self

    def __exit__(self, *exc: Any) -> None:
        self.close()
