"""
Reply router: matches reply messages to waiting calls by correlation id.
"""

import asyncio
import logging
from typing import Any

from estate_rpc.errors import BrokerError
from estate_rpc.models.envelope import INVALID_RESPONSE, error_envelope
from estate_rpc.transport.broker import Broker, Delivery
from estate_rpc.transport.envelope import decode_response

logger = logging.getLogger(__name__)


class ReplyRouter:
    """Pending-call table plus the consumer callback for reply queues.

    Each entry is a single-use future keyed by correlation id. Entries are
    removed when resolved or discarded, so the table only ever holds calls
    that are still waiting.
    """

    def __init__(self, broker: Broker):
        self._broker = broker
        self._pending: dict[str, asyncio.Future[dict[str, Any]]] = {}

    def __len__(self) -> int:
        return len(self._pending)

    def __contains__(self, correlation_id: object) -> bool:
        return correlation_id in self._pending

    def register(self, correlation_id: str) -> "asyncio.Future[dict[str, Any]]":
        if correlation_id in self._pending:
            raise ValueError(f"correlation id already pending: {correlation_id}")
        future: asyncio.Future[dict[str, Any]] = asyncio.get_running_loop().create_future()
        self._pending[correlation_id] = future
        return future

    def discard(self, correlation_id: str) -> None:
        future = self._pending.pop(correlation_id, None)
        if future is not None and not future.done():
            future.cancel()

    def resolve(self, correlation_id: str, body: dict[str, Any]) -> bool:
        """Hand ``body`` to the call waiting on ``correlation_id``. False if nobody is."""
        future = self._pending.pop(correlation_id, None)
        if future is None or future.done():
            return False
        future.set_result(body)
        return True

    async def on_delivery(self, delivery: Delivery) -> None:
        try:
            await self._broker.ack(delivery)
        except BrokerError as e:
            logger.debug("Could not ack reply %s: %s", delivery.delivery_tag, e)

        correlation_id = delivery.correlation_id
        if not correlation_id or correlation_id not in self._pending:
            # late reply after a timeout, or a duplicate
            logger.debug("Dropping reply with unmatched correlation id %r", correlation_id)
            return

        body = decode_response(delivery.body)
        if body is None:
            logger.warning("Reply %s is not a response envelope", correlation_id)
            body = error_envelope(INVALID_RESPONSE)
        if not self.resolve(correlation_id, body):
            logger.debug("Reply %s arrived after its call finished", correlation_id)
