"""
Worker dispatcher: consumes one request queue and routes by action.

Per message:
  RECEIVED -> PARSED -> DISPATCHED -> REPLIED -> ACKED
  RECEIVED -> REJECTED (malformed; still replied and acked)
  DISPATCHED -> FAILED -> REPLIED (handler raised)

The ack comes last, so a worker that dies mid-handler leaves the message
unacknowledged and the broker redelivers it. Handlers may therefore run
more than once for the same request.
"""

import asyncio
import enum
import inspect
import logging
from typing import Any, Optional

from estate_rpc.errors import BrokerError, HandlerResultError
from estate_rpc.models.envelope import INVALID_REQUEST, error_envelope, unknown_action
from estate_rpc.registry import ActionTable, Handler
from estate_rpc.transport.broker import Broker, Delivery
from estate_rpc.transport.envelope import decode_request, encode_response, validate_response

logger = logging.getLogger(__name__)


class MessageState(str, enum.Enum):
    RECEIVED = "received"
    PARSED = "parsed"
    REJECTED = "rejected"
    DISPATCHED = "dispatched"
    FAILED = "failed"
    REPLIED = "replied"
    ACKED = "acked"


class Dispatcher:
    def __init__(self, broker: Broker, queue: str, table: ActionTable):
        self._broker = broker
        self.queue = queue
        self.table = table
        self._consumer_tag: Optional[str] = None
        self._stopped = asyncio.Event()

    async def handle(self, delivery: Delivery) -> list[MessageState]:
        """Process one delivery and return the states it went through."""
        trace = [MessageState.RECEIVED]
        request = decode_request(delivery.body)

        if request is None:
            logger.warning("Rejected malformed message on %s (delivery %s)", self.queue, delivery.delivery_tag)
            trace.append(MessageState.REJECTED)
            body = encode_response(error_envelope(INVALID_REQUEST))
        else:
            trace.append(MessageState.PARSED)
            handler = self.table.get(request.action)
            if handler is None:
                logger.warning("Unknown action %r on %s", request.action, self.queue)
                body = encode_response(unknown_action(request.action))
            else:
                trace.append(MessageState.DISPATCHED)
                logger.info("Dispatching %s [correlation_id=%s, redelivered=%s]",
                            request.action, delivery.correlation_id, delivery.redelivered)
                try:
                    result = await self._invoke(handler, request.payload)
                    body = _reply_body(request.action, result)
                except Exception as e:
                    logger.exception("Handler for %s failed", request.action)
                    trace.append(MessageState.FAILED)
                    body = encode_response(error_envelope(str(e) or e.__class__.__name__))

        if delivery.reply_to and delivery.correlation_id:
            await self._broker.publish(delivery.reply_to, body, correlation_id=delivery.correlation_id)
            trace.append(MessageState.REPLIED)
        await self._broker.ack(delivery)
        trace.append(MessageState.ACKED)
        return trace

    @staticmethod
    async def _invoke(handler: Handler, payload: dict[str, Any]) -> Any:
        if inspect.iscoroutinefunction(handler):
            return await handler(payload)
        result = await asyncio.to_thread(handler, payload)
        if inspect.isawaitable(result):
            result = await result
        return result

    async def _on_delivery(self, delivery: Delivery) -> None:
        try:
            await self.handle(delivery)
        except BrokerError as e:
            logger.error("Could not finish delivery %s on %s, leaving it for redelivery: %s",
                         delivery.delivery_tag, self.queue, e)

    async def start(self) -> None:
        await self._broker.connect()
        await self._broker.declare_queue(self.queue, durable=True)
        self._consumer_tag = await self._broker.consume(self.queue, self._on_delivery)
        logger.info("Dispatcher listening on %s (%d actions)", self.queue, len(self.table))

    async def run(self) -> None:
        """Consume until stop() is called."""
        self._stopped.clear()
        await self.start()
        try:
            await self._stopped.wait()
        finally:
            if self._consumer_tag is not None and self._broker.connected:
                await self._broker.cancel(self._consumer_tag)
            self._consumer_tag = None
            logger.info("Dispatcher on %s stopped", self.queue)

    def stop(self) -> None:
        self._stopped.set()


def _reply_body(action: str, result: Any) -> bytes:
    try:
        return encode_response(validate_response(result))
    except (TypeError, ValueError) as e:
        logger.error("Handler for %s returned an invalid response: %s", action, e)
        raise HandlerResultError("Invalid handler response") from e
