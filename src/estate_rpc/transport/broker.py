"""
Broker contract used by the RPC client and the worker dispatcher.

The core needs exactly: declare a queue, publish, consume, delete a queue,
and acknowledge a delivery. Connection lifecycle and consumer cancellation
round it out.
"""

from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Optional


class Delivery:
    """One message handed to a consumer callback."""

    __slots__ = ("queue", "body", "correlation_id", "reply_to", "delivery_tag", "redelivered", "raw")

    def __init__(self, queue: str, body: bytes, correlation_id: Optional[str] = None,
                 reply_to: Optional[str] = None, delivery_tag: Optional[int] = None,
                 redelivered: bool = False, raw: Any = None):
        self.queue = queue
        self.body = body
        self.correlation_id = correlation_id
        self.reply_to = reply_to
        self.delivery_tag = delivery_tag
        self.redelivered = redelivered
        self.raw = raw

    def __repr__(self) -> str:
        return (f"Delivery(queue={self.queue!r}, correlation_id={self.correlation_id!r}, "
                f"delivery_tag={self.delivery_tag!r}, redelivered={self.redelivered!r})")


Callback = Callable[[Delivery], Awaitable[None]]


class Broker(ABC):
    @property
    @abstractmethod
    def connected(self) -> bool: ...

    @abstractmethod
    async def connect(self) -> None:
        """Open the connection. Raises BrokerUnavailableError when unreachable."""

    @abstractmethod
    async def close(self) -> None: ...

    @abstractmethod
    async def declare_queue(self, name: str = "", *, durable: bool = True,
                            exclusive: bool = False, auto_delete: bool = False) -> str:
        """Declare ``name`` (server-named when empty) and return the queue name."""

    @abstractmethod
    async def delete_queue(self, name: str) -> None: ...

    @abstractmethod
    async def publish(self, queue: str, body: bytes, *, correlation_id: Optional[str] = None,
                      reply_to: Optional[str] = None) -> None: ...

    @abstractmethod
    async def consume(self, queue: str, callback: Callback) -> str:
        """Start delivering messages from ``queue`` to ``callback``. Returns a consumer tag."""

    @abstractmethod
    async def cancel(self, consumer_tag: str) -> None: ...

    @abstractmethod
    async def ack(self, delivery: Delivery) -> None: ...
