import asyncio
import json
import logging

import pytest

from estate_rpc.router import ReplyRouter
from estate_rpc.transport.broker import Delivery


class _AckRecorder:
    def __init__(self):
        self.acked = []

    async def ack(self, delivery):
        self.acked.append(delivery.delivery_tag)


def _reply(correlation_id, body, tag=1):
    raw = body if isinstance(body, bytes) else json.dumps(body).encode()
    return Delivery("reply", raw, correlation_id=correlation_id, delivery_tag=tag)


class TestReplyRouter:
    @pytest.mark.asyncio
    async def test_resolves_matching_call(self):
        router = ReplyRouter(_AckRecorder())
        waiter = router.register("c1")
        await router.on_delivery(_reply("c1", {"status": "success", "user": {"id": 1}}))
        assert await waiter == {"status": "success", "user": {"id": 1}}
        assert "c1" not in router
        assert len(router) == 0

    @pytest.mark.asyncio
    async def test_unmatched_reply_is_acked_and_dropped(self, caplog):
        acks = _AckRecorder()
        router = ReplyRouter(acks)
        waiter = router.register("c1")
        with caplog.at_level(logging.DEBUG, logger="estate_rpc.router"):
            await router.on_delivery(_reply("stale", {"status": "success"}, tag=7))
        assert acks.acked == [7]
        assert not waiter.done()
        assert "unmatched correlation id" in caplog.text

    @pytest.mark.asyncio
    async def test_non_envelope_reply_becomes_invalid_response(self):
        router = ReplyRouter(_AckRecorder())
        waiter = router.register("c1")
        await router.on_delivery(_reply("c1", b"not json"))
        assert await waiter == {"status": "error", "message": "Invalid response"}

    @pytest.mark.asyncio
    async def test_duplicate_registration_rejected(self):
        router = ReplyRouter(_AckRecorder())
        router.register("c1")
        with pytest.raises(ValueError):
            router.register("c1")

    @pytest.mark.asyncio
    async def test_discard_cancels_waiter(self):
        router = ReplyRouter(_AckRecorder())
        waiter = router.register("c1")
        router.discard("c1")
        assert waiter.cancelled()
        assert router.resolve("c1", {"status": "success"}) is False

    @pytest.mark.asyncio
    async def test_second_reply_for_same_id_is_dropped(self):
        router = ReplyRouter(_AckRecorder())
        waiter = router.register("c1")
        await router.on_delivery(_reply("c1", {"status": "success", "n": 1}, tag=1))
        await router.on_delivery(_reply("c1", {"status": "success", "n": 2}, tag=2))
        assert (await waiter)["n"] == 1
