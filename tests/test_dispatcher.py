import asyncio
import json

import pytest
import pytest_asyncio

from estate_rpc.dispatcher import Dispatcher, MessageState as S
from estate_rpc.errors import BrokerError, DuplicateActionError
from estate_rpc.models.envelope import success_envelope
from estate_rpc.registry import ActionTable, ensure_disjoint
from estate_rpc.transport.memory import InMemoryBroker

QUEUE = "frontend_to_backend"
REPLIES = "replies"


class RecordingDispatcher(Dispatcher):
    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.traces = []

    async def handle(self, delivery):
        trace = await super().handle(delivery)
        self.traces.append(trace)
        return trace


def _replies(broker):
    return [(d.correlation_id, json.loads(d.body)) for d in broker.published if d.queue == REPLIES]


async def _send(broker, body, correlation_id="c1", reply_to=REPLIES):
    raw = body if isinstance(body, bytes) else json.dumps(body).encode()
    await broker.publish(QUEUE, raw, correlation_id=correlation_id, reply_to=reply_to)


@pytest.fixture
def calls():
    return []


@pytest.fixture
def table(calls):
    t = ActionTable("auth")

    @t.register("login")
    def login(payload):
        calls.append(("login", payload))
        return success_envelope("Login successful", user={"email": payload.get("email")})

    @t.register("explode")
    async def explode(payload):
        raise RuntimeError("database is locked")

    @t.register("bad_result")
    def bad_result(payload):
        return ["not", "an", "envelope"]

    @t.register("unserializable")
    def unserializable(payload):
        return {"status": "success", "when": object()}

    return t


@pytest_asyncio.fixture
async def dispatcher(broker, table):
    await broker.declare_queue(REPLIES, durable=False)
    d = RecordingDispatcher(broker, QUEUE, table)
    await d.start()
    return d


class TestDispatch:
    @pytest.mark.asyncio
    async def test_success_path(self, broker, dispatcher, calls, eventually):
        await _send(broker, {"action": "login", "payload": {"email": "a@x"}})
        await eventually(lambda: dispatcher.traces)
        assert dispatcher.traces[0] == [S.RECEIVED, S.PARSED, S.DISPATCHED, S.REPLIED, S.ACKED]
        assert _replies(broker) == [("c1", {"status": "success", "message": "Login successful",
                                            "user": {"email": "a@x"}})]
        assert calls == [("login", {"email": "a@x"})]
        assert len(broker.acked) == 1

    @pytest.mark.asyncio
    async def test_unknown_action(self, broker, dispatcher, calls, eventually):
        await _send(broker, {"action": "bogus", "payload": {}})
        await eventually(lambda: dispatcher.traces)
        assert _replies(broker) == [("c1", {"status": "error", "message": "Unknown action: bogus"})]
        assert calls == []
        assert dispatcher.traces[0][-1] == S.ACKED

    @pytest.mark.asyncio
    @pytest.mark.parametrize("body", [
        b"{not json",
        b"[1, 2]",
        {"payload": {}},
        {"action": "", "payload": {}},
        {"action": "login", "payload": "x"},
    ])
    async def test_malformed_request(self, broker, dispatcher, calls, eventually, body):
        await _send(broker, body)
        await eventually(lambda: dispatcher.traces)
        assert dispatcher.traces[0] == [S.RECEIVED, S.REJECTED, S.REPLIED, S.ACKED]
        assert _replies(broker) == [("c1", {"status": "error", "message": "Invalid request"})]
        assert calls == []

    @pytest.mark.asyncio
    async def test_handler_exception_becomes_error_reply(self, broker, dispatcher, eventually):
        await _send(broker, {"action": "explode", "payload": {}})
        await eventually(lambda: dispatcher.traces)
        assert dispatcher.traces[0] == [S.RECEIVED, S.PARSED, S.DISPATCHED, S.FAILED, S.REPLIED, S.ACKED]
        assert _replies(broker) == [("c1", {"status": "error", "message": "database is locked"})]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("action", ["bad_result", "unserializable"])
    async def test_invalid_handler_result(self, broker, dispatcher, eventually, action):
        await _send(broker, {"action": action, "payload": {}})
        await eventually(lambda: dispatcher.traces)
        assert S.FAILED in dispatcher.traces[0]
        assert _replies(broker) == [("c1", {"status": "error", "message": "Invalid handler response"})]

    @pytest.mark.asyncio
    async def test_fire_and_forget(self, broker, dispatcher, calls, eventually):
        await _send(broker, {"action": "login", "payload": {"email": "a@x"}}, correlation_id=None, reply_to=None)
        await eventually(lambda: dispatcher.traces)
        assert dispatcher.traces[0] == [S.RECEIVED, S.PARSED, S.DISPATCHED, S.ACKED]
        assert _replies(broker) == []
        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_messages_processed_in_order(self, broker, dispatcher, calls, eventually):
        for i in range(5):
            await _send(broker, {"action": "login", "payload": {"email": f"u{i}@x"}}, correlation_id=f"c{i}")
        await eventually(lambda: len(dispatcher.traces) == 5)
        assert [c[1]["email"] for c in calls] == [f"u{i}@x" for i in range(5)]
        assert [cid for cid, _ in _replies(broker)] == [f"c{i}" for i in range(5)]


class TestRedelivery:
    @pytest.mark.asyncio
    async def test_crash_before_ack_redelivers_once(self, broker, eventually):
        await broker.declare_queue(REPLIES, durable=False)
        runs = []
        started = asyncio.Event()

        async def slow_login(payload):
            runs.append(payload)
            if len(runs) == 1:
                started.set()
                await asyncio.Event().wait()
            return success_envelope("Login successful")

        table = ActionTable("auth", {"login": slow_login})
        first = Dispatcher(broker, QUEUE, table)
        await first.start()
        await _send(broker, {"action": "login", "payload": {"email": "a@x"}})
        await asyncio.wait_for(started.wait(), timeout=1)

        # worker dies mid-handler: consumer gone, message still unacked
        await broker.cancel(first._consumer_tag)
        assert broker.acked == []
        assert await broker.recover(QUEUE) == 1

        second = RecordingDispatcher(broker, QUEUE, table)
        await second.start()
        await eventually(lambda: second.traces)

        assert len(runs) == 2
        assert _replies(broker) == [("c1", {"status": "success", "message": "Login successful"})]
        assert len(broker.acked) == 1
        assert broker.queues[QUEUE].unacked == {}

    @pytest.mark.asyncio
    async def test_reply_publish_failure_leaves_message_unacked(self, table, eventually):
        class NoReplyBroker(InMemoryBroker):
            failed = []

            async def publish(self, queue, body, **kwargs):
                if queue == REPLIES:
                    self.failed.append(kwargs.get("correlation_id"))
                    raise BrokerError("channel closed")
                await super().publish(queue, body, **kwargs)

        flaky = NoReplyBroker()
        await flaky.connect()
        d = Dispatcher(flaky, QUEUE, table)
        await d.start()
        await flaky.publish(QUEUE, json.dumps({"action": "login", "payload": {}}).encode(),
                            correlation_id="c1", reply_to=REPLIES)
        await eventually(lambda: flaky.failed)
        await asyncio.sleep(0.01)
        assert flaky.acked == []
        assert len(flaky.queues[QUEUE].unacked) == 1
        await flaky.close()


class TestRunLoop:
    @pytest.mark.asyncio
    async def test_run_until_stopped(self, broker, table):
        d = Dispatcher(broker, QUEUE, table)
        task = asyncio.create_task(d.run())
        await asyncio.sleep(0.01)
        assert broker.queues[QUEUE].consumers
        d.stop()
        await asyncio.wait_for(task, timeout=1)
        assert not broker.queues[QUEUE].consumers


class TestActionTables:
    def test_duplicate_within_table(self):
        t = ActionTable("auth", {"login": lambda p: {}})
        with pytest.raises(DuplicateActionError):
            t.add("login", lambda p: {})

    def test_tables_must_be_disjoint(self):
        a = ActionTable("auth", {"login": lambda p: {}})
        b = ActionTable("property", {"login": lambda p: {}})
        with pytest.raises(DuplicateActionError) as exc:
            ensure_disjoint(a, b)
        assert exc.value.details == {"action": "login", "owners": ["auth", "property"]}

    def test_empty_action_rejected(self):
        with pytest.raises(ValueError):
            ActionTable("auth", {"": lambda p: {}})
