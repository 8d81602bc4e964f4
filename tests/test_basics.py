"""Basic unit tests for the estate-rpc package."""

from estate_rpc import (
    AsyncRpcClient,
    RpcClient,
    EstateRPCError,
    BrokerError,
    BrokerUnavailableError,
    DuplicateActionError,
    HandlerResultError,
    MarketDataError,
    __version__,
)
from estate_rpc.models.actions import ACTION_TOPICS, MarketAction, Topic, topic_for
from estate_rpc.models.envelope import error_envelope, success_envelope, unknown_action


def test_version():
    assert __version__ == "0.1.0"


def test_public_exports():
    assert RpcClient is not None
    assert AsyncRpcClient is not None


def test_error_hierarchy():
    assert issubclass(BrokerError, EstateRPCError)
    assert issubclass(BrokerUnavailableError, BrokerError)
    assert issubclass(DuplicateActionError, EstateRPCError)
    assert issubclass(HandlerResultError, EstateRPCError)
    assert issubclass(MarketDataError, EstateRPCError)


def test_error_attributes():
    err = EstateRPCError(code="test_code", message="something broke")
    assert err.code == "test_code"
    assert str(err) == "something broke"
    assert err.details is None

    dup = DuplicateActionError("login", ["auth", "property"])
    assert dup.code == "duplicate_action"
    assert dup.details == {"action": "login", "owners": ["auth", "property"]}

    assert BrokerUnavailableError("down").code == "broker_unavailable"
    assert MarketDataError("bad", 502).details == {"status_code": 502}


def test_envelope_helpers():
    assert error_envelope("nope") == {"status": "error", "message": "nope"}
    assert success_envelope() == {"status": "success"}
    assert success_envelope("ok", user={"id": 1}) == {"status": "success", "message": "ok", "user": {"id": 1}}
    assert unknown_action("bogus") == {"status": "error", "message": "Unknown action: bogus"}


def test_action_topics():
    assert topic_for("login") == Topic.AUTH
    assert topic_for("saveProperty") == Topic.PROPERTY
    assert topic_for(MarketAction.STREET_VIEW_SHORT) == Topic.MARKET
    assert topic_for("not-an-action") == Topic.AUTH
    assert set(ACTION_TOPICS.values()) == set(Topic.ALL)
