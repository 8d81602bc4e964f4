"""
estate-rpc: correlation-id request/reply over a message broker.

Backend plumbing for a real-estate lookup service: an RPC client facade,
reply routing, and topic workers for auth, saved properties and market data.
"""

from estate_rpc.client import AsyncRpcClient, RpcClient
from estate_rpc.config import Settings
from estate_rpc.dispatcher import Dispatcher, MessageState
from estate_rpc.errors import (
    BrokerError,
    BrokerUnavailableError,
    DuplicateActionError,
    EstateRPCError,
    HandlerResultError,
    MarketDataError,
)
from estate_rpc.registry import ActionTable, ensure_disjoint
from estate_rpc.router import ReplyRouter

__version__ = "0.1.0"
__all__ = [
    "AsyncRpcClient",
    "RpcClient",
    "Settings",
    "Dispatcher",
    "MessageState",
    "ReplyRouter",
    "ActionTable",
    "ensure_disjoint",
    "EstateRPCError",
    "BrokerError",
    "BrokerUnavailableError",
    "DuplicateActionError",
    "HandlerResultError",
    "MarketDataError",
]
