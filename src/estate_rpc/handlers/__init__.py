"""
Business handlers, one action table per topic.
"""

from estate_rpc.handlers.auth import AuthHandlers
from estate_rpc.handlers.market import MarketHandlers
from estate_rpc.handlers.properties import PropertyHandlers
from estate_rpc.handlers.tokens import TokenIssuer

__all__ = ["AuthHandlers", "MarketHandlers", "PropertyHandlers", "TokenIssuer"]
