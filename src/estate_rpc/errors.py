"""
estate-rpc error types.

Only broker plumbing and programming mistakes raise these; everything a
caller of ``call()`` sees is a response envelope.
"""

from typing import Any, Optional


class EstateRPCError(Exception):
    def __init__(self, code: str, message: str, details: Optional[dict[str, Any]] = None):
        super().__init__(message)
        self.code = code
        self.details = details


class BrokerError(EstateRPCError):
    def __init__(self, message: str, code: str = "broker_error", details: Optional[dict[str, Any]] = None):
        super().__init__(code, message, details)


class BrokerUnavailableError(BrokerError):
    def __init__(self, message: str):
        super().__init__(message, code="broker_unavailable")


class DuplicateActionError(EstateRPCError):
    def __init__(self, action: str, owners: list[str]):
        super().__init__(
            "duplicate_action",
            f"Action {action!r} is registered by more than one table: {', '.join(owners)}",
            {"action": action, "owners": owners},
        )


class HandlerResultError(EstateRPCError):
    def __init__(self, message: str):
        super().__init__("handler_result", message)


class MarketDataError(EstateRPCError):
    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__("market_data_error", message, {"status_code": status_code} if status_code else None)
