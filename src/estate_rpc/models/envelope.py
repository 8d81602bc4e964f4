"""
Request and response envelopes carried as message bodies.
"""

from typing import Any, Literal, Optional
from pydantic import BaseModel, ConfigDict, Field

INVALID_REQUEST = "Invalid request"
INVALID_RESPONSE = "Invalid response"
SERVICE_UNAVAILABLE = "service unavailable"
TIMEOUT = "timeout"


class RequestEnvelope(BaseModel):
    action: str = Field(min_length=1)
    payload: dict[str, Any] = Field(default_factory=dict)


class ResponseEnvelope(BaseModel):
    """Validation shape for replies. Extra keys are the handler's data."""

    model_config = ConfigDict(extra="allow")

    status: Literal["success", "error"]
    message: Optional[str] = None


def error_envelope(message: str, **data: Any) -> dict[str, Any]:
    return {"status": "error", "message": message, **data}


def success_envelope(message: Optional[str] = None, **data: Any) -> dict[str, Any]:
    body: dict[str, Any] = {"status": "success"}
    if message is not None:
        body["message"] = message
    body.update(data)
    return body


def unknown_action(action: str) -> dict[str, Any]:
    return error_envelope(f"Unknown action: {action}")
