"""
Envelope encoding and parsing for message bodies (UTF-8 JSON).
"""

import json
from typing import Any, Mapping, Optional

from pydantic import ValidationError

from estate_rpc.models.envelope import RequestEnvelope, ResponseEnvelope


def encode_request(action: str, payload: Optional[Mapping[str, Any]] = None) -> bytes:
    envelope = RequestEnvelope(action=action, payload=dict(payload or {}))
    return json.dumps(envelope.model_dump()).encode("utf-8")


def parse_request(raw: Any) -> Optional[RequestEnvelope]:
    """Validate an already-decoded request. Returns None if invalid."""
    if not isinstance(raw, dict):
        return None
    try:
        return RequestEnvelope.model_validate(raw)
    except ValidationError:
        return None


def decode_request(body: bytes) -> Optional[RequestEnvelope]:
    """Parse a request body. Returns None if it is not a valid envelope."""
    try:
        raw = json.loads(body.decode("utf-8"))
    except (UnicodeDecodeError, ValueError):
        return None
    return parse_request(raw)


def validate_response(result: Any) -> dict[str, Any]:
    """Check a handler result is a response envelope. Raises ValidationError/TypeError."""
    if not isinstance(result, Mapping):
        raise TypeError(f"expected a mapping, got {type(result).__name__}")
    ResponseEnvelope.model_validate(dict(result))
    return dict(result)


def encode_response(response: Mapping[str, Any]) -> bytes:
    return json.dumps(response).encode("utf-8")


def decode_response(body: bytes) -> Optional[dict[str, Any]]:
    """Parse a reply body. Returns None if it is not a response envelope."""
    try:
        raw = json.loads(body.decode("utf-8"))
        return validate_response(raw)
    except (UnicodeDecodeError, ValueError, TypeError):
        return None
