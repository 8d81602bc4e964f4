"""
HTTP gateway: translates ``POST /api/{topic}`` into an RPC call on the
topic's request queue. It never touches the database or third-party APIs.
"""

import json
import logging
from contextlib import asynccontextmanager
from typing import Any, Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from estate_rpc.client import AsyncRpcClient
from estate_rpc.config import Settings
from estate_rpc.models.actions import AuthAction, Topic
from estate_rpc.models.envelope import (
    INVALID_REQUEST,
    SERVICE_UNAVAILABLE,
    TIMEOUT,
    RequestEnvelope,
    error_envelope,
)

logger = logging.getLogger(__name__)

ACCESS_COOKIE = "access_token"
REFRESH_COOKIE = "refresh_token"

# payload key filled from a cookie when the caller did not send it
COOKIE_FIELDS = {
    AuthAction.VERIFY_AUTH: ACCESS_COOKIE,
    AuthAction.UPDATE_PROFILE: ACCESS_COOKIE,
    AuthAction.REFRESH_TOKEN: REFRESH_COOKIE,
}

STATUS_CODES = {SERVICE_UNAVAILABLE: 503, TIMEOUT: 504}


def status_code_for(response: dict[str, Any]) -> int:
    if response.get("status") == "error":
        return STATUS_CODES.get(response.get("message"), 200)
    return 200


def create_app(client: Optional[AsyncRpcClient] = None, settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or Settings.load()
    client = client or AsyncRpcClient(settings=settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        await client.close()

    app = FastAPI(title="estate-rpc gateway", version="0.1.0", lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.state.client = client
    app.state.settings = settings

    @app.get("/health")
    async def health() -> dict[str, str]:
        return {"status": "success"}

    @app.post("/api/{topic}")
    async def rpc(topic: str, request: Request) -> JSONResponse:
        if topic not in Topic.ALL:
            return JSONResponse(error_envelope(f"Unknown topic: {topic}"), status_code=404)
        try:
            envelope = RequestEnvelope.model_validate(await request.json())
        except (json.JSONDecodeError, UnicodeDecodeError, ValidationError):
            return JSONResponse(error_envelope(INVALID_REQUEST), status_code=400)

        payload = dict(envelope.payload)
        cookie = COOKIE_FIELDS.get(envelope.action)
        if cookie and not payload.get(cookie) and request.cookies.get(cookie):
            payload[cookie] = request.cookies[cookie]

        queue = settings.queues.for_topic(topic)
        result = await client.call(envelope.action, payload, queue=queue)
        response = JSONResponse(result, status_code=status_code_for(result))

        if envelope.action == AuthAction.LOGIN and result.get("status") == "success":
            tokens = result.get("tokens") or {}
            _set_cookie(response, ACCESS_COOKIE, tokens.get("access_token"), settings.access_token_ttl)
            _set_cookie(response, REFRESH_COOKIE, tokens.get("refresh_token"), settings.refresh_token_ttl)
        elif envelope.action == AuthAction.LOGOUT and result.get("status") == "success":
            response.delete_cookie(ACCESS_COOKIE)
            response.delete_cookie(REFRESH_COOKIE)
        return response

    return app


def _set_cookie(response: JSONResponse, name: str, value: Optional[str], max_age: int) -> None:
    if not value:
        return
    response.set_cookie(name, value, max_age=max_age, httponly=True, samesite="strict")
