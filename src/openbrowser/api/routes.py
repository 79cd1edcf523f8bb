"""RPC and health endpoints.

``POST /`` takes ``{"method": ..., "params": {...}}`` and always answers with
the envelope ``{"success", "data"?, "error"?, "code"?}``:

- malformed payloads, unknown methods and invalid params: HTTP 400;
- operation failures: HTTP 200 with ``success: false`` and a typed ``code``;
- a CAPTCHA interrupt is a successful response (``data.captchaDetected``).
"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from openbrowser import __version__
from openbrowser.engine import Engine
from openbrowser.exceptions import ErrorCode, InvalidRequestError, OpenBrowserError
from openbrowser.models.rpc import RpcRequest, RpcResponse

logger = logging.getLogger(__name__)

router = APIRouter()


def _envelope(response: RpcResponse, status_code: int = 200) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=response.model_dump(mode="json", exclude_none=True),
    )


def _engine(request: Request) -> Engine:
    return request.app.state.engine


@router.get("/health")
async def health(request: Request) -> dict[str, Any]:
    """Liveness probe; does not touch the browser."""
    engine = _engine(request)
    return {"status": "ok", "version": __version__, "methods": engine.methods}


@router.post("/")
async def rpc(request: Request) -> JSONResponse:
    """Dispatch one RPC call to the engine."""
    try:
        body = await request.json()
    except ValueError:
        return _envelope(RpcResponse.fail(ErrorCode.INVALID_REQUEST, "Invalid request: body is not JSON"), 400)

    try:
        call = RpcRequest.model_validate(body)
    except ValidationError as exc:
        return _envelope(RpcResponse.fail(ErrorCode.INVALID_REQUEST, f"Invalid request: {exc.errors()[0]['msg']}"), 400)

    logger.info("Request: method=%s", call.method)
    try:
        data = await _engine(request).call(call.method, call.params)
    except InvalidRequestError as exc:
        logger.warning("Rejected %s: %s", call.method, exc)
        return _envelope(RpcResponse.fail(exc.code, str(exc)), 400)
    except OpenBrowserError as exc:
        logger.warning("%s failed (%s): %s", call.method, exc.code.value, exc)
        return _envelope(RpcResponse.fail(exc.code, str(exc)))
    except Exception as exc:
        logger.exception("Unhandled error in %s", call.method)
        return _envelope(RpcResponse.fail(ErrorCode.INTERNAL, f"{call.method} failed: {exc}"))

    return _envelope(RpcResponse.ok(data))
