"""FastAPI application entry point."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from gemini_balancer.api import admin, openai, proxy
from gemini_balancer.core.config import load_config
from gemini_balancer.core.exceptions import GatewayError, UpstreamError
from gemini_balancer.logging import configure_logging
from gemini_balancer.middleware.request_context import RequestContextMiddleware
from gemini_balancer.storage.credentials import init_db

configure_logging()

logger = logging.getLogger("gateway.app")


@asynccontextmanager
async def lifespan(_: FastAPI) -> AsyncIterator[None]:
    init_db()
    config = load_config()
    logger.info(
        "Gateway started",
        extra={
            "event": "startup",
            "upstream": config.upstream.base_url,
            "auth_key_configured": bool(config.auth_key),
            "forward_client_key_enabled": config.forward_client_key_enabled,
        },
    )
    yield


app = FastAPI(
    lifespan=lifespan,
    title="Gemini Balancer",
    version="0.1.0",
    openapi_url="/api/openapi.json",
)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization", "x-goog-api-key"],
)
app.add_middleware(RequestContextMiddleware)


@app.get("/favicon.ico", include_in_schema=False)
@app.get("/robots.txt", include_in_schema=False)
def static_placeholder() -> Response:
    return Response(status_code=204)


app.include_router(openai.router)
app.include_router(admin.router)
# Catch-all pass-through; must stay last.
app.include_router(proxy.router)


def _error_body(message: str, error_type: str, code: str) -> dict:
    return {"error": {"message": message, "type": error_type, "code": code}}


@app.exception_handler(GatewayError)
async def gateway_error_handler(request: Request, exc: GatewayError) -> JSONResponse:
    log = logger.warning if exc.status_code < 500 else logger.error
    log(
        exc.message,
        extra={
            "event": "request_rejected",
            "path": request.url.path,
            "status_code": int(exc.status_code),
            "code": exc.code,
        },
    )
    return JSONResponse(
        status_code=int(exc.status_code),
        content=_error_body(exc.message, exc.error_type, exc.code),
    )


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    first = exc.errors()[0] if exc.errors() else {}
    location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    message = f"{location}: {first.get('msg')}" if location else "Invalid request body"
    return JSONResponse(
        status_code=400,
        content=_error_body(message, "invalid_request_error", "invalid_request"),
    )


@app.exception_handler(UpstreamError)
async def upstream_error_handler(request: Request, exc: UpstreamError) -> Response:
    return Response(
        content=exc.body,
        status_code=exc.status_code,
        media_type=exc.content_type or "application/json",
    )


@app.exception_handler(Exception)
async def unexpected_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception(
        "Unhandled error",
        extra={
            "event": "request_error",
            "path": request.url.path,
        },
    )
    return JSONResponse(
        status_code=500,
        content=_error_body("Internal server error", "internal_server_error", "internal_error"),
    )
