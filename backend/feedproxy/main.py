from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from time import perf_counter
from uuid import uuid4

from fastapi import Depends, FastAPI, Request, Response
from fastapi.exception_handlers import http_exception_handler
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from structlog.contextvars import bind_contextvars, reset_contextvars

from backend.feedproxy.api.routes import router
from backend.feedproxy.config import PROVIDER, VERSION
from backend.feedproxy.dependencies import get_settings, get_telemetry, require_api_key
from backend.feedproxy.errors import ErrorCode, ProxyError
from backend.feedproxy.logging_config import configure_application_logging
from backend.feedproxy.models.proxy_contracts import ErrorDetail, ErrorResponse, HealthResponse

LOGGER = logging.getLogger("feed_proxy.api")

HEALTH_PATH = "/health"
CAPABILITIES: tuple[str, ...] = ("fetch", "parse", "discover")
METHOD_NOT_ALLOWED_MESSAGE = "Method not allowed"
INVALID_BODY_MESSAGE = "Invalid request body"
MISSING_URL_MESSAGE = "Missing required field: url"
INVALID_FORMAT_MESSAGE = 'Invalid format: must be "html", "text", or "both"'


def health_check() -> HealthResponse:
    return HealthResponse(ok=True, version=VERSION, provider=PROVIDER, capabilities=list(CAPABILITIES))


def cors_headers() -> dict[str, str]:
    return {
        "Access-Control-Allow-Origin": get_settings().allowed_origins,
        "Access-Control-Allow-Methods": "GET, POST, OPTIONS",
        "Access-Control-Allow-Headers": "Content-Type, X-API-Key",
        "Access-Control-Max-Age": "86400",
    }


def error_payload(code: ErrorCode, message: str, *, status: int | None = None) -> dict[str, object]:
    response = ErrorResponse(error=ErrorDetail(code=code, message=message, status=status))
    return response.model_dump(exclude_none=True)


def request_error_message(exc: RequestValidationError) -> str:
    for error in exc.errors():
        location = tuple(error.get("loc", ()))
        if error.get("type") == "json_invalid":
            return INVALID_BODY_MESSAGE
        if "format" in location:
            return INVALID_FORMAT_MESSAGE
        if "url" in location or location == ("body",):
            return MISSING_URL_MESSAGE
    return INVALID_BODY_MESSAGE


async def proxy_error_handler(_: Request, exc: ProxyError) -> Response:
    return JSONResponse(status_code=200, content=error_payload(exc.code, exc.message, status=exc.status))


async def request_validation_handler(_: Request, exc: RequestValidationError) -> Response:
    message = request_error_message(exc)
    LOGGER.info("rejected request body message=%s", message)
    return JSONResponse(status_code=400, content=error_payload("INVALID_URL", message))


async def proxy_http_exception_handler(request: Request, exc: StarletteHTTPException) -> Response:
    if exc.status_code == 401:
        return JSONResponse(status_code=401, content={"ok": False, "error": exc.detail})
    if exc.status_code == 405:
        if request.url.path == HEALTH_PATH:
            content: dict[str, object] = {"ok": False, "error": METHOD_NOT_ALLOWED_MESSAGE}
        else:
            content = error_payload("METHOD_NOT_ALLOWED", METHOD_NOT_ALLOWED_MESSAGE)
        return JSONResponse(status_code=405, content=content, headers=exc.headers)
    return await http_exception_handler(request, exc)


@asynccontextmanager
async def app_lifespan(_: FastAPI) -> AsyncIterator[None]:
    configure_application_logging(get_settings())
    yield


def create_app() -> FastAPI:
    app = FastAPI(title="Feed Proxy API", version=VERSION, lifespan=app_lifespan)

    async def request_context_middleware(
        request: Request,
        call_next: Callable[[Request], Awaitable[Response]],
    ) -> Response:
        if request.method == "OPTIONS":
            return Response(status_code=204, headers=cors_headers())

        telemetry = get_telemetry()
        incoming_request_id = request.headers.get("X-Request-ID")
        request_id = (
            incoming_request_id.strip()
            if isinstance(incoming_request_id, str) and incoming_request_id.strip()
            else str(uuid4())
        )
        context_tokens = bind_contextvars(
            http_request_id=request_id,
            http_method=request.method,
            http_path=request.url.path,
        )
        started_at = perf_counter()
        telemetry.emit(
            "http.request.start",
            request_id=request_id,
            method=request.method,
            path=request.url.path,
        )
        try:
            response = await call_next(request)
        except Exception as exc:
            telemetry.emit(
                "http.request.error",
                request_id=request_id,
                method=request.method,
                path=request.url.path,
                duration_ms=int((perf_counter() - started_at) * 1000),
                error_type=type(exc).__name__,
            )
            raise
        else:
            response.headers["X-Request-ID"] = request_id
            response.headers.update(cors_headers())
            telemetry.emit(
                "http.request.finish",
                request_id=request_id,
                method=request.method,
                path=request.url.path,
                duration_ms=int((perf_counter() - started_at) * 1000),
                status_code=response.status_code,
            )
            return response
        finally:
            reset_contextvars(**context_tokens)

    app.middleware("http")(request_context_middleware)
    app.add_exception_handler(ProxyError, proxy_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(StarletteHTTPException, proxy_http_exception_handler)
    app.include_router(router)
    app.add_api_route(
        HEALTH_PATH,
        health_check,
        methods=["GET"],
        response_model=HealthResponse,
        dependencies=[Depends(require_api_key)],
        tags=["system"],
        operation_id="health_check",
    )

    return app


app = create_app()
