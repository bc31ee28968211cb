from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Dict

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import uvicorn
from sqlalchemy import text

from deepsearch.app.api.chat import router as chat_router
from deepsearch.app.core.config import settings
from deepsearch.app.core.http_client import init_http_client
from deepsearch.app.core.logging import get_logger, setup_logging
from deepsearch.app.core.store import RedisStore, get_store
from deepsearch.app.db.async_session import close_async_engine, get_async_engine, init_async_db
from deepsearch.app.exceptions import (
    AdmissionDeniedError,
    AuthenticationError,
    DeepSearchError,
)
from deepsearch.app.middleware.request_id import RequestIdMiddleware, get_request_id

logger = get_logger(__name__)

# Error strings in health output are clipped to this length
HEALTH_ERROR_LIMIT = 100


async def _database_health() -> Dict[str, Any]:
    try:
        async with get_async_engine().connect() as conn:
            await conn.execute(text("SELECT 1"))
    except Exception as e:
        return {"status": "error", "error": str(e)[:HEALTH_ERROR_LIMIT]}
    return {"status": "ok"}


async def _store_health() -> Dict[str, Any]:
    try:
        store = get_store()
        kind = "redis" if isinstance(store, RedisStore) else "memory"
        alive = await store.ping()
    except Exception as e:
        return {"status": "error", "error": str(e)[:HEALTH_ERROR_LIMIT]}
    return {"status": "ok" if alive else "error", "type": kind}


async def health() -> Dict[str, Any]:
    """Report database and store reachability."""
    components = {
        "database": await _database_health(),
        "store": await _store_health(),
    }
    degraded = any(c["status"] != "ok" for c in components.values())
    return {"status": "degraded" if degraded else "ok", "components": components}


async def on_admission_denied(request: Request, exc: AdmissionDeniedError) -> JSONResponse:
    return JSONResponse(
        status_code=429,
        content={
            "error": "too_many_requests",
            "message": "Too Many Requests",
            "count": exc.count,
            "limit": exc.limit,
        },
    )


async def on_unauthorized(request: Request, exc: AuthenticationError) -> JSONResponse:
    return JSONResponse(status_code=401, content={"error": "unauthorized", "message": exc.detail})


async def on_service_error(request: Request, exc: DeepSearchError) -> JSONResponse:
    """Errors raised before the event stream opens."""
    request_id = get_request_id(request)
    logger.warning(
        f"Request failed: {exc.message}",
        extra={"request_id": request_id, "exception_type": type(exc).__name__},
    )
    body = {"error": type(exc).__name__, "message": exc.message, "request_id": request_id}
    return JSONResponse(status_code=exc.status_code, content=body)


async def on_unhandled(request: Request, exc: Exception) -> JSONResponse:
    """Last-resort handler. Tracebacks stay in the server log."""
    request_id = get_request_id(request)
    logger.exception(
        f"Unhandled {type(exc).__name__} while serving {request.url.path}",
        extra={
            "request_id": request_id,
            "exception_type": type(exc).__name__,
            "exception_message": str(exc),
        },
    )
    body: Dict[str, Any] = {"error": "internal_error", "request_id": request_id}
    if settings.debug:
        body.update(message=str(exc), exception_type=type(exc).__name__)
    else:
        body["message"] = "Internal server error"
    return JSONResponse(status_code=500, content=body)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[dict, None]:
    """Open the shared HTTP pool and the database; close both stores on exit."""
    async with init_http_client() as http_client:
        await init_async_db()
        logger.info(
            "DeepSearch service started",
            extra={
                "redis_enabled": settings.redis_enabled,
                "mock_provider": settings.mock_provider,
                "debug_mode": settings.debug,
            },
        )
        yield {"http_client": http_client}

    await get_store().close()
    await close_async_engine()
    logger.info("DeepSearch service stopped")


def create_app() -> FastAPI:
    """Build the DeepSearch FastAPI application."""
    setup_logging()

    app = FastAPI(
        title="DeepSearch Chat",
        description="AI chat service that researches answers with web search and page scraping",
        version="1.0.0",
        lifespan=lifespan,
    )

    app.add_middleware(RequestIdMiddleware)
    # CORS is added last so it wraps everything and answers preflight requests
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID"],
        max_age=600,
    )

    app.include_router(chat_router)
    app.add_api_route("/health", health, methods=["GET"])

    app.add_exception_handler(AdmissionDeniedError, on_admission_denied)
    app.add_exception_handler(AuthenticationError, on_unauthorized)
    app.add_exception_handler(DeepSearchError, on_service_error)
    app.add_exception_handler(Exception, on_unhandled)

    return app


app = create_app()


def run() -> None:
    """Serve the app with uvicorn on the configured host and port."""
    uvicorn.run("deepsearch.app.main:app", host=settings.host, port=settings.port, log_config=None)


if __name__ == "__main__":
    run()
