from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Callable, Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from trialproxy.app.api.proxy import router as proxy_router
from trialproxy.app.core.config import Settings, settings as default_settings
from trialproxy.app.core.http_client import init_http_client
from trialproxy.app.core.logging import get_logger, setup_logging
from trialproxy.app.exceptions import ProxyError
from trialproxy.app.middleware.request_id import RequestIdMiddleware
from trialproxy.app.services.proxy import ProxyState
from trialproxy.app.services.rate_window import RateWindowSweeper


def create_app(
    settings: Optional[Settings] = None,
    clock: Optional[Callable[[], float]] = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        settings: Settings to build the app from (global settings by default)
        clock: Time source for the rate windows (wall clock by default)

    Returns:
        Configured FastAPI application instance
    """
    settings = settings or default_settings

    setup_logging(settings)
    logger = get_logger(__name__)

    # Usage and rate state for the lifetime of this app
    proxy_state = ProxyState.build(settings, clock=clock)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """Application lifespan context manager.

        Opens the shared HTTP client and starts the rate window sweeper on
        startup; stops both on shutdown.
        """
        async with init_http_client(settings) as http_client:
            proxy_state.caller.http_client = http_client

            sweeper = RateWindowSweeper(
                list(proxy_state.rate_windows.values()),
                interval=settings.rate_window_sweep_interval_seconds,
            )
            await sweeper.start()

            if not settings.gemini_configured:
                logger.warning("GEMINI_API_KEY is not set; /api/gemini-proxy will answer 500")
            if not settings.search_configured:
                logger.warning("SEARCH_API_KEY or CX_ID is not set; /api/search-proxy will answer 500")

            logger.info(
                "Application startup complete",
                extra={
                    "free_trial_limit": settings.free_trial_limit,
                    "debug_mode": settings.debug,
                }
            )

            try:
                yield
            finally:
                await sweeper.stop()
                proxy_state.caller.http_client = None

        logger.info("Application shutdown complete")

    app = FastAPI(
        title="TrialProxy",
        description="Credential-hiding proxy with per-user rate limiting and free trial quota",
        version="1.0.0",
        lifespan=lifespan
    )
    app.state.proxy = proxy_state

    # Add middleware (order matters: last added = first executed)
    app.add_middleware(RequestIdMiddleware)

    # CORS middleware (outermost - handles preflight requests first)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=settings.cors_origins != ["*"],
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["*"],
        expose_headers=[
            "X-Request-ID",
            "RateLimit-Limit",
            "RateLimit-Remaining",
            "RateLimit-Reset",
            "Retry-After",
        ],
        max_age=600,
    )

    app.include_router(proxy_router)

    @app.get("/health")
    async def health() -> dict[str, Any]:
        """Report upstream configuration and admission state."""
        state: ProxyState = app.state.proxy
        upstreams = {
            "gemini": {"configured": settings.gemini_configured},
            "search": {"configured": settings.search_configured},
        }
        status = "ok" if all(u["configured"] for u in upstreams.values()) else "degraded"

        return {
            "status": status,
            "components": {
                "upstreams": upstreams,
                "admission": {
                    "free_trial_limit": state.gate.free_trial_limit,
                    "tracked_users": state.ledger.tracked_keys,
                    "rate_windows": {
                        name: {
                            "max_per_window": window.max_per_window,
                            "window_seconds": window.window_seconds,
                            "tracked_keys": window.tracked_keys,
                        }
                        for name, window in state.rate_windows.items()
                    },
                },
            },
        }

    @app.exception_handler(ProxyError)
    async def proxy_error_handler(request: Request, exc: ProxyError) -> JSONResponse:
        """Render any ProxyError as {"error": message} with its status code."""
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.message},
            headers=exc.headers or None,
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Global exception handler for unhandled exceptions.

        The traceback is logged server-side and never returned to the client.
        Debug mode adds the exception type and message.
        """
        request_id = getattr(request.state, "request_id", "unknown")

        logger.exception(
            f"Unhandled exception [request_id={request_id}]",
            extra={
                "request_id": request_id,
                "exception_type": type(exc).__name__,
            }
        )

        content: dict[str, Any] = {
            "error": "Internal server error",
            "request_id": request_id,
        }
        if settings.debug:
            content["exception_type"] = type(exc).__name__
            content["message"] = str(exc)

        return JSONResponse(status_code=500, content=content)

    return app


# Create the application instance
app = create_app()


def run() -> None:
    """Serve the application with uvicorn on the configured host and port."""
    import uvicorn

    uvicorn.run(
        "trialproxy.app.main:app",
        host=default_settings.host,
        port=default_settings.port,
        log_config=None,
    )


if __name__ == "__main__":
    run()
