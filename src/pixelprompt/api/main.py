"""PixelPrompt - FastAPI Application.

This module is the single entry point for the web application.  It defines
the :func:`create_app` factory, all REST API routes, the central error
handling, and the ``main()`` CLI function that launches the uvicorn server.

Architecture
------------
- **Configuration** is a :class:`~pixelprompt.core.config.PixelpromptConfig`
  built once by ``main()`` and passed into :func:`create_app`.  Every
  service receives what it needs from that object; nothing reads global
  state.
- **Image generation** is performed by
  :class:`~pixelprompt.api.generation.ImageGenerationService`, which calls
  OpenAI, re-hosts the image on Cloudinary, and stores the record.
- **Gallery persistence** uses :class:`~pixelprompt.api.gallery_store.ImageStore`
  (async SQLAlchemy).
- **Errors** raised anywhere in a request reach one set of handlers that log
  them and emit the same JSON envelope.

Endpoints
---------
========  ==========================  ======================================
Method    Path                        Purpose
========  ==========================  ======================================
GET       ``/health``                 Liveness probe
GET       ``/api/image/all``          Paginated gallery listing
POST      ``/api/image/generate``     Generate, host, and store one image
GET       ``/api/image/{id}``         Single gallery image
DELETE    ``/api/image/{id}``         Delete a gallery image
========  ==========================  ======================================

Usage
-----
CLI (installed entry point)::

    pixelprompt

Direct invocation::

    python -m pixelprompt.api.main
"""

from __future__ import annotations

import asyncio
import logging
import os
import signal
import sys
import traceback
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any

from fastapi import FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from pixelprompt import __version__
from pixelprompt.api.gallery_store import ImageStore, fetch_gallery_page
from pixelprompt.api.generation import ImageGenerationService
from pixelprompt.api.middleware import (
    GENERAL_RATE_LIMIT_MESSAGE,
    GENERATION_RATE_LIMIT_MESSAGE,
    FixedWindowRateLimiter,
    RateLimitMiddleware,
    RequestLoggingMiddleware,
    SecurityHeadersMiddleware,
    client_address,
)
from pixelprompt.api.models import GenerateRequest
from pixelprompt.core.config import PixelpromptConfig, load_config, setup_logging
from pixelprompt.core.errors import AppError, ErrorKind, as_app_error, validation_error
from pixelprompt.core.providers import (
    CloudinaryMediaHost,
    ImageGenerator,
    MediaHost,
    OpenAIImageGenerator,
)
from pixelprompt.core.retry import SleepFunc
from pixelprompt.core.validation import DEFAULT_LIMIT, DEFAULT_PAGE

logger = logging.getLogger(__name__)

GENERATE_PATH = "/api/image/generate"


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


# ---------------------------------------------------------------------------
# Error envelope.
# ---------------------------------------------------------------------------


def _error_response(request: Request, error: AppError, exc: BaseException | None = None) -> JSONResponse:
    """Log ``error`` and render the uniform JSON error envelope.

    Outside production the envelope also carries the stack trace and the
    structured error details.  4xx errors are logged at WARNING, everything
    else at ERROR with the traceback.

    Args:
        request: The failing request.
        error: Classified error.
        exc: Original exception, when ``error`` was derived from one.

    Returns:
        A JSON response with ``error.status_code``.
    """
    config: PixelpromptConfig = request.app.state.config
    original = exc if exc is not None else error
    context = f"{request.method} {request.url.path} ip={client_address(request)}"

    if error.status_code < 500:
        logger.warning(f"{error.status_code} {error.message} ({context})")
    else:
        logger.error(
            f"{error.status_code} {error.message} ({context})",
            exc_info=(type(original), original, original.__traceback__),
        )

    payload: dict[str, Any] = {
        "success": False,
        "message": error.message,
        "code": error.status_code,
        "timestamp": _timestamp(),
        "path": request.url.path,
        "method": request.method,
    }
    if not config.is_production:
        payload["stack"] = "".join(
            traceback.format_exception(type(original), original, original.__traceback__)
        )
        payload["details"] = {**error.to_dict(), "error_type": type(original).__name__}

    return JSONResponse(status_code=error.status_code, content=payload)


async def _handle_app_error(request: Request, exc: AppError) -> JSONResponse:
    return _error_response(request, exc)


async def _handle_request_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Report request schema failures as 400 validation errors."""
    problems = "; ".join(
        f"{'.'.join(str(part) for part in err.get('loc', ()))}: {err.get('msg', 'invalid')}"
        for err in exc.errors()
    )
    error = validation_error(f"Validation failed: {problems}")
    return _error_response(request, error, exc)


async def _handle_http_exception(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Render router-level HTTP errors (unknown routes, wrong methods)."""
    match exc.status_code:
        case 404:
            error = AppError(ErrorKind.NOT_FOUND, "Route not found")
        case 405:
            error = AppError(ErrorKind.VALIDATION, "Method not allowed", status_code=405)
        case status:
            error = AppError(ErrorKind.INTERNAL, str(exc.detail), status_code=status)
    return _error_response(request, error, exc)


async def _catch_unhandled(request: Request, call_next):
    """Funnel exceptions that escaped the route into the error envelope."""
    try:
        return await call_next(request)
    except Exception as exc:
        return _error_response(request, as_app_error(exc), exc)


# ---------------------------------------------------------------------------
# Process-level failure handling.
# ---------------------------------------------------------------------------


def _log_uncaught_exception(exc_type, exc, tb) -> None:
    if issubclass(exc_type, KeyboardInterrupt):
        sys.__excepthook__(exc_type, exc, tb)
        return
    logger.critical("Uncaught exception, shutting down", exc_info=(exc_type, exc, tb))


def _handle_async_exception(loop: asyncio.AbstractEventLoop, context: dict[str, Any]) -> None:
    """Log an unhandled asyncio failure and terminate the process."""
    exc = context.get("exception")
    message = context.get("message", "Unhandled exception in event loop")
    if exc is not None:
        logger.critical(f"{message}, shutting down", exc_info=(type(exc), exc, exc.__traceback__))
    else:
        logger.critical(f"{message}, shutting down")
    os.kill(os.getpid(), signal.SIGTERM)


def install_crash_handlers() -> None:
    """Log uncaught exceptions at CRITICAL before the interpreter exits."""
    sys.excepthook = _log_uncaught_exception


# ---------------------------------------------------------------------------
# Application lifecycle.
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage application startup and shutdown lifecycle.

    On startup:
        Creates the image table if needed and, outside the ``test``
        environment, installs an event loop exception handler that
        terminates the process on unhandled task failures.

    On shutdown:
        Closes the image generator client and disposes of the database
        engine.

    Args:
        app: The FastAPI application instance.

    Yields:
        Control back to the application for the duration of its lifetime.
    """
    # --- Startup -----------------------------------------------------------
    config: PixelpromptConfig = app.state.config
    store: ImageStore = app.state.store

    await store.create_schema()
    if config.environment != "test":
        asyncio.get_running_loop().set_exception_handler(_handle_async_exception)
    logger.info(f"PixelPrompt {__version__} started ({config.environment})")

    yield  # Application runs here.

    # --- Shutdown ----------------------------------------------------------
    await app.state.generation_service.generator.aclose()
    await store.dispose()
    logger.info("Provider and database connections closed on shutdown.")


# ---------------------------------------------------------------------------
# Application factory.
# ---------------------------------------------------------------------------


def create_app(
    config: PixelpromptConfig | None = None,
    *,
    store: ImageStore | None = None,
    generator: ImageGenerator | None = None,
    media_host: MediaHost | None = None,
    sleep: SleepFunc = asyncio.sleep,
) -> FastAPI:
    """Build the FastAPI application.

    Args:
        config: Application configuration.  Loaded from the environment when
            omitted.
        store: Image store.  Built from ``config.database_url`` when omitted.
        generator: Image generation provider.  OpenAI when omitted.
        media_host: Hosting provider.  Cloudinary when omitted.
        sleep: Backoff sleep used by the generation retries.

    Returns:
        The configured application.
    """
    config = config or load_config()
    timeout = config.request_timeout_seconds

    if store is None:
        store = ImageStore.from_url(config.database_url)
    if generator is None:
        generator = OpenAIImageGenerator(
            config.openai_api_key.get_secret_value(),
            model=config.openai_image_model,
            timeout=timeout,
        )
    if media_host is None:
        media_host = CloudinaryMediaHost(
            config.cloudinary_cloud_name,
            config.cloudinary_api_key.get_secret_value(),
            config.cloudinary_api_secret.get_secret_value(),
            timeout=timeout,
        )

    app = FastAPI(
        title="PixelPrompt",
        description="AI image generation API with a paginated gallery.",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.config = config
    app.state.store = store
    app.state.generation_service = ImageGenerationService(
        generator,
        media_host,
        store,
        folder=config.media_folder,
        sleep=sleep,
    )

    app.add_exception_handler(AppError, _handle_app_error)
    app.add_exception_handler(RequestValidationError, _handle_request_validation_error)
    app.add_exception_handler(StarletteHTTPException, _handle_http_exception)

    # Middleware added last runs first: security headers, request logging,
    # CORS, general quota, generation quota, then the catch-all.
    app.middleware("http")(_catch_unhandled)
    app.add_middleware(
        RateLimitMiddleware,
        limiter=FixedWindowRateLimiter(
            config.image_generation_rate_limit_max_requests,
            config.image_generation_rate_limit_window_ms,
        ),
        message=GENERATION_RATE_LIMIT_MESSAGE,
        path=GENERATE_PATH,
        methods=["POST"],
    )
    app.add_middleware(
        RateLimitMiddleware,
        limiter=FixedWindowRateLimiter(
            config.rate_limit_max_requests,
            config.rate_limit_window_ms,
        ),
        message=GENERAL_RATE_LIMIT_MESSAGE,
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
        allow_headers=["*"],
    )
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(SecurityHeadersMiddleware)

    _register_routes(app)
    return app


# ---------------------------------------------------------------------------
# Routes.
# ---------------------------------------------------------------------------


def _register_routes(app: FastAPI) -> None:
    @app.get("/health")
    async def health(request: Request) -> dict:
        """Liveness probe.

        Returns:
            Dictionary with ``success``, ``message``, ``timestamp`` and the
            configured ``environment``.
        """
        return {
            "success": True,
            "message": "Server is running",
            "timestamp": _timestamp(),
            "environment": request.app.state.config.environment,
        }

    # Declared before ``/api/image/{image_id}`` so "all" is not taken as an id.
    @app.get("/api/image/all")
    async def list_images(
        request: Request,
        page: int = Query(default=DEFAULT_PAGE),
        limit: int = Query(default=DEFAULT_LIMIT),
    ) -> dict:
        """Return one page of gallery images, newest first.

        Args:
            request: Incoming request (gives access to ``app.state``).
            page: One-based page number (>= 1).
            limit: Images per page (1 to 100).

        Returns:
            Dictionary with ``success``, ``message``, ``data`` (list of image
            records), ``pagination`` and ``code``.

        Raises:
            AppError: 400 for out-of-range pagination, 500 on storage failure.
        """
        gallery = await fetch_gallery_page(request.app.state.store, page, limit)
        return {
            "success": True,
            "message": "Images retrieved successfully",
            "data": [image.model_dump(mode="json", by_alias=True) for image in gallery.images],
            "pagination": gallery.pagination.model_dump(mode="json", by_alias=True),
            "code": 200,
        }

    @app.post(GENERATE_PATH, status_code=201)
    async def generate_image(request: Request, req: GenerateRequest) -> dict:
        """Generate one image, host it, and store it in the gallery.

        Args:
            request: Incoming request (gives access to ``app.state``).
            req: Validated request body with ``prompt`` and ``size``.

        Returns:
            Dictionary with ``success``, ``message``, ``data`` (``imageUrl``
            and ``cloudinaryId``) and ``code``.

        Raises:
            AppError: 400 for an invalid prompt, 502/503/504 for provider
                failures, 409 for a duplicate URL, 500 on storage failure.
        """
        service: ImageGenerationService = request.app.state.generation_service
        generated = await service.generate(req.prompt, req.size)
        return {
            "success": True,
            "message": "Image generated successfully",
            "data": generated.model_dump(mode="json", by_alias=True),
            "code": 201,
        }

    @app.get("/api/image/{image_id}")
    async def get_image(request: Request, image_id: str) -> dict:
        """Return a single gallery image.

        Raises:
            AppError: 404 if the image is not found.
        """
        image = await request.app.state.store.find_by_id(image_id)
        return {
            "success": True,
            "message": "Image retrieved successfully",
            "data": image.model_dump(mode="json", by_alias=True),
            "code": 200,
        }

    @app.delete("/api/image/{image_id}")
    async def delete_image(request: Request, image_id: str) -> dict:
        """Delete a gallery image record.

        The hosted copy on the media host is left in place.

        Raises:
            AppError: 404 if the image is not found.
        """
        image = await request.app.state.store.delete_by_id(image_id)
        return {
            "success": True,
            "message": "Image deleted successfully",
            "data": {"id": image.id},
            "code": 200,
        }


# ---------------------------------------------------------------------------
# CLI entry point.
# ---------------------------------------------------------------------------


def main() -> None:
    """Launch the uvicorn ASGI server.

    Loads configuration from ``PIXELPROMPT_*`` environment variables (and
    ``.env``), configures logging, and serves on ``server_host`` and
    ``server_port`` (default ``0.0.0.0:8080``).  Missing required settings
    stop the process before the server starts.

    This function is registered as the ``pixelprompt`` console script in
    ``pyproject.toml``.
    """
    import uvicorn

    config = load_config()
    setup_logging(config.log_level)
    install_crash_handlers()

    uvicorn.run(
        create_app(config),
        host=config.server_host,
        port=config.server_port,
        server_header=False,
        log_config=None,
    )


if __name__ == "__main__":
    main()
