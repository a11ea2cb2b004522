"""FastAPI web application for the guider API and the bundled web app."""

from __future__ import annotations

import math
from collections.abc import AsyncGenerator, Callable
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import APIRouter, FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, RedirectResponse
from fastapi.staticfiles import StaticFiles

from skyhost import __version__
from skyhost.config import get_config
from skyhost.guider.bridge import DEFAULT_EXPOSURE_MS
from skyhost.observability import LogContext, get_logger
from skyhost.pipeline import Envelope, ImagePipeline

logger = get_logger(__name__)

# Client-side routes of the single-page app. A browser reload on any of
# them must land on index.html.
APP_ROUTES = (
    "equipment",
    "camera",
    "autofocus",
    "mount",
    "guider",
    "sequence",
    "settings",
    "seq-mon",
    "flat",
    "dome",
    "logs",
    "switch",
    "flats",
    "stellarium",
    "rotator",
    "filterwheel",
    *(f"plugin{n}" for n in range(1, 10)),
)

CORS_METHODS = ["GET", "POST", "PUT", "DELETE", "OPTIONS"]
CORS_HEADERS = [
    "Content-Type",
    "Authorization",
    "X-Suppress-Toast-404",
    "X-Requested-With",
]


def _parse_float(raw: str | None) -> float | None:
    """Lenient query float: anything unparseable or non-finite is None."""
    if raw is None:
        return None
    try:
        value = float(raw)
    except ValueError:
        return None
    return value if math.isfinite(value) else None


def _parse_int(raw: str | None, default: int) -> int:
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _respond(envelope: Envelope) -> JSONResponse:
    return JSONResponse(envelope.body, status_code=envelope.status_code)


def create_phd2_router(pipeline: ImagePipeline) -> APIRouter:
    """Build the ``/phd2`` routes backed by the image pipeline.

    Args:
        pipeline: Guider commands and image conversion.

    Returns:
        APIRouter to be included under ``/api``.
    """
    router = APIRouter(prefix="/phd2", tags=["phd2"])

    @router.get("/state")
    async def phd2_state() -> JSONResponse:
        """Current PHD2 application state, e.g. ``{"state": "Guiding"}``."""
        with LogContext(endpoint="phd2/state"):
            return _respond(await pipeline.get_state())

    @router.get("/stop")
    async def phd2_stop() -> JSONResponse:
        """Stop looping and guiding."""
        with LogContext(endpoint="phd2/stop"):
            return _respond(await pipeline.stop_guiding())

    @router.get("/set_exposure")
    async def phd2_set_exposure(exposure_ms: str | None = None) -> JSONResponse:
        """Set the guide exposure in milliseconds (2000 when omitted)."""
        with LogContext(endpoint="phd2/set_exposure"):
            milliseconds = _parse_int(exposure_ms, DEFAULT_EXPOSURE_MS)
            return _respond(await pipeline.set_exposure(milliseconds))

    @router.get("/starimage")
    async def phd2_star_image() -> JSONResponse:
        """Live star image as a stretched base64 PNG.

        Response:
            {"success": true, "width": 32, "height": 32, "image": "iVBOR..."}
        """
        with LogContext(endpoint="phd2/starimage"):
            return _respond(await pipeline.get_live_preview())

    @router.get("/save-image")
    async def phd2_save_image(
        black: str | None = None, midtone: str | None = None
    ) -> JSONResponse:
        """Full guide frame saved by PHD2, stretched and PNG-encoded.

        Query values that do not parse as numbers fall back to the
        defaults (black 0.25, midtone 2.0) instead of failing the request.
        """
        with LogContext(endpoint="phd2/save-image"):
            envelope = await pipeline.get_saved_frame(
                black_point=_parse_float(black), midtone=_parse_float(midtone)
            )
            return _respond(envelope)

    return router


def create_app(
    pipeline: ImagePipeline,
    static_dir: Path | None = None,
    describe_guider: Callable[[], str] | None = None,
) -> FastAPI:
    """Create the FastAPI application.

    Registers the ``/api`` routes, CORS for every origin, redirects for
    the web app's client-side routes, and finally the static web app at
    ``/`` (only when ``static_dir`` exists, so API-only hosts still work).
    On shutdown the guider connection is closed from the serving loop.

    Args:
        pipeline: Guider commands and image conversion.
        static_dir: Web app directory; the configured one when None.
        describe_guider: Returns a short text for the selected guider,
            reported by ``/api/health``.

    Returns:
        Configured FastAPI app.

    Example:
        >>> app = create_app(pipeline)
        >>> client = TestClient(app)
        >>> client.get("/api/phd2/state").json()
        {'success': True, 'state': 'Guiding'}
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """Close the guider connection on the loop that opened it."""
        logger.info("Guide image API starting")
        yield
        logger.info("Guide image API shutting down")
        try:
            await pipeline.close()
        except Exception:
            logger.exception("Error closing guider connection")

    app = FastAPI(title="SkyHost", version=__version__, lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=CORS_METHODS,
        allow_headers=CORS_HEADERS,
    )

    api = APIRouter(prefix="/api")

    @api.get("/health")
    async def health() -> dict:
        """Liveness probe with version and the selected guider."""
        guider = describe_guider() if describe_guider is not None else "unknown"
        return {"success": True, "version": __version__, "guider": guider}

    api.include_router(create_phd2_router(pipeline))
    app.include_router(api)

    async def to_index() -> RedirectResponse:
        return RedirectResponse(url="/")

    for route in APP_ROUTES:
        app.add_api_route(
            f"/{route}", to_index, methods=["GET"], include_in_schema=False
        )

    web_dir = Path(static_dir) if static_dir is not None else get_config().static_dir
    if web_dir.is_dir():
        app.mount("/", StaticFiles(directory=web_dir, html=True), name="static")
    else:
        logger.warning("Web app directory missing, serving API only", path=str(web_dir))

    return app
