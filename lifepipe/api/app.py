"""FastAPI application: lifespan, static outputs and error handlers.

Generated frames, transitions and final videos are served read-only under
``storage.public_prefix`` so job snapshots can hand out plain URLs.
"""

from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles

from lifepipe import __version__, validate_dependencies
from lifepipe.api.routes import router
from lifepipe.config import settings
from lifepipe.errors import LifepipeError
from lifepipe.orchestrator.service import close_orchestrator, get_orchestrator

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Check ffmpeg and build the orchestrator before serving; close providers after."""
    validate_dependencies()
    orchestrator = get_orchestrator()
    logger.info(
        f"Lifetime API ready: outputs={orchestrator.context.files.base_dir}, "
        f"mock providers={settings.providers.mock}"
    )

    yield

    await close_orchestrator()
    logger.info("Lifetime API stopped")


def _mount_outputs(app: FastAPI) -> None:
    outputs_dir = settings.storage.outputs_dir
    outputs_dir.mkdir(parents=True, exist_ok=True)
    app.mount(
        settings.storage.public_prefix,
        StaticFiles(directory=str(outputs_dir)),
        name="outputs",
    )


app = FastAPI(
    title="Lifetime Pipeline API",
    version=__version__,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:5173"],
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(router)
_mount_outputs(app)


@app.exception_handler(LifepipeError)
async def pipeline_error_handler(request: Request, exc: LifepipeError):
    """Pipeline errors that escaped a route's own mapping."""
    logger.warning(f"{type(exc).__name__} in {request.method} {request.url.path}: {exc}")
    return JSONResponse(
        status_code=502,
        content={"error": type(exc).__name__, "detail": str(exc)},
    )


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled exception in {request.method} {request.url.path}: {type(exc).__name__}: {exc}")
    return JSONResponse(
        status_code=500,
        content={"error": "Internal server error", "detail": str(exc)},
    )
