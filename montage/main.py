import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles

from montage.api import render
from montage.config import get_settings
from montage.exceptions import MontageError
from montage.jobs.manager import RenderJobManager

settings = get_settings()
logger = logging.getLogger(__name__)


def configure_logging(level: str = settings.log_level) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def create_app(job_manager: RenderJobManager | None = None) -> FastAPI:
    """Build the application. Tests pass their own job manager."""

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        # Startup
        app.state.job_manager = job_manager if job_manager is not None else RenderJobManager()
        logger.info(f"{settings.app_name} {settings.app_version} started ({settings.environment})")
        yield
        # Shutdown
        await app.state.job_manager.shutdown()

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        lifespan=lifespan,
    )

    # CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(MontageError)
    async def montage_exception_handler(request: Request, exc: MontageError) -> JSONResponse:
        if exc.status_code >= 500:
            logger.error(f"{exc.code}: {exc.message}")
        return JSONResponse(status_code=exc.status_code, content=exc.to_error_body())

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        """Malformed request bodies are client errors: 400 with ``{error}``."""
        errors = exc.errors()
        if errors:
            first_error = errors[0]
            loc = " -> ".join(str(x) for x in first_error.get("loc", []))
            msg = first_error.get("msg", "Validation error")
            message = f"{loc}: {msg}" if loc else msg
        else:
            message = "Request validation failed"
        return JSONResponse(status_code=400, content={"error": message})

    # Global exception handler to ensure errors return proper JSON
    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.exception(f"Unhandled exception: {exc}")
        return JSONResponse(status_code=500, content={"error": "Internal server error"})

    # Routers
    app.include_router(render.router, prefix="/api", tags=["render"])

    @app.get("/health")
    async def health_check() -> dict[str, str]:
        return {"status": "healthy", "version": settings.app_version, "git_hash": settings.git_hash}

    # Finished renders are served from the public renders directory
    Path(settings.renders_dir).mkdir(parents=True, exist_ok=True)
    app.mount(
        settings.renders_url_prefix,
        StaticFiles(directory=settings.renders_dir),
        name="renders",
    )

    return app


configure_logging()
app = create_app()
