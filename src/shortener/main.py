import asyncio
from contextlib import asynccontextmanager, suppress
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, RedirectResponse

from src.shortener.api.v1.endpoints import links, maintenance
from src.shortener.api.deps import get_click_location, get_click_source, get_registry
from src.shortener.core.config import settings, logger
from src.shortener.core.errors import CodeGenerationFailed, Expired, NotFound, StorageError
from src.shortener.services.registry import Registry
from src.shortener.services.storage import build_store


async def purge_periodically(registry: Registry, interval: int):
    """Purge expired links every `interval` seconds until cancelled."""
    while True:
        await asyncio.sleep(interval)
        try:
            removed = await asyncio.to_thread(registry.purge_expired)
            if removed:
                logger.info(f"Periodic purge removed {removed} expired links")
        except Exception:
            logger.exception("Periodic purge failed")


@asynccontextmanager
async def lifespan(app: FastAPI):
    if getattr(app.state, "registry", None) is None:
        registry = Registry(store=build_store(settings))
        registry.load()
        app.state.registry = registry
    registry = app.state.registry

    if settings.PURGE_EXPIRED_ON_STARTUP:
        removed = registry.purge_expired()
        logger.info(f"Startup purge removed {removed} expired links")

    purge_task = None
    if settings.PURGE_INTERVAL_SECONDS > 0:
        purge_task = asyncio.create_task(
            purge_periodically(registry, settings.PURGE_INTERVAL_SECONDS)
        )

    yield

    if purge_task is not None:
        purge_task.cancel()
        with suppress(asyncio.CancelledError):
            await purge_task


def create_app(registry: Optional[Registry] = None) -> FastAPI:
    """
    Build the application.

    Args:
        registry: Registry to serve; when omitted one is built from settings
            and loaded from storage at startup
    """
    app = FastAPI(
        title="Short Link Registry",
        description="""
        A FastAPI-based URL shortening service.

        ## Features
        * Random or custom short codes
        * Links expire after a validity period (1 minute to 7 days)
        * Every redirect is recorded with time, source and coarse location
        * Maintenance endpoints to purge expired links

        ## Documentation
        * Swagger UI: [/docs](/docs)
        * ReDoc: [/redoc](/redoc)
        """,
        version="1.0.0",
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/api/openapi.json",
        license_info={
            "name": "MIT",
        },
        lifespan=lifespan,
    )
    app.state.registry = registry

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.ALLOWED_ORIGINS.split(","),
        allow_credentials=True,
        allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
        allow_headers=["Content-Type"],
    )

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"detail": jsonable_encoder(exc.errors())},
        )

    @app.exception_handler(StorageError)
    async def storage_error_handler(request: Request, exc: StorageError):
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"detail": "Storage unavailable"},
        )

    @app.exception_handler(CodeGenerationFailed)
    async def code_generation_handler(request: Request, exc: CodeGenerationFailed):
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"detail": str(exc)},
        )

    app.include_router(links.router, tags=["links"])
    app.include_router(maintenance.router, prefix="/maintenance", tags=["maintenance"])

    @app.get("/", tags=["root"])
    async def root():
        return {
            "message": "Welcome to the Short Link Registry",
            "docs_url": "/docs",
            "redoc_url": "/redoc",
        }

    @app.get("/health", tags=["root"])
    def health(registry: Registry = Depends(get_registry)):
        return {"status": "ok", "links": len(registry)}

    @app.get("/{short_code}", tags=["redirect"])
    def redirect_to_url(
        short_code: str,
        registry: Registry = Depends(get_registry),
        source: str = Depends(get_click_source),
        location: str = Depends(get_click_location),
    ):
        try:
            link = registry.resolve(short_code, source_origin=source, coarse_location=location)
        except NotFound:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND, detail="URL not found"
            )
        except Expired:
            raise HTTPException(
                status_code=status.HTTP_410_GONE, detail="URL has expired"
            )

        return RedirectResponse(link.original_url, status_code=status.HTTP_302_FOUND)

    return app


app = create_app()
