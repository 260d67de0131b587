"""FastAPI application entry point for Cortex."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from cortex import __version__
from cortex.api.routes import get_db_client, get_registry, router
from cortex.config import get_settings
from cortex.exceptions import CortexError

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    # Startup
    logger.info(f"Starting Cortex Server v{__version__}")
    settings = get_settings()
    logger.info(f"Debug mode: {settings.debug}")
    logger.info(f"Generation model: {settings.gemini_model}")

    registry = get_registry()
    logger.info(f"Registered tools: {sorted(tool.name for tool in registry.get_all())}")
    disabled = registry.unconfigured()
    for name in disabled:
        keys = sorted(registry.get_by_name(name).manifest().config_keys)
        logger.info(f"{name} disabled (set {', '.join(keys)} to enable)")

    tool_health = await registry.health_check_all()
    unhealthy = [name for name, healthy in tool_health.items() if not healthy and name not in disabled]
    if unhealthy:
        logger.warning(f"Unhealthy tools: {unhealthy}")
    else:
        logger.info("All configured tools healthy")

    db_health = await get_db_client().health_check()
    if db_health["healthy"]:
        logger.info(f"Database reachable ({db_health['latency_ms']}ms)")
    else:
        logger.error(f"Database unhealthy: {db_health['error']}")

    yield

    # Shutdown
    logger.info("Shutting down Cortex Server")


async def cortex_error_handler(request: Request, exc: CortexError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message})


async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.detail},
        headers=getattr(exc, "headers", None),
    )


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    message = errors[0].get("msg", "Invalid request") if errors else "Invalid request"
    return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"error": message})


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="Cortex",
        description="Research summaries, AI chat and deal analysis over streamed LLM output",
        version=__version__,
        lifespan=lifespan,
        debug=settings.debug,
    )

    # CORS middleware for the browser client
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(CortexError, cortex_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)

    # Include routes
    app.include_router(router)

    return app


# Create app instance for uvicorn
app = create_app()


if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "cortex.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
    )
