from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.routing import Mount

from restyle.config import get_settings
from restyle.dependencies.services import get_supabase_client_cached

# Import routers directly from submodules
from restyle.mock_data_view import router as mock_data_router
from restyle.tools.kpi import router as kpi_router
from restyle.tools.transaction_items import router as transaction_items_router
from restyle.tools.transactions import router as transactions_router
from restyle.mcp_server import mcp
from restyle.health import router as health_router


def configure_logging() -> None:
    """Ensure application logs use the INFO level by default."""
    root_logger = logging.getLogger()
    if not root_logger.handlers:
        logging.basicConfig(
            level=logging.INFO,
            format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
        )
    else:
        root_logger.setLevel(logging.INFO)

# Configure logging as soon as the module is loaded
configure_logging()

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Manages application startup and shutdown events.
    """
    settings = get_settings()

    settings_snapshot = settings.model_dump(
        by_alias=True,
        exclude={"supabase_service_role_key"},
    )
    logger.info("Application settings on startup: %s", settings_snapshot)

    has_mcp = any(isinstance(r, Mount) and r.path == "/mcp" for r in app.routes)
    logger.debug("MCP mount present: %s", has_mcp)

    client = get_supabase_client_cached()
    if client.use_mock_data:
        logger.warning("Running on in-memory mock data; nothing is persisted to Supabase.")
    logger.info("Application startup complete.")

    try:
        yield
    finally:
        logger.info("Closing Supabase client connection.")
        await client.close()
        logger.info("Application shutdown complete.")


# --- Application Setup ---

settings = get_settings()
app = FastAPI(
    title=settings.app_name,
    lifespan=lifespan,
    redirect_slashes=False
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[str(origin).rstrip("/") for origin in settings.cors_origins],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return JSONResponse({"ok": False, "error": str(exc.detail)}, status_code=exc.status_code)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    logger.info("Rejected payload for %s: %s", request.url.path, exc.errors())
    return JSONResponse({"ok": False, "error": "Invalid payload"}, status_code=400)


# --- Include Routers and Mounts ---

app.include_router(transactions_router, prefix="/api/transactions")
app.include_router(transaction_items_router, prefix="/api/transaction-items")
app.include_router(kpi_router, prefix="/api/kpi")
app.include_router(health_router)
app.include_router(mock_data_router)

# Mount the MCP Streamable HTTP server at /mcp
app.mount("/mcp", mcp.streamable_http_app())
