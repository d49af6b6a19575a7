# app/main.py
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from app.core.config import settings
from app.api.endpoints import auth, entitlements, intents, notify, quotes, transactions
from app.x402 import __version__
from app.x402.audit import get_audit_stats
from app.x402.store import get_store, load_asset_policies, reset_store
import logging

# Configure basic logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    store = get_store()
    if settings.X402_ASSET_POLICIES_PATH:
        try:
            load_asset_policies(store, settings.X402_ASSET_POLICIES_PATH)
        except (OSError, ValueError) as e:
            logger.error(f"Could not load asset policies from {settings.X402_ASSET_POLICIES_PATH}: {e}")
            raise
    if not settings.GATEWAY_API_KEY:
        logger.warning("GATEWAY_API_KEY is not set; Gateway calls will be unauthenticated")
    if not settings.SESSION_JWT_SECRET:
        logger.warning("SESSION_JWT_SECRET is not set; all authenticated routes will answer 401")
    stats = get_audit_stats()
    logger.info(f"x402: Audit log {stats['log_path']} holds {stats['total_events']} events")
    logger.info(f"{settings.PROJECT_NAME} {__version__} started")

    yield

    reset_store()
    logger.info(f"{settings.PROJECT_NAME} stopped")


app = FastAPI(
    title=settings.PROJECT_NAME,
    version=__version__,
    lifespan=lifespan,
    openapi_url=f"{settings.API_V1_STR}/openapi.json" # Standard location for OpenAPI spec
)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Malformed or missing request fields are a 400, like every other validation error."""
    errors = {}
    for error in exc.errors():
        field = ".".join(str(loc) for loc in error["loc"] if loc != "body")
        errors[field or "body"] = error["msg"]
    logger.warning(f"Validation error on {request.url.path}: {errors}")
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"detail": "Invalid request", "errors": errors},
    )


# Include the API router(s)
# The prefix ensures all routes start with /api/v1
app.include_router(quotes.router, prefix=f"{settings.API_V1_STR}", tags=["quotes"])
app.include_router(intents.router, prefix=f"{settings.API_V1_STR}", tags=["intents"])
app.include_router(notify.router, prefix=f"{settings.API_V1_STR}", tags=["settlement"])
app.include_router(transactions.router, prefix=f"{settings.API_V1_STR}", tags=["settlement"])
app.include_router(entitlements.router, prefix=f"{settings.API_V1_STR}", tags=["entitlements"])
app.include_router(auth.router, prefix=f"{settings.API_V1_STR}/auth", tags=["auth"])

@app.get("/", summary="Health Check", tags=["default"])
def read_root():
    """ Basic health check endpoint. """
    logger.info("Root endpoint '/' accessed.")
    return {"status": "ok", "message": f"Welcome to {settings.PROJECT_NAME}"}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)
