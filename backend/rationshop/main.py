"""
Ration Shop - FastAPI application entry point.
CORS enabled; health check at GET /health; DB initialized and seeded on startup.
"""
import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from rationshop.db import init_db
from rationshop.errors import RationShopError, UnexpectedError
from rationshop.schema import ErrorResponse
from rationshop.api.routes import router as api_router
from rationshop.api.admin import router as admin_router
from rationshop.services.importer import seed_if_empty

logging.basicConfig(level=os.environ.get("LOG_LEVEL", "INFO").upper())
logger = logging.getLogger(__name__)

ERROR_RESPONSES = {code: {"model": ErrorResponse} for code in (400, 401, 403, 404, 409, 500, 503)}

CORS_ORIGINS = [o.strip() for o in os.environ.get("CORS_ORIGINS", "*").split(",") if o.strip()]


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create tables and load seed data on first start."""
    init_db()
    seed_if_empty()
    yield


app = FastAPI(
    title="Ration Shop",
    description="Public distribution system: customer quota portal and admin back-office.",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(RationShopError)
async def ration_shop_error_handler(request: Request, exc: RationShopError):
    """Domain failures carry their own status and user-facing message."""
    if exc.status_code >= 500:
        logger.warning("request_failed", extra={"path": request.url.path, "error": exc.code})
    return JSONResponse(status_code=exc.status_code, content=ErrorResponse(error=exc.code, detail=exc.message).model_dump())


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception):
    """Anything else is logged in full and answered with a generic message."""
    logger.exception("unexpected_error", extra={"path": request.url.path})
    err = UnexpectedError()
    return JSONResponse(status_code=err.status_code, content=ErrorResponse(error=err.code, detail=err.message).model_dump())


app.include_router(api_router, prefix="/api", tags=["api"], responses=ERROR_RESPONSES)
app.include_router(admin_router, prefix="/api", tags=["admin"], responses=ERROR_RESPONSES)


@app.get("/health")
def health():
    """Health check for load balancers and readiness checks."""
    return {"status": "ok"}
