import logging
import os

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from backend.app.api.routes.cache import router as cache_router
from backend.app.api.routes.dashboard import router as dashboard_router
from backend.app.api.routes.me import router as me_router
from backend.app.api.routes.sales import router as sales_router, record_out
from backend.app.errors import (
    CascadeIncompleteError,
    NotFoundError,
    PersistenceError,
    ReplaceConfirmationRequired,
    ValidationError,
)


logger = logging.getLogger(__name__)


def _cors_origins() -> list[str]:
    raw = os.getenv("CORS_ALLOW_ORIGINS")
    if raw is None:
        origins = ["http://localhost:5173", "http://127.0.0.1:5173"]
    else:
        origins = [origin.strip() for origin in raw.split(",") if origin.strip()]
    if not origins:
        raise RuntimeError("CORS_ALLOW_ORIGINS must not be empty.")
    if not any(origin in origins for origin in ("http://localhost:5173", "http://127.0.0.1:5173")):
        logger.warning("CORS allowlist does not include local dev origins: %s", origins)
    return origins


app = FastAPI(title="Casa Pronósticos API", version="0.1.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins(),
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(sales_router)
app.include_router(dashboard_router)
app.include_router(cache_router)
app.include_router(me_router)


# -------------------------
# Ledger errors -> HTTP
# -------------------------

@app.exception_handler(ValidationError)
async def _validation_error(_request: Request, exc: ValidationError):
    return JSONResponse(status_code=422, content={"detail": str(exc)})


@app.exception_handler(NotFoundError)
async def _not_found(_request: Request, exc: NotFoundError):
    return JSONResponse(status_code=404, content={"detail": str(exc), "record_id": exc.record_id})


@app.exception_handler(ReplaceConfirmationRequired)
async def _replace_required(_request: Request, exc: ReplaceConfirmationRequired):
    return JSONResponse(
        status_code=409,
        content={
            "detail": str(exc),
            "existing": record_out(exc.existing).model_dump(mode="json"),
        },
    )


@app.exception_handler(CascadeIncompleteError)
async def _cascade_incomplete(_request: Request, exc: CascadeIncompleteError):
    logger.warning("cascade incomplete: %s of %s writes (failed %s)", exc.written, exc.total, exc.failed_record_id)
    return JSONResponse(
        status_code=503,
        content={
            "detail": str(exc),
            "written": exc.written,
            "total": exc.total,
            "failed_record_id": exc.failed_record_id,
        },
    )


@app.exception_handler(PersistenceError)
async def _persistence_error(_request: Request, exc: PersistenceError):
    logger.warning("persistence failure: %s", exc)
    return JSONResponse(
        status_code=503,
        content={"detail": "Could not save the change. Please try again."},
    )
