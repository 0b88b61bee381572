"""
Agrilo Backend — Point d'entrée FastAPI.

Responsabilités :
  1. Configurer le logging et valider l'environnement
  2. Créer l'app FastAPI avec métadonnées
  3. Ajouter middlewares (CORS, request id) et handlers d'erreurs
  4. Brancher le lifecycle (startup → DB + jobs ; shutdown → arrêt propre)
  5. Inclure les routes
"""

import logging
import sys
import time
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import IntegrityError
from starlette.exceptions import HTTPException as StarletteHTTPException

from agrilo.api.routes import ROUTERS
from agrilo.core.database import close_db, init_db
from agrilo.core.errors import ApiError, error_body, utc_now_iso
from agrilo.core.logger import setup_logging
from agrilo.core.security import generate_request_id
from agrilo.core.settings import settings, validate_environment
from agrilo.services.external_apis.openepi import get_openepi_service
from agrilo.services.notifications import get_notification_service

logger = logging.getLogger("Agrilo")


# ── Lifecycle ────────────────────────────────────────────────
@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup / Shutdown hooks."""
    setup_logging()
    logger.info("🚀 Starting %s v%s (%s) …", settings.APP_NAME, settings.APP_VERSION, settings.APP_ENV)

    problems = validate_environment(settings)
    if problems:
        logger.error("Missing or invalid environment variables: %s", ", ".join(problems))
        if settings.is_production:
            sys.exit(1)

    init_db()

    notifications = get_notification_service()
    notifications.start(enable_jobs=settings.ENABLE_NOTIFICATIONS)
    get_openepi_service().schedule_cleanup(notifications.scheduler)

    yield  # ← app is running

    notifications.stop()
    close_db()
    logger.info("🛑 %s stopped.", settings.APP_NAME)


# ── App Factory ──────────────────────────────────────────────
app = FastAPI(
    title=settings.APP_NAME,
    description="Farming assistant backend: weather, soil, irrigation, crop planning and satellite insights",
    version=settings.APP_VERSION,
    lifespan=lifespan,
)

# ── Middlewares ───────────────────────────────────────────────
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization", "X-Request-ID"],
)


@app.middleware("http")
async def request_context(request: Request, call_next):
    """Attribue un X-Request-ID et journalise chaque requête avec sa durée."""
    request_id = request.headers.get("X-Request-ID") or generate_request_id()
    request.state.request_id = request_id
    started = time.perf_counter()

    response = await call_next(request)

    duration_ms = (time.perf_counter() - started) * 1000
    response.headers["X-Request-ID"] = request_id
    logger.info(
        "%s %s → %s (%.1f ms) [%s]",
        request.method, request.url.path, response.status_code, duration_ms, request_id,
    )
    return response


# ── Error handlers ───────────────────────────────────────────

def _request_id(request: Request):
    return getattr(request.state, "request_id", None)


@app.exception_handler(ApiError)
async def api_error_handler(request: Request, exc: ApiError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    else:
        logger.warning("%s %s → %s: %s", request.method, request.url.path, exc.status_code, exc.message)
    return JSONResponse(
        status_code=exc.status_code,
        content=error_body(exc.message, request.url.path, request.method, _request_id(request)),
    )


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    errors = []
    for err in exc.errors():
        loc = [str(part) for part in err.get("loc", ()) if part not in ("body", "query", "path", "header")]
        errors.append({
            "field": ".".join(loc),
            "message": err.get("msg"),
            "value": err.get("input"),
        })
    return JSONResponse(
        status_code=400,
        content=jsonable_encoder({
            "status": "error",
            "message": "Validation failed",
            "errors": errors,
            "timestamp": utc_now_iso(),
        }),
    )


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    message = f"Route {request.url.path} not found" if exc.status_code == 404 else str(exc.detail)
    return JSONResponse(
        status_code=exc.status_code,
        content=error_body(message, request.url.path, request.method, _request_id(request)),
    )


@app.exception_handler(IntegrityError)
async def integrity_error_handler(request: Request, exc: IntegrityError):
    # "UNIQUE constraint failed: users.phone_number" → phone_number
    detail = str(exc.orig) if exc.orig is not None else str(exc)
    field = detail.rsplit(".", 1)[-1].strip() if "." in detail else "Value"
    return JSONResponse(
        status_code=400,
        content=error_body(
            f"{field} already exists. Please use a different value.",
            request.url.path, request.method, _request_id(request),
        ),
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Catch-all pour les erreurs non gérées → JSON propre."""
    logger.error(
        "Unhandled error on %s %s: %s",
        request.method, request.url.path, exc,
        exc_info=True,
    )
    message = str(exc) if settings.is_development else "Something went wrong"
    return JSONResponse(
        status_code=500,
        content=error_body(message, request.url.path, request.method, _request_id(request)),
    )


# ── Routes ───────────────────────────────────────────────────

for router in ROUTERS:
    app.include_router(router)


# ── Standalone runner ────────────────────────────────────────
if __name__ == "__main__":
    uvicorn.run(
        "agrilo.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG,
    )
