import time
import uuid

import redis
import structlog
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from .api import router
from .config import settings
from .core.logging_config import setup_logging
from .db import Base, SessionLocal, engine
from .scheduling.locks import KeyedLock

setup_logging()
log = structlog.get_logger("salonbook.http")

if settings.DATABASE_URL.startswith("sqlite") or bool(settings.DB_AUTO_CREATE_ALL):
    Base.metadata.create_all(bind=engine)

app = FastAPI(
    title="Salonbook",
    description="Reservation scheduling API for salons",
    version="0.1.0",
)
app.state.booking_locks = KeyedLock(redis_url=settings.REDIS_URL)


@app.middleware("http")
async def request_logging_middleware(request: Request, call_next):
    request_id = (request.headers.get("x-request-id") or "").strip() or str(uuid.uuid4())
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(request_id=request_id)
    start = time.perf_counter()

    try:
        response = await call_next(request)
    except Exception:
        duration_ms = round((time.perf_counter() - start) * 1000.0, 2)
        log.exception(
            "http_request",
            method=request.method,
            path=request.url.path,
            status_code=500,
            duration_ms=duration_ms,
        )
        return JSONResponse(
            status_code=500,
            content={"detail": "Internal Server Error"},
            headers={"X-Request-ID": request_id},
        )

    duration_ms = round((time.perf_counter() - start) * 1000.0, 2)
    log.info(
        "http_request",
        method=request.method,
        path=request.url.path,
        status_code=int(response.status_code),
        duration_ms=duration_ms,
    )
    response.headers["X-Request-ID"] = request_id
    return response


@app.middleware("http")
async def security_headers_middleware(request: Request, call_next):
    response = await call_next(request)
    if bool(settings.SECURITY_HEADERS_ENABLED):
        response.headers.setdefault("X-Content-Type-Options", "nosniff")
        response.headers.setdefault("X-Frame-Options", "DENY")
        response.headers.setdefault("Referrer-Policy", "no-referrer")
        response.headers.setdefault("Cache-Control", "no-store")
    return response


@app.get("/health")
def health():
    return {"status": "ok"}


@app.get("/health/ready")
def ready():
    checks = {"db": "ok", "redis": "skipped"}
    ok = True

    try:
        with SessionLocal() as db:
            db.execute(text("SELECT 1"))
    except SQLAlchemyError:
        checks["db"] = "error"
        ok = False

    redis_url = (settings.REDIS_URL or "").strip()
    if redis_url:
        try:
            redis.from_url(redis_url).ping()
            checks["redis"] = "ok"
        except redis.RedisError:
            checks["redis"] = "error"
            ok = False

    if ok:
        return {"status": "ready", "checks": checks}
    return JSONResponse(status_code=503, content={"status": "not_ready", "checks": checks})


app.include_router(router)
