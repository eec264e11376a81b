from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from prometheus_client import generate_latest, CONTENT_TYPE_LATEST
from starlette.exceptions import HTTPException as StarletteHTTPException
from pydantic import BaseModel, Field
from typing import Optional
import logging, time, uvicorn
from contextlib import asynccontextmanager

from batchtrack.api import batches, logs
from batchtrack.core.database import Database
from batchtrack.core.errors import BatchTrackError
from batchtrack.core.config import setting
from batchtrack.core.logconfig import configure_logging
from batchtrack.core.security import (
    ROLES, ACCESS_TTL_MIN, create_access_token, create_refresh_token, decode_token,
)
from batchtrack.metrics import init_metrics_zero, request_latency_seconds
from batchtrack.utils.clock import utcnow

logger = logging.getLogger("batchtrack.main")

VERSION = "0.3.0"

# super_admin crosses tenants and is never self-issued
DEV_LOGIN_ROLES = tuple(r for r in ROLES if r != "super_admin")


def _field_name(loc) -> str:
    parts = [str(p) for p in loc if p not in ("body", "query", "path", "header")]
    return ".".join(parts) or "request"


class LoginIn(BaseModel):
    username: str = Field(min_length=1)
    role: str
    name: Optional[str] = None
    email: Optional[str] = None
    company_id: Optional[str] = Field(default=None, alias="companyId")

    model_config = {"populate_by_name": True}


class RefreshIn(BaseModel):
    refresh_token: str


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging()
    app.state.database.open()
    init_metrics_zero()
    logger.info("database open: %s", app.state.database.engine.url.render_as_string(hide_password=True))
    yield
    app.state.database.close()
    logger.info("database closed")


def create_app(database: Optional[Database] = None) -> FastAPI:
    app = FastAPI(
        title="Batch Tracking API",
        description="Pre-processing batch status tracking and production audit log",
        version=VERSION,
        lifespan=lifespan,
    )
    app.state.database = database or Database()

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"], allow_credentials=True,
        allow_methods=["*"], allow_headers=["*"],
    )

    @app.middleware("http")
    async def observe_latency(request: Request, call_next):
        started = time.perf_counter()
        try:
            return await call_next(request)
        finally:
            request_latency_seconds.observe(time.perf_counter() - started)

    # ---------- error envelope ----------

    @app.exception_handler(BatchTrackError)
    async def batchtrack_error_handler(request: Request, exc: BatchTrackError):
        body = {"success": False, "message": exc.message}
        if exc.errors:
            body["errors"] = exc.errors
        return JSONResponse(status_code=exc.status_code, content=body)

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        errors = [{"field": _field_name(e.get("loc", ())), "message": e.get("msg", "invalid")} for e in exc.errors()]
        return JSONResponse(status_code=400, content={"success": False, "message": "Validation failed", "errors": errors})

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException):
        return JSONResponse(status_code=exc.status_code, content={"success": False, "message": str(exc.detail)},
                            headers=getattr(exc, "headers", None))

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.exception("unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse(status_code=500, content={"success": False, "message": "Internal server error"})

    # ---------- routes ----------

    app.include_router(batches.router)
    app.include_router(logs.router)

    @app.get("/health")
    def health_check(request: Request):
        try:
            request.app.state.database.ping()
            return {"status": "healthy", "database": "connected", "version": VERSION, "timestamp": utcnow()}
        except Exception as e:
            logger.warning("health check failed: %s", e)
            return JSONResponse(status_code=503, content={
                "status": "unhealthy", "database": "disconnected", "timestamp": utcnow().isoformat(),
            })

    @app.get("/metrics", include_in_schema=False)
    def metrics():
        return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)

    @app.post("/auth/login")
    def auth_login(body: LoginIn):
        if not setting("DEV_LOGIN_ENABLED"):
            raise HTTPException(status_code=404, detail="Not Found")
        role = body.role.lower()
        if role not in DEV_LOGIN_ROLES:
            raise HTTPException(400, f"role must be one of {'|'.join(DEV_LOGIN_ROLES)}")
        access = create_access_token(body.username, role, body.name, body.email, body.company_id)
        refresh = create_refresh_token(body.username, role, body.name, body.email, body.company_id)
        return {"access_token": access, "refresh_token": refresh, "token_type": "bearer",
                "expires_in": ACCESS_TTL_MIN * 60, "role": role, "username": body.username}

    @app.post("/auth/refresh")
    def auth_refresh(body: RefreshIn):
        try:
            data = decode_token(body.refresh_token, expected_type="refresh")
        except Exception:
            raise HTTPException(status_code=401, detail="Invalid/expired refresh token")
        new_access = create_access_token(data["sub"], data.get("role", "viewer"), data.get("name"),
                                         data.get("email"), data.get("company_id"))
        return {"access_token": new_access, "token_type": "bearer", "expires_in": ACCESS_TTL_MIN * 60}

    return app


app = create_app()


if __name__ == "__main__":
    uvicorn.run(app, host="0.0.0.0", port=8000)
