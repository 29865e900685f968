import asyncio
import logging
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

load_dotenv()

from fastapi import FastAPI, Request
from fastapi.exception_handlers import http_exception_handler
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import FileResponse, JSONResponse, RedirectResponse
from fastapi.staticfiles import StaticFiles
from starlette.exceptions import HTTPException as StarletteHTTPException

from .admin import AdminService
from .api import admin_router, router
from .auth import IdentityService
from .errors import BackendUnavailable
from .query_builder import QueryBuilder
from .readiness import ReadinessGate
from .supabase_client import SUPABASE_URL, ClientSlot, build_gate, supabase_factory

APP_ENV = os.getenv("APP_ENV", "development")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
PUBLIC_DIR = Path(os.getenv("PUBLIC_DIR", Path(__file__).resolve().parent.parent / "public"))
CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]

logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger(__name__)

CONTENT_SECURITY_POLICY = "; ".join([
    "default-src 'self'",
    "script-src 'self' 'unsafe-inline' https://cdn.jsdelivr.net https://unpkg.com",
    "style-src 'self' 'unsafe-inline' https://fonts.googleapis.com",
    "img-src 'self' data: https: blob:",
    f"connect-src 'self' {SUPABASE_URL or ''}".strip(),
    "font-src 'self' https://fonts.gstatic.com",
    "frame-src 'self' https://www.google.com",
])


def _page(*parts: str) -> FileResponse:
    return FileResponse(PUBLIC_DIR.joinpath(*parts))


async def _log_auth_events(identity: IdentityService):
    try:
        await identity.watch(lambda event, session: logger.info("Auth state changed: %s", event))
    except BackendUnavailable as e:
        logger.warning("Auth state stream not subscribed: %s", e.message)


def create_app(gate: Optional[ReadinessGate] = None, identity: Optional[IdentityService] = None) -> FastAPI:
    app = FastAPI(title="Catálogo Inmobiliario", version="1.0.0")

    if gate is None:
        slot = ClientSlot()
        factory = supabase_factory()
        if factory is not None:
            slot.attach(factory)
        else:
            logger.error("SUPABASE_URL / SUPABASE_KEY no configuradas")
        gate = build_gate(slot)

    app.state.gate = gate
    app.state.queries = QueryBuilder(gate)
    app.state.admin = AdminService(gate)
    app.state.identity = identity or IdentityService(gate)

    app.add_middleware(GZipMiddleware, minimum_size=1000)
    app.add_middleware(CORSMiddleware, allow_origins=CORS_ORIGINS, allow_methods=["*"], allow_headers=["*"])

    @app.middleware("http")
    async def security_headers(request: Request, call_next):
        response = await call_next(request)
        response.headers.setdefault("Content-Security-Policy", CONTENT_SECURITY_POLICY)
        response.headers.setdefault("X-Content-Type-Options", "nosniff")
        response.headers.setdefault("X-Frame-Options", "SAMEORIGIN")
        return response

    @app.on_event("startup")
    async def startup_event():
        app.state.gate.start()
        app.state.auth_watch = asyncio.ensure_future(_log_auth_events(app.state.identity))

    @app.exception_handler(BackendUnavailable)
    async def backend_unavailable(request: Request, exc: BackendUnavailable):
        return JSONResponse({"success": False, "error": exc.message, "code": exc.code}, status_code=503)

    @app.exception_handler(StarletteHTTPException)
    async def not_found(request: Request, exc: StarletteHTTPException):
        if exc.status_code == 404 and not request.url.path.startswith("/api"):
            return FileResponse(PUBLIC_DIR / "error404.html", status_code=404)
        return await http_exception_handler(request, exc)

    @app.exception_handler(Exception)
    async def server_error(request: Request, exc: Exception):
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        message = str(exc) if APP_ENV == "development" else "Error interno del servidor"
        return JSONResponse({"error": "Algo salió mal!", "message": message}, status_code=500)

    @app.get("/api/health")
    def health():
        return {
            "status": "OK",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "environment": APP_ENV,
            "backend": app.state.gate.state.value,
        }

    @app.get("/", include_in_schema=False)
    async def index():
        return _page("index.html")

    @app.get("/catalogo", include_in_schema=False)
    async def catalogo():
        return _page("catalogo.html")

    @app.get("/interfazprincipal.html", include_in_schema=False)
    async def legacy_home():
        return RedirectResponse("/")

    @app.get("/admin", include_in_schema=False)
    async def admin_login():
        return _page("admin", "login.html")

    @app.get("/admin/dashboard", include_in_schema=False)
    async def admin_dashboard():
        return _page("admin", "dashboard.html")

    app.include_router(router)
    app.include_router(admin_router)

    # last: everything else under public/, unknown paths fall through to the 404 page
    app.mount("/", StaticFiles(directory=PUBLIC_DIR, check_dir=False), name="public")
    return app


app = create_app()
