from __future__ import annotations

import logging
import os
import sys
from contextlib import asynccontextmanager

logging.basicConfig(
    level=logging.INFO,
    format="%(levelname)s [%(name)s] %(message)s",
    stream=sys.stdout,
)

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.middleware.sessions import SessionMiddleware

from dnsguard.db.session import storage_configured
from dnsguard.exceptions import DnsGuardError, UpstreamError
from dnsguard.routers.audit import router as audit_router
from dnsguard.routers.auth import router as auth_router
from dnsguard.routers.dns_history import router as dns_history_router
from dnsguard.routers.dns_records import router as dns_records_router
from dnsguard.routers.jobs import router as jobs_router
from dnsguard.routers.scheduled_changes import router as scheduled_changes_router
from dnsguard.routers.settings import router as settings_router
from dnsguard.security import hash_password
from dnsguard.settings import get_settings

settings = get_settings()
log = logging.getLogger(__name__)

INSECURE_DEFAULTS = {"change-me", "password", "admin", "secret", ""}


def validate_security_settings() -> None:
    """Refuse to start with default secrets unless explicitly allowed."""
    allow_insecure = os.environ.get("DNSGUARD_ALLOW_INSECURE", "").lower() == "true"

    issues: list[str] = []
    if settings.admin_password in INSECURE_DEFAULTS:
        issues.append("ADMIN_PASSWORD is set to a default/weak value")
    if settings.admin_secret_key in INSECURE_DEFAULTS:
        issues.append("ADMIN_SECRET_KEY is set to a default/weak value")
    if settings.cron_api_key is not None and settings.cron_api_key in INSECURE_DEFAULTS:
        issues.append("CRON_API_KEY is set to a default/weak value")

    if not issues:
        return

    msg = "\n".join(f"  - {issue}" for issue in issues)
    if allow_insecure:
        log.warning(
            f"SECURITY WARNING (bypassed via DNSGUARD_ALLOW_INSECURE):\n{msg}\n"
            "This is UNSAFE for production use!"
        )
    else:
        log.error(
            f"SECURITY ERROR - Cannot start with insecure configuration:\n{msg}\n\n"
            "Set these environment variables to secure random values.\n"
            "To bypass (DEVELOPMENT ONLY): Set DNSGUARD_ALLOW_INSECURE=true"
        )
        sys.exit(1)


def bootstrap_admin() -> None:
    """Make sure the administrative identity can log in. Skipped without storage."""
    from sqlalchemy import text

    from dnsguard.db.session import engine

    if engine is None:
        log.warning("DATABASE_URL is empty; snapshot and schedule features are disabled")
        return

    with engine.begin() as conn:
        try:
            conn.execute(text("SELECT 1 FROM users LIMIT 1"))
        except Exception:
            log.warning("users table missing; run migrations before first login")
            return

        existing = conn.execute(
            text("SELECT id FROM users WHERE username = :u"),
            {"u": settings.admin_username},
        ).fetchone()
        if existing is None:
            conn.execute(
                text("INSERT INTO users (username, password_hash, role) VALUES (:u, :p, 'admin')"),
                {"u": settings.admin_username, "p": hash_password(settings.admin_password)},
            )
            log.info(f"Created admin user {settings.admin_username}")


@asynccontextmanager
async def lifespan(_: FastAPI):
    from dnsguard.services.scheduler import start_scheduler, stop_scheduler

    validate_security_settings()
    bootstrap_admin()
    start_scheduler()
    yield
    stop_scheduler()


app = FastAPI(title="DNSGuard", version=settings.app_version, lifespan=lifespan)
app.add_middleware(
    SessionMiddleware,
    secret_key=settings.admin_secret_key,
    same_site="lax",
    https_only=False,
)


@app.exception_handler(DnsGuardError)
async def dnsguard_error_handler(request: Request, exc: DnsGuardError):
    body: dict = {"error": exc.message}
    if isinstance(exc, UpstreamError) and exc.details:
        body["details"] = exc.details
    if exc.status_code >= 500:
        log.warning(f"{request.method} {request.url.path} -> {exc.status_code}: {exc.message}")
    return JSONResponse(body, status_code=exc.status_code)


app.include_router(auth_router)
app.include_router(dns_records_router)
app.include_router(dns_history_router)
app.include_router(scheduled_changes_router)
app.include_router(jobs_router)
app.include_router(audit_router)
app.include_router(settings_router)


@app.get("/health")
def health():
    return {"ok": True, "storage": storage_configured(), "version": settings.app_version}
