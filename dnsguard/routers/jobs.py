from __future__ import annotations

import logging
from typing import Callable

from fastapi import APIRouter, BackgroundTasks, Depends, Header, Request
from sqlalchemy.orm import Session

from dnsguard.db.session import get_db
from dnsguard.deps import get_client_factory, require_user
from dnsguard.exceptions import Forbidden, NotAuthenticated
from dnsguard.models.user import User
from dnsguard.routers.auth import get_current_user
from dnsguard.security import keys_match
from dnsguard.services.cloudflare import CloudflareClient
from dnsguard.services.credentials import Credential
from dnsguard.services.schedule_executor import run_schedule_sweep
from dnsguard.services.scheduler import retention_job
from dnsguard.settings import get_settings

log = logging.getLogger(__name__)

router = APIRouter()


@router.post("/api/run-scheduled")
def run_scheduled(
    request: Request,
    x_dnsguard_cron_key: str | None = Header(default=None, alias="X-DNSGuard-Cron-Key"),
    client_factory: Callable[[Credential], CloudflareClient] = Depends(get_client_factory),
    db: Session = Depends(get_db),
):
    if keys_match(x_dnsguard_cron_key, get_settings().cron_api_key):
        trigger = "cron"
    else:
        user = get_current_user(request, db)
        if not user:
            raise NotAuthenticated()
        if not user.is_admin:
            raise Forbidden("Only administrators can run scheduled changes.")
        trigger = user.username

    report = run_schedule_sweep(db, client_factory=client_factory)
    log.info(f"Schedule sweep triggered by {trigger}: {report.processed} processed")
    return report.to_dict()


@router.post("/api/jobs/retention")
def trigger_retention(
    background_tasks: BackgroundTasks,
    user: User = Depends(require_user),
):
    if not user.is_admin:
        raise Forbidden("Only administrators can run maintenance jobs.")

    background_tasks.add_task(retention_job)
    return {"ok": True, "message": "Retention cleanup job queued"}
