from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import cast

from sqlalchemy import delete
from sqlalchemy.engine import CursorResult
from sqlalchemy.orm import Session

from dnsguard.models.audit_event import AuditEvent
from dnsguard.services.kv_store import KVStore
from dnsguard.settings import get_settings

log = logging.getLogger(__name__)


def cleanup_expired_documents(db: Session, now: datetime | None = None) -> int:
    deleted = KVStore(db).purge_expired(now)
    log.info(f"Retention: deleted {deleted} expired documents")
    return deleted


def cleanup_old_audit_events(db: Session, days: int | None = None) -> int:
    if days is None:
        days = get_settings().audit_retention_days

    cutoff = datetime.now(timezone.utc) - timedelta(days=days)

    result = cast(CursorResult, db.execute(delete(AuditEvent).where(AuditEvent.created_at < cutoff)))
    db.commit()

    deleted = result.rowcount or 0
    log.info(f"Retention: deleted {deleted} audit events older than {days} days")
    return deleted


def run_retention_job(db: Session) -> dict:
    documents_deleted = cleanup_expired_documents(db)
    audit_events_deleted = cleanup_old_audit_events(db)

    return {
        "documents_deleted": documents_deleted,
        "audit_events_deleted": audit_events_deleted,
    }
