from __future__ import annotations

import logging
from typing import Any

from sqlalchemy.orm import Session

from dnsguard.models.audit_event import AuditEvent
from dnsguard.services.webhook import fire_webhook

log = logging.getLogger(__name__)


def record_event(
    db: Session,
    *,
    username: str,
    action: str,
    detail: str | None = None,
    zone_id: str | None = None,
) -> AuditEvent | None:
    """Write an audit event. Failures are logged; the caller's operation already happened."""
    event = AuditEvent(username=username, action=action, zone_id=zone_id, detail=detail)
    try:
        db.add(event)
        db.commit()
    except Exception as e:
        log.warning(f"Audit event {action} by {username} not recorded: {e}")
        db.rollback()
        return None
    return event


def get_recent_events(
    db: Session,
    limit: int = 100,
    zone_id: str | None = None,
) -> list[AuditEvent]:
    query = db.query(AuditEvent)
    if zone_id is not None:
        query = query.filter(AuditEvent.zone_id == zone_id)
    return query.order_by(AuditEvent.created_at.desc(), AuditEvent.id.desc()).limit(limit).all()


def event_to_dict(event: AuditEvent) -> dict[str, Any]:
    created = event.created_at
    return {
        "id": event.id,
        "username": event.username,
        "action": event.action,
        "zone_id": event.zone_id,
        "detail": event.detail,
        "created_at": created.isoformat() if hasattr(created, "isoformat") else created,
    }


def record_and_notify(
    db: Session,
    *,
    username: str,
    action: str,
    detail: str,
    zone_id: str | None = None,
) -> None:
    """Audit a completed mutation and announce it on the configured webhook."""
    record_event(db, username=username, action=action, detail=detail, zone_id=zone_id)
    fire_webhook(db, {"type": action, "username": username, "detail": detail})
