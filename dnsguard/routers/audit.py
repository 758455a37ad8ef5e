from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from dnsguard.db.session import get_db
from dnsguard.deps import require_user
from dnsguard.models.user import User
from dnsguard.services.audit import event_to_dict, get_recent_events

router = APIRouter()


@router.get("/api/audit")
def list_audit_events(
    zone_id: str | None = Query(None),
    limit: int = Query(100, ge=1, le=1000),
    user: User = Depends(require_user),
    db: Session = Depends(get_db),
):
    events = get_recent_events(db, limit=limit, zone_id=zone_id)
    return {"events": [event_to_dict(e) for e in events]}
