from __future__ import annotations

import re
from typing import Any

from fastapi import APIRouter, Body, Depends, Query
from sqlalchemy.orm import Session

from dnsguard.db.session import get_db
from dnsguard.deps import (
    get_optional_provider_client,
    get_provider_client,
    get_snapshot_store,
    require_user,
)
from dnsguard.exceptions import ValidationFailed
from dnsguard.models.user import User
from dnsguard.services.audit import record_and_notify
from dnsguard.services.cloudflare import CloudflareClient
from dnsguard.services.reconcile import rollback_zone
from dnsguard.services.snapshots import DEFAULT_PER_PAGE, SnapshotStore

router = APIRouter()

_LEADING_INT = re.compile(r"\s*([-+]?\d+)")


def _int_param(value: str | None, default: int) -> int:
    """Leading integer of a query value; unparseable or zero falls back to ``default``."""
    match = _LEADING_INT.match(value or "")
    return (int(match.group(1)) if match else 0) or default


@router.get("/api/zones/{zone_id}/dns_history")
def dns_history(
    zone_id: str,
    full: str | None = Query(None),
    action: str | None = Query(None),
    from_key: str | None = Query(None, alias="from"),
    to_key: str | None = Query(None, alias="to"),
    page: str | None = Query(None),
    per_page: str | None = Query(None),
    user: User = Depends(require_user),
    snapshots: SnapshotStore = Depends(get_snapshot_store),
    client: CloudflareClient | None = Depends(get_optional_provider_client),
):
    if action == "diff":
        if not from_key or not to_key:
            raise ValidationFailed('Both "from" and "to" parameters are required.')
        diff = snapshots.diff(client, from_key, to_key, zone_id=zone_id)
        return {"diff": diff.to_dict()}

    if full:
        return {"snapshot": snapshots.get_full(full, zone_id)}

    return snapshots.list_snapshots(
        zone_id, page=_int_param(page, 1), per_page=_int_param(per_page, DEFAULT_PER_PAGE)
    ).to_dict()


@router.post("/api/zones/{zone_id}/dns_history")
def rollback(
    zone_id: str,
    body: dict[str, Any] = Body(...),
    user: User = Depends(require_user),
    client: CloudflareClient = Depends(get_provider_client),
    snapshots: SnapshotStore = Depends(get_snapshot_store),
    db: Session = Depends(get_db),
):
    snapshot_key = body.get("snapshotKey")
    if not snapshot_key or not isinstance(snapshot_key, str):
        raise ValidationFailed("snapshotKey is required.")

    outcome = rollback_zone(snapshots, client, zone_id, snapshot_key, user.username)
    result = outcome.result

    record_and_notify(
        db,
        username=user.username,
        action="dns.rollback",
        detail=(
            f"Rolled back zone {zone_id} to snapshot {outcome.snapshot_timestamp} "
            f"(deleted: {result.deleted}, created: {result.created}, updated: {result.updated})"
        ),
        zone_id=zone_id,
    )
    return {"success": True, "results": result.to_dict()}
