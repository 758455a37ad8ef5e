from __future__ import annotations

import logging
from typing import Any, Callable

import httpx
from fastapi import APIRouter, Body, Depends, Query
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from dnsguard.db.session import get_db
from dnsguard.deps import get_provider_client, get_snapshot_store, require_user
from dnsguard.exceptions import UpstreamError, ValidationFailed
from dnsguard.models.user import User
from dnsguard.services.audit import record_and_notify
from dnsguard.services.cloudflare import ApiResponse, CloudflareClient
from dnsguard.services.snapshots import SnapshotStore

log = logging.getLogger(__name__)

router = APIRouter()


def _call(fn: Callable[..., ApiResponse], *args) -> ApiResponse:
    try:
        return fn(*args)
    except httpx.HTTPError as e:
        raise UpstreamError(f"Cloudflare API request failed: {e}") from e


def _relay(resp: ApiResponse) -> JSONResponse:
    return JSONResponse(resp.to_dict(), status_code=resp.status_code or 200)


@router.get("/api/zones/{zone_id}/dns_records")
def list_records(
    zone_id: str,
    user: User = Depends(require_user),
    client: CloudflareClient = Depends(get_provider_client),
):
    return _relay(_call(client.list_records, zone_id))


@router.post("/api/zones/{zone_id}/dns_records")
def create_record(
    zone_id: str,
    body: dict[str, Any] = Body(...),
    user: User = Depends(require_user),
    client: CloudflareClient = Depends(get_provider_client),
    snapshots: SnapshotStore = Depends(get_snapshot_store),
    db: Session = Depends(get_db),
):
    snapshots.capture(client, zone_id, user.username, "dns.create")
    resp = _call(client.create_record, zone_id, body)
    if resp.success:
        record_and_notify(
            db,
            username=user.username,
            action="dns.create",
            detail=f"{body.get('type')} {body.get('name')} -> {body.get('content')} (zone: {zone_id})",
            zone_id=zone_id,
        )
    return _relay(resp)


@router.patch("/api/zones/{zone_id}/dns_records")
def update_record(
    zone_id: str,
    record_id: str | None = Query(None, alias="id"),
    body: dict[str, Any] = Body(...),
    user: User = Depends(require_user),
    client: CloudflareClient = Depends(get_provider_client),
    snapshots: SnapshotStore = Depends(get_snapshot_store),
    db: Session = Depends(get_db),
):
    if not record_id:
        raise ValidationFailed("Missing id parameter")

    snapshots.capture(client, zone_id, user.username, "dns.update")
    resp = _call(client.patch_record, zone_id, record_id, body)
    if resp.success:
        record_and_notify(
            db,
            username=user.username,
            action="dns.update",
            detail=f"{body.get('type', '')} {body.get('name', '')} (zone: {zone_id}, record: {record_id})",
            zone_id=zone_id,
        )
    return _relay(resp)


@router.delete("/api/zones/{zone_id}/dns_records")
def delete_record(
    zone_id: str,
    record_id: str | None = Query(None, alias="id"),
    user: User = Depends(require_user),
    client: CloudflareClient = Depends(get_provider_client),
    snapshots: SnapshotStore = Depends(get_snapshot_store),
    db: Session = Depends(get_db),
):
    if not record_id:
        raise ValidationFailed("Missing id parameter")

    snapshots.capture(client, zone_id, user.username, "dns.delete")
    resp = _call(client.delete_record, zone_id, record_id)
    if resp.success:
        record_and_notify(
            db,
            username=user.username,
            action="dns.delete",
            detail=f"record: {record_id} (zone: {zone_id})",
            zone_id=zone_id,
        )
    return _relay(resp)
