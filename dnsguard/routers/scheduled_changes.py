from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Body, Depends, Query
from fastapi.responses import JSONResponse

from dnsguard.deps import get_schedule_store, require_user
from dnsguard.exceptions import ValidationFailed
from dnsguard.models.user import User
from dnsguard.services.schedules import ScheduleStore

router = APIRouter()


@router.get("/api/scheduled-changes")
def list_scheduled_changes(
    user: User = Depends(require_user),
    store: ScheduleStore = Depends(get_schedule_store),
):
    changes = store.list_pending(user.username)
    return {"success": True, "changes": [c.to_dict() for c in changes]}


@router.post("/api/scheduled-changes")
def create_scheduled_change(
    body: Any = Body(...),
    user: User = Depends(require_user),
    store: ScheduleStore = Depends(get_schedule_store),
):
    if not isinstance(body, dict):
        raise ValidationFailed("Request body must be a JSON object.")
    change = store.create(user.username, body)
    return JSONResponse({"success": True, "change": change.to_dict()}, status_code=201)


@router.delete("/api/scheduled-changes")
def cancel_scheduled_change(
    change_id: str | None = Query(None, alias="id"),
    user: User = Depends(require_user),
    store: ScheduleStore = Depends(get_schedule_store),
):
    if not change_id:
        raise ValidationFailed("Missing id parameter")
    store.cancel(user.username, change_id)
    return {"success": True}
