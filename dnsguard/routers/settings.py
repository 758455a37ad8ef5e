from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Body, Depends
from sqlalchemy.orm import Session

from dnsguard.db.session import get_db
from dnsguard.deps import require_user
from dnsguard.exceptions import Forbidden, ValidationFailed
from dnsguard.models.settings import DEFAULTS, get_setting, set_setting
from dnsguard.models.user import User

router = APIRouter()


@router.get("/api/settings")
def get_settings_view(user: User = Depends(require_user), db: Session = Depends(get_db)):
    return {"settings": {key: get_setting(db, key) for key in DEFAULTS}}


@router.put("/api/settings")
def update_settings(
    body: dict[str, Any] = Body(...),
    user: User = Depends(require_user),
    db: Session = Depends(get_db),
):
    if not user.is_admin:
        raise Forbidden("Only administrators can change settings.")

    unknown = sorted(set(body) - set(DEFAULTS))
    if unknown:
        raise ValidationFailed(f"Unknown settings: {', '.join(unknown)}")

    webhook_url = body.get("webhook_url")
    if webhook_url is not None:
        if not isinstance(webhook_url, str):
            raise ValidationFailed("webhook_url must be a string.")
        webhook_url = webhook_url.strip()
        if webhook_url and not webhook_url.startswith(("http://", "https://")):
            raise ValidationFailed("webhook_url must be an http(s) URL.")
        set_setting(db, "webhook_url", webhook_url)

    return {"settings": {key: get_setting(db, key) for key in DEFAULTS}}
