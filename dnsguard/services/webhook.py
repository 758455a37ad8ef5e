from __future__ import annotations

import logging
from typing import Any

import httpx
from sqlalchemy.orm import Session

from dnsguard.models.settings import get_webhook_url
from dnsguard.services.timestamps import format_timestamp, utcnow

log = logging.getLogger(__name__)

WEBHOOK_TIMEOUT_SECONDS = 10.0


def fire_webhook(
    db: Session,
    event: dict[str, Any],
    transport: httpx.BaseTransport | None = None,
) -> bool:
    """POST ``event`` to the configured webhook URL. Returns whether it was delivered."""
    try:
        url = get_webhook_url(db)
    except Exception as e:
        log.warning(f"Webhook URL lookup failed: {e}")
        db.rollback()
        return False
    if not url:
        return False

    payload = {"event": event.get("type"), "timestamp": format_timestamp(utcnow()), **event}
    try:
        with httpx.Client(timeout=WEBHOOK_TIMEOUT_SECONDS, transport=transport) as client:
            response = client.post(url, json=payload)
        response.raise_for_status()
    except Exception as e:
        log.warning(f"Webhook for {event.get('type')} not delivered: {e}")
        return False
    return True
