"""Per-user queues of deferred single-record mutations.

Each user owns one queue document ``SCHEDULED_CHANGES:<username>`` holding a
JSON list of changes. Users only ever see their own queue; enumerating all
queues is reserved for the executor sweep (``queue_owners``).
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Literal, Mapping

from dnsguard.exceptions import InvalidState, NotFound, ValidationFailed
from dnsguard.services.kv_store import KVStore
from dnsguard.services.timestamps import format_timestamp, parse_timestamp

log = logging.getLogger(__name__)

QUEUE_PREFIX = "SCHEDULED_CHANGES:"

ACTIONS = ("create", "update", "delete")
PENDING = "pending"
COMPLETED = "completed"
FAILED = "failed"

Status = Literal["pending", "completed", "failed"]


def queue_key(username: str) -> str:
    return f"{QUEUE_PREFIX}{username}"


@dataclass
class ScheduledChange:
    id: str
    zone_id: str
    action: str
    scheduled_at: str
    created_at: str
    zone_name: str = ""
    record: dict[str, Any] | None = None
    record_id: str | None = None
    status: Status = PENDING
    executed_at: str | None = None
    error: str | None = None
    account_index: int = 0

    @property
    def is_pending(self) -> bool:
        return self.status == PENDING

    @property
    def scheduled_time(self) -> datetime | None:
        return parse_timestamp(self.scheduled_at)

    @property
    def executed_time(self) -> datetime | None:
        return parse_timestamp(self.executed_at)

    def mark_completed(self, executed_at: str) -> None:
        self._finish(COMPLETED, executed_at, None)

    def mark_failed(self, error: str, executed_at: str) -> None:
        self._finish(FAILED, executed_at, error)

    def _finish(self, status: Status, executed_at: str, error: str | None) -> None:
        if not self.is_pending:
            raise InvalidState(f"Scheduled change {self.id} is already {self.status}")
        self.status = status
        self.executed_at = executed_at
        self.error = error

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.id,
            "zoneId": self.zone_id,
            "zoneName": self.zone_name,
            "action": self.action,
            "record": self.record,
            "recordId": self.record_id,
            "scheduledAt": self.scheduled_at,
            "createdAt": self.created_at,
            "status": self.status,
            "accountIndex": self.account_index,
        }
        if self.executed_at is not None:
            data["executedAt"] = self.executed_at
        if self.error is not None:
            data["error"] = self.error
        return data

    @classmethod
    def from_dict(cls, data: Any) -> ScheduledChange | None:
        if not isinstance(data, dict) or not data.get("id"):
            return None
        try:
            account_index = int(data.get("accountIndex") or 0)
        except (TypeError, ValueError):
            account_index = 0
        return cls(
            id=str(data["id"]),
            zone_id=data.get("zoneId") or "",
            zone_name=data.get("zoneName") or "",
            action=data.get("action") or "",
            record=data.get("record"),
            record_id=data.get("recordId"),
            scheduled_at=data.get("scheduledAt") or "",
            created_at=data.get("createdAt") or "",
            status=data.get("status") or PENDING,
            executed_at=data.get("executedAt"),
            error=data.get("error"),
            account_index=account_index,
        )


def _as_queue(value: Any, username: str) -> list[Any]:
    if value is None:
        return []
    if not isinstance(value, list):
        log.warning(f"Schedule queue of {username} is not a list; starting a new one")
        return []
    return value


def validate_request(payload: Mapping[str, Any], now: datetime) -> dict[str, Any]:
    """Check a scheduling request; returns the normalised fields."""
    zone_id = payload.get("zoneId")
    action = payload.get("action")
    scheduled_at = payload.get("scheduledAt")

    if not zone_id or not action or not scheduled_at:
        raise ValidationFailed("Missing required fields: zoneId, action, scheduledAt")

    if action not in ACTIONS:
        raise ValidationFailed("Invalid action. Must be create, update, or delete.")

    when = parse_timestamp(scheduled_at)
    if when is None:
        raise ValidationFailed("Invalid scheduledAt date format.")
    if when <= now:
        raise ValidationFailed("scheduledAt must be in the future.")

    record = payload.get("record")
    if action in ("create", "update") and record is None:
        raise ValidationFailed("Record data is required for create/update actions.")
    if record is not None and not isinstance(record, dict):
        raise ValidationFailed("Record data must be an object.")

    record_id = payload.get("recordId")
    if action in ("update", "delete") and not record_id:
        raise ValidationFailed("recordId is required for update/delete actions.")

    account_index = payload.get("accountIndex")
    if account_index is None:
        account_index = 0
    if isinstance(account_index, bool) or not isinstance(account_index, int) or account_index < 0:
        raise ValidationFailed("accountIndex must be a non-negative integer.")

    return {
        "zone_id": str(zone_id),
        "zone_name": payload.get("zoneName") or "",
        "action": action,
        "record": record,
        "record_id": str(record_id) if record_id else None,
        "scheduled_at": format_timestamp(when),
        "account_index": account_index,
    }


class ScheduleStore:
    def __init__(self, kv: KVStore, clock: Callable[[], datetime] | None = None):
        self.kv = kv
        self.clock = clock or kv.clock

    def create(
        self, username: str, payload: Mapping[str, Any], now: datetime | None = None
    ) -> ScheduledChange:
        now = now or self.clock()
        fields = validate_request(payload, now)
        change = ScheduledChange(
            id=str(uuid.uuid4()),
            created_at=format_timestamp(now),
            status=PENDING,
            **fields,
        )

        self.kv.update(
            queue_key(username),
            lambda queue: _as_queue(queue, username) + [change.to_dict()],
        )
        log.info(
            f"Scheduled {change.action} on zone {change.zone_id} for {username} "
            f"at {change.scheduled_at} ({change.id})"
        )
        return change

    def list_pending(self, username: str) -> list[ScheduledChange]:
        queue = _as_queue(self.kv.get(queue_key(username)), username)
        changes = [ScheduledChange.from_dict(item) for item in queue]
        return [c for c in changes if c is not None and c.is_pending]

    def cancel(self, username: str, change_id: str) -> None:
        def remove(queue: Any) -> list[Any]:
            queue = _as_queue(queue, username)
            for i, item in enumerate(queue):
                if isinstance(item, dict) and item.get("id") == change_id:
                    if item.get("status") != PENDING:
                        raise InvalidState("Only pending changes can be cancelled")
                    return queue[:i] + queue[i + 1 :]
            raise NotFound("Scheduled change not found")

        self.kv.update(queue_key(username), remove)
        log.info(f"Cancelled scheduled change {change_id} of {username}")

    def load_queue(self, username: str) -> list[Any] | None:
        """Raw queue for the executor; ``None`` when absent or unreadable."""
        value = self.kv.get(queue_key(username))
        if value is None:
            return None
        if not isinstance(value, list):
            log.warning(f"Skipping unreadable schedule queue of {username}")
            return None
        return value

    def queue_owners(self) -> list[str]:
        """Every user with a queue. Only the system sweep may enumerate across users."""
        return [key[len(QUEUE_PREFIX) :] for key in self.kv.list_keys(QUEUE_PREFIX)]
