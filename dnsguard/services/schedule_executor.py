"""Unattended execution of due scheduled changes.

A sweep walks every user's queue, runs the pending changes whose time has
come, records the outcome on each entry and drops terminal entries once they
are older than the cleanup window. An entry is only ever acted on while it is
``pending``; the outcome is merged onto a fresh copy of the queue through
compare-and-set, so a concurrent cancel or a second sweep cannot be
overwritten.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable

from sqlalchemy.orm import Session

from dnsguard.exceptions import ConcurrentUpdateError
from dnsguard.services.cloudflare import ApiResponse, CloudflareClient
from dnsguard.services.credentials import Credential, CredentialChain, default_chain
from dnsguard.services.kv_store import KVStore
from dnsguard.services.schedules import (
    PENDING,
    ScheduledChange,
    ScheduleStore,
    queue_key,
)
from dnsguard.services.snapshots import SnapshotStore
from dnsguard.services.timestamps import format_timestamp, parse_timestamp
from dnsguard.settings import get_settings

log = logging.getLogger(__name__)

CREDENTIAL_ERROR = "Could not resolve provider credential for this user/account."
UNKNOWN_ERROR = "Unknown execution error"
UNPERSISTED = "unpersisted"

ClientFactory = Callable[[Credential], CloudflareClient]


@dataclass
class SweepResult:
    id: str
    username: str
    status: str
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"id": self.id, "username": self.username, "status": self.status}
        if self.error is not None:
            data["error"] = self.error
        return data


@dataclass
class SweepReport:
    results: list[SweepResult] = field(default_factory=list)
    pruned: int = 0

    @property
    def processed(self) -> int:
        return len(self.results)

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": True,
            "processed": self.processed,
            "results": [r.to_dict() for r in self.results],
        }


def is_expired_terminal(item: Any, cutoff: datetime) -> bool:
    if not isinstance(item, dict) or item.get("status") == PENDING:
        return False
    executed = parse_timestamp(item.get("executedAt"))
    return executed is not None and executed < cutoff


class ScheduleExecutor:
    def __init__(
        self,
        store: ScheduleStore,
        credentials: CredentialChain,
        client_factory: ClientFactory = CloudflareClient,
        snapshots: SnapshotStore | None = None,
        cleanup_hours: int | None = None,
    ):
        self.store = store
        self.credentials = credentials
        self.client_factory = client_factory
        self.snapshots = snapshots
        hours = cleanup_hours if cleanup_hours is not None else get_settings().schedule_cleanup_hours
        self.cleanup_window = timedelta(hours=hours)

    def sweep(self, now: datetime | None = None) -> SweepReport:
        now = now or self.store.clock()
        report = SweepReport()
        for username in self.store.queue_owners():
            self._process_queue(username, now, report)
        if report.processed or report.pruned:
            log.info(
                f"Schedule sweep: {report.processed} executed, {report.pruned} old entries pruned"
            )
        return report

    def _process_queue(self, username: str, now: datetime, report: SweepReport) -> None:
        queue = self.store.load_queue(username)
        if queue is None:
            return

        executed: dict[str, ScheduledChange] = {}
        for item in queue:
            change = ScheduledChange.from_dict(item)
            if change is None or not change.is_pending:
                continue
            due = change.scheduled_time
            if due is None or due > now:
                continue
            if not self._still_pending(username, change.id):
                log.info(f"Scheduled change {change.id} of {username} left the queue; skipped")
                continue
            self._execute(username, change, now)
            executed[change.id] = change

        cutoff = now - self.cleanup_window
        pruned: list[int] = []
        persisted = True
        try:
            self.store.kv.update(
                queue_key(username),
                lambda current: self._merge(current, executed, cutoff, pruned),
            )
        except ConcurrentUpdateError as e:
            persisted = False
            log.error(f"Could not persist schedule queue of {username}: {e}")

        report.pruned += pruned[-1] if pruned and persisted else 0
        for c in executed.values():
            if persisted:
                report.results.append(
                    SweepResult(id=c.id, username=username, status=c.status, error=c.error)
                )
            else:
                report.results.append(
                    SweepResult(
                        id=c.id,
                        username=username,
                        status=UNPERSISTED,
                        error=f"Outcome '{c.status}' could not be saved; the change is still pending",
                    )
                )

    def _still_pending(self, username: str, change_id: str) -> bool:
        queue = self.store.load_queue(username) or []
        return any(
            isinstance(item, dict) and item.get("id") == change_id and item.get("status") == PENDING
            for item in queue
        )

    @staticmethod
    def _merge(
        current: Any,
        executed: dict[str, ScheduledChange],
        cutoff: datetime,
        pruned: list[int],
    ) -> Any:
        if not isinstance(current, list):
            return current

        merged = []
        dropped = 0
        for item in current:
            if isinstance(item, dict):
                done = executed.get(item.get("id"))
                # A change cancelled or finished by someone else meanwhile stays as it is
                if done is not None and item.get("status") == PENDING:
                    item = done.to_dict()
            if is_expired_terminal(item, cutoff):
                dropped += 1
                continue
            merged.append(item)

        pruned.append(dropped)
        return merged

    def _execute(self, username: str, change: ScheduledChange, now: datetime) -> None:
        stamp = format_timestamp(now)

        credential = self.credentials.resolve(username, change.account_index)
        if credential is None:
            change.mark_failed(CREDENTIAL_ERROR, stamp)
            log.warning(
                f"Scheduled change {change.id} of {username}: no credential for account "
                f"{change.account_index}"
            )
            return

        try:
            with self.client_factory(credential) as client:
                if self.snapshots is not None:
                    self.snapshots.capture(
                        client, change.zone_id, username, f"scheduled.{change.action}"
                    )
                resp = self._dispatch(client, change)
        except Exception as e:
            change.mark_failed(str(e) or UNKNOWN_ERROR, stamp)
            log.warning(f"Scheduled change {change.id} of {username} raised: {e}")
            return

        if resp.success:
            change.mark_completed(stamp)
            log.info(
                f"Scheduled change {change.id} of {username}: {change.action} on zone "
                f"{change.zone_id} completed"
            )
        else:
            change.mark_failed(resp.error_message, stamp)
            log.warning(
                f"Scheduled change {change.id} of {username} failed: {resp.error_message}"
            )

    @staticmethod
    def _dispatch(client: CloudflareClient, change: ScheduledChange) -> ApiResponse:
        if change.action == "create":
            return client.create_record(change.zone_id, change.record or {})
        if change.action == "update":
            return client.patch_record(change.zone_id, change.record_id or "", change.record or {})
        if change.action == "delete":
            return client.delete_record(change.zone_id, change.record_id or "")
        raise ValueError(f"Unsupported action '{change.action}'")


def run_schedule_sweep(
    db: Session,
    client_factory: ClientFactory = CloudflareClient,
    now: datetime | None = None,
) -> SweepReport:
    kv = KVStore(db)
    executor = ScheduleExecutor(
        ScheduleStore(kv),
        default_chain(kv),
        client_factory=client_factory,
        snapshots=SnapshotStore(kv),
    )
    return executor.sweep(now)
