"""Converge a zone's live records to a stored snapshot (rollback).

Records are matched by provider id. Deletes run first so that names held by
records that must go (a CNAME, say) are free before replacements are created;
updates run last. Every operation is attempted; failures are collected.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Callable, Iterable

import httpx

from dnsguard.exceptions import UpstreamError
from dnsguard.services.snapshots import CaptureResult, SnapshotStore

if TYPE_CHECKING:
    from dnsguard.services.cloudflare import ApiResponse, CloudflareClient

log = logging.getLogger(__name__)

COMPARED_FIELDS = ("type", "name", "content", "ttl", "proxied", "priority")
BODY_FIELDS = ("type", "name", "content", "ttl", "proxied")


def record_body(record: dict[str, Any]) -> dict[str, Any]:
    """The writable part of a record, as sent on create and full update."""
    body = {}
    for f in BODY_FIELDS:
        if record.get(f) is not None:
            body[f] = record[f]
    if record.get("priority") is not None:
        body["priority"] = record["priority"]
    if record.get("data"):
        body["data"] = record["data"]
    return body


def needs_update(current: dict[str, Any], target: dict[str, Any]) -> bool:
    return any(current.get(f) != target.get(f) for f in COMPARED_FIELDS)


@dataclass
class ReconcilePlan:
    deletes: list[dict[str, Any]] = field(default_factory=list)
    creates: list[dict[str, Any]] = field(default_factory=list)
    updates: list[tuple[dict[str, Any], dict[str, Any]]] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not (self.deletes or self.creates or self.updates)


@dataclass
class RollbackResult:
    deleted: int = 0
    created: int = 0
    updated: int = 0
    errors: list[dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "deleted": self.deleted,
            "created": self.created,
            "updated": self.updated,
            "errors": self.errors,
        }


@dataclass
class RollbackOutcome:
    snapshot_timestamp: str
    result: RollbackResult
    capture: CaptureResult


class Reconciler:
    def __init__(self, client: CloudflareClient):
        self.client = client

    @staticmethod
    def plan(
        target: Iterable[dict[str, Any]], current: Iterable[dict[str, Any]]
    ) -> ReconcilePlan:
        current = list(current)
        target = list(target)
        current_by_id = {r["id"]: r for r in current if r.get("id")}
        target_ids = {r["id"] for r in target if r.get("id")}

        plan = ReconcilePlan()
        for rec in current:
            if rec.get("id") and rec["id"] not in target_ids:
                plan.deletes.append(rec)
        for rec in target:
            existing = current_by_id.get(rec.get("id")) if rec.get("id") else None
            if existing is None:
                # Recreated records get a new id from the provider
                plan.creates.append(rec)
            elif needs_update(existing, rec):
                plan.updates.append((existing, rec))
        return plan

    def _run(self, call: Callable[..., ApiResponse], *args) -> str | None:
        try:
            resp = call(*args)
        except Exception as e:
            return str(e) or e.__class__.__name__
        return None if resp.success else resp.error_message

    def apply(self, zone_id: str, plan: ReconcilePlan) -> RollbackResult:
        result = RollbackResult()

        for rec in plan.deletes:
            error = self._run(self.client.delete_record, zone_id, rec["id"])
            if error is None:
                result.deleted += 1
            else:
                result.errors.append({"action": "delete", "id": rec["id"], "error": error})

        for rec in plan.creates:
            body = record_body(rec)
            error = self._run(self.client.create_record, zone_id, body)
            if error is None:
                result.created += 1
            else:
                result.errors.append({"action": "create", "record": body, "error": error})

        for current, target in plan.updates:
            error = self._run(self.client.update_record, zone_id, current["id"], record_body(target))
            if error is None:
                result.updated += 1
            else:
                result.errors.append({"action": "update", "id": current["id"], "error": error})

        if result.errors:
            log.warning(f"Reconcile of zone {zone_id}: {len(result.errors)} operations failed")
        return result


def rollback_zone(
    snapshots: SnapshotStore,
    client: CloudflareClient,
    zone_id: str,
    snapshot_key: str,
    username: str,
) -> RollbackOutcome:
    snapshot = snapshots.get_full(snapshot_key, zone_id)
    target = snapshot.get("records") or []

    try:
        resp = client.list_records(zone_id)
    except httpx.HTTPError as e:
        raise UpstreamError(f"Failed to fetch current DNS records: {e}") from e
    if not resp.success:
        raise UpstreamError("Failed to fetch current DNS records.", resp.errors)
    current = resp.result or []

    # The rollback itself must be undoable
    capture = snapshots.capture(client, zone_id, username, "dns.rollback", records=current)

    reconciler = Reconciler(client)
    plan = reconciler.plan(target, current)
    result = reconciler.apply(zone_id, plan)

    log.info(
        f"Rolled back zone {zone_id} to {snapshot.get('timestamp')}: "
        f"deleted={result.deleted} created={result.created} updated={result.updated} "
        f"errors={len(result.errors)}"
    )
    return RollbackOutcome(
        snapshot_timestamp=snapshot.get("timestamp", ""), result=result, capture=capture
    )
