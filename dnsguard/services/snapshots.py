"""Point-in-time copies of a zone's record set.

Each snapshot is an immutable document ``DNS_SNAPSHOT:<zone>:<timestamp>``
with a 30 day TTL. A per-zone index ``DNS_SNAPSHOTS:<zone>`` carries the
metadata used for listing; when it is missing the metadata is rebuilt by
scanning the snapshot documents.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any, Callable, Iterable

import httpx

from dnsguard.exceptions import NotFound, UpstreamError
from dnsguard.services.diff import RecordDiff, compute_diff
from dnsguard.services.kv_store import KVStore
from dnsguard.services.timestamps import format_timestamp
from dnsguard.settings import get_settings

if TYPE_CHECKING:
    from dnsguard.services.cloudflare import CloudflareClient

log = logging.getLogger(__name__)

SNAPSHOT_PREFIX = "DNS_SNAPSHOT:"
INDEX_PREFIX = "DNS_SNAPSHOTS:"
LIVE = "live"

DEFAULT_PER_PAGE = 10
MAX_PER_PAGE = 100
# Attempts at finding a free timestamp key when captures collide
MAX_KEY_ATTEMPTS = 1000


def snapshot_prefix(zone_id: str) -> str:
    return f"{SNAPSHOT_PREFIX}{zone_id}:"


def index_key(zone_id: str) -> str:
    return f"{INDEX_PREFIX}{zone_id}"


def zone_of(key: str) -> str | None:
    if not key.startswith(SNAPSHOT_PREFIX):
        return None
    zone, sep, _ = key[len(SNAPSHOT_PREFIX) :].partition(":")
    return zone if sep else None


@dataclass
class CaptureResult:
    ok: bool
    key: str | None = None
    error: str | None = None
    record_count: int = 0
    evicted: list[str] = field(default_factory=list)


@dataclass
class SnapshotPage:
    snapshots: list[dict[str, Any]]
    total: int
    page: int
    per_page: int
    total_pages: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "snapshots": self.snapshots,
            "total": self.total,
            "page": self.page,
            "per_page": self.per_page,
            "total_pages": self.total_pages,
        }


class SnapshotStore:
    def __init__(
        self,
        kv: KVStore,
        retention: int | None = None,
        ttl_days: int | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        settings = get_settings()
        self.kv = kv
        self.retention = retention if retention is not None else settings.snapshot_retention_count
        days = ttl_days if ttl_days is not None else settings.snapshot_ttl_days
        self.ttl_seconds = days * 86400
        self.clock = clock or kv.clock

    # -- capture -------------------------------------------------------------

    def capture(
        self,
        client: CloudflareClient | None,
        zone_id: str,
        username: str,
        action: str,
        records: Iterable[dict[str, Any]] | None = None,
    ) -> CaptureResult:
        """Store the zone's current records before a mutation.

        Never raises: the operation being guarded goes ahead whether or not
        the snapshot could be written, the result only tells the caller which
        of the two happened.
        """
        try:
            result = self._capture(client, zone_id, username, action, records)
        except Exception as e:
            self._reset_session()
            result = CaptureResult(ok=False, error=str(e) or e.__class__.__name__)

        if result.ok:
            log.info(
                f"Snapshot {result.key}: {result.record_count} records before {action} by {username}"
            )
        else:
            log.warning(f"Snapshot of zone {zone_id} before {action} failed: {result.error}")
        return result

    def _capture(
        self,
        client: CloudflareClient | None,
        zone_id: str,
        username: str,
        action: str,
        records: Iterable[dict[str, Any]] | None,
    ) -> CaptureResult:
        if records is None:
            if client is None:
                return CaptureResult(ok=False, error="No provider client to read records with")
            resp = client.list_records(zone_id)
            if not resp.success:
                return CaptureResult(ok=False, error=f"Record fetch failed: {resp.error_message}")
            records = resp.result or []

        snapshot: dict[str, Any] = {
            "timestamp": "",
            "username": username,
            "action": action,
            "records": list(records),
        }
        key = self._store_new(zone_id, snapshot)

        evicted = self._enforce_retention(zone_id)
        entry = {
            "key": key,
            "timestamp": snapshot["timestamp"],
            "username": username,
            "action": action,
        }
        self.kv.update(
            index_key(zone_id),
            lambda current: self._merge_index(zone_id, current, entry, evicted),
            ttl_seconds=self.ttl_seconds,
        )
        return CaptureResult(
            ok=True, key=key, record_count=len(snapshot["records"]), evicted=evicted
        )

    def _store_new(self, zone_id: str, snapshot: dict[str, Any]) -> str:
        # Insert-only write; a taken key moves the timestamp forward by 1ms
        moment = self.clock()
        for _ in range(MAX_KEY_ATTEMPTS):
            timestamp = format_timestamp(moment)
            key = f"{snapshot_prefix(zone_id)}{timestamp}"
            snapshot["timestamp"] = timestamp
            if self.kv.compare_and_set(key, snapshot, 0, ttl_seconds=self.ttl_seconds):
                return key
            moment += timedelta(milliseconds=1)
        raise RuntimeError(f"No free snapshot key for zone {zone_id}")

    def _enforce_retention(self, zone_id: str) -> list[str]:
        keys = self.kv.list_keys(snapshot_prefix(zone_id))
        excess = keys[: max(0, len(keys) - self.retention)]
        for key in excess:
            self.kv.delete(key)
        if excess:
            log.info(f"Evicted {len(excess)} snapshots of zone {zone_id} beyond {self.retention}")
        return excess

    def _merge_index(
        self,
        zone_id: str,
        current: Any,
        entry: dict[str, Any],
        evicted: list[str],
    ) -> list[dict[str, Any]]:
        if isinstance(current, list) and current:
            entries = [e for e in current if isinstance(e, dict) and e.get("key") != entry["key"]]
            entries.append(entry)
        else:
            # No index yet (or it expired): seed it from the documents on hand
            entries = self._scan_metadata(zone_id)
        dropped = set(evicted)
        live = set(self.kv.list_keys(snapshot_prefix(zone_id)))
        entries = [e for e in entries if e.get("key") in live and e.get("key") not in dropped]
        entries.sort(key=lambda e: e.get("timestamp") or "")
        return entries[-self.retention :] if self.retention > 0 else []

    def _reset_session(self) -> None:
        try:
            self.kv.db.rollback()
        except Exception as e:
            log.warning(f"Session rollback after failed snapshot also failed: {e}")

    # -- read ----------------------------------------------------------------

    def _scan_metadata(self, zone_id: str) -> list[dict[str, Any]]:
        prefix = snapshot_prefix(zone_id)
        entries = []
        for key in self.kv.list_keys(prefix):
            data = self.kv.get(key)
            if data is None:
                continue
            if isinstance(data, dict):
                entries.append(
                    {
                        "key": key,
                        "timestamp": data.get("timestamp") or key[len(prefix) :],
                        "username": data.get("username", "unknown"),
                        "action": data.get("action", "unknown"),
                    }
                )
            else:
                entries.append(
                    {
                        "key": key,
                        "timestamp": key[len(prefix) :],
                        "username": "unknown",
                        "action": "unknown",
                    }
                )
        return entries

    def list_snapshots(
        self, zone_id: str, page: int | None = 1, per_page: int | None = DEFAULT_PER_PAGE
    ) -> SnapshotPage:
        per_page = min(MAX_PER_PAGE, max(1, per_page or DEFAULT_PER_PAGE))
        page = max(1, page or 1)

        entries = self.kv.get(index_key(zone_id))
        if not isinstance(entries, list) or not entries:
            entries = self._scan_metadata(zone_id)
        else:
            # Blobs past their TTL may still be named by the index
            live = set(self.kv.list_keys(snapshot_prefix(zone_id)))
            entries = [e for e in entries if isinstance(e, dict) and e.get("key") in live]

        entries = sorted(entries, key=lambda e: e.get("timestamp") or "", reverse=True)
        total = len(entries)
        start = (page - 1) * per_page
        return SnapshotPage(
            snapshots=entries[start : start + per_page],
            total=total,
            page=page,
            per_page=per_page,
            total_pages=max(1, math.ceil(total / per_page)),
        )

    def get_full(
        self, key: str, zone_id: str | None = None, missing: str = "Snapshot not found."
    ) -> dict[str, Any]:
        owner = zone_of(key)
        if owner is None or (zone_id is not None and owner != zone_id):
            raise NotFound(missing)
        data = self.kv.get(key)
        if not isinstance(data, dict):
            raise NotFound(missing)
        return data

    def diff(
        self,
        client: CloudflareClient | None,
        from_key: str,
        to_key: str,
        zone_id: str | None = None,
    ) -> RecordDiff:
        """Diff a stored snapshot against another one, or against live state when ``to_key == "live"``."""
        source = self.get_full(from_key, zone_id, missing="Source snapshot not found.")

        if to_key == LIVE:
            to_records = self._fetch_live(client, zone_id or zone_of(from_key) or "")
        else:
            target = self.get_full(to_key, zone_id, missing="Target snapshot not found.")
            to_records = target.get("records") or []

        return compute_diff(source.get("records") or [], to_records)

    def _fetch_live(self, client: CloudflareClient | None, zone_id: str) -> list[dict[str, Any]]:
        if client is None:
            raise UpstreamError("No provider credential available for live records.")
        try:
            resp = client.list_records(zone_id)
        except httpx.HTTPError as e:
            raise UpstreamError(f"Failed to fetch current DNS records: {e}") from e
        if not resp.success:
            raise UpstreamError("Failed to fetch current DNS records.", resp.errors)
        return resp.result or []
