"""Versioned JSON document store on top of the ``kv_documents`` table.

Documents are addressed by composite string keys (``DNS_SNAPSHOT:<zone>:<ts>``,
``SCHEDULED_CHANGES:<user>`` ...). Every write bumps ``version``;
``compare_and_set`` only succeeds against the version the caller read, which is
what keeps concurrent read-modify-write cycles from losing updates.
"""

from __future__ import annotations

import copy
import logging
from datetime import datetime, timedelta
from typing import Any, Callable, cast

import sqlalchemy as sa
from sqlalchemy import delete, insert, select, update
from sqlalchemy.engine import CursorResult
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from dnsguard.exceptions import ConcurrentUpdateError
from dnsguard.models.kv_document import KVDocument
from dnsguard.services.timestamps import utcnow

log = logging.getLogger(__name__)


def _is_empty(value: Any) -> bool:
    return value is None or (isinstance(value, (list, dict)) and not value)


class KVStore:
    def __init__(self, db: Session, clock: Callable[[], datetime] = utcnow):
        self.db = db
        self.clock = clock

    def _live(self, now: datetime):
        return sa.or_(KVDocument.expires_at.is_(None), KVDocument.expires_at > now)

    def _expiry(self, now: datetime, ttl_seconds: int | None) -> datetime | None:
        if ttl_seconds is None:
            return None
        return now + timedelta(seconds=ttl_seconds)

    def get_versioned(self, key: str) -> tuple[Any, int]:
        """Return ``(value, version)``; absent or expired documents read as ``(None, 0)``."""
        row = self.db.execute(
            select(KVDocument.value, KVDocument.version).where(
                KVDocument.key == key, self._live(self.clock())
            )
        ).one_or_none()
        if row is None:
            return None, 0
        return copy.deepcopy(row.value), row.version

    def get(self, key: str) -> Any:
        value, _ = self.get_versioned(key)
        return value

    def put(self, key: str, value: Any, ttl_seconds: int | None = None) -> None:
        now = self.clock()
        values = {
            "value": value,
            "expires_at": self._expiry(now, ttl_seconds),
            "updated_at": now,
        }
        result = cast(
            CursorResult,
            self.db.execute(
                update(KVDocument)
                .where(KVDocument.key == key)
                .values(version=KVDocument.version + 1, **values)
            ),
        )
        if not result.rowcount:
            self.db.execute(insert(KVDocument).values(key=key, version=1, **values))
        self.db.commit()

    def delete(self, key: str) -> bool:
        result = cast(CursorResult, self.db.execute(delete(KVDocument).where(KVDocument.key == key)))
        self.db.commit()
        return bool(result.rowcount)

    def list_keys(self, prefix: str) -> list[str]:
        rows = self.db.execute(
            select(KVDocument.key)
            .where(KVDocument.key.startswith(prefix, autoescape=True), self._live(self.clock()))
            .order_by(KVDocument.key)
        ).all()
        return [r.key for r in rows]

    def compare_and_set(
        self,
        key: str,
        value: Any,
        expected_version: int,
        ttl_seconds: int | None = None,
    ) -> bool:
        """Write ``value`` only if the stored version still equals ``expected_version``.

        ``expected_version == 0`` means "only if absent".
        """
        now = self.clock()
        values = {
            "value": value,
            "expires_at": self._expiry(now, ttl_seconds),
            "updated_at": now,
        }

        if expected_version == 0:
            # An expired row still occupies the key
            self.db.execute(
                delete(KVDocument).where(KVDocument.key == key, KVDocument.expires_at <= now)
            )
            try:
                self.db.execute(insert(KVDocument).values(key=key, version=1, **values))
                self.db.commit()
            except IntegrityError:
                self.db.rollback()
                return False
            return True

        result = cast(
            CursorResult,
            self.db.execute(
                update(KVDocument)
                .where(KVDocument.key == key, KVDocument.version == expected_version)
                .values(version=KVDocument.version + 1, **values)
            ),
        )
        self.db.commit()
        return result.rowcount == 1

    def compare_and_delete(self, key: str, expected_version: int) -> bool:
        result = cast(
            CursorResult,
            self.db.execute(
                delete(KVDocument).where(
                    KVDocument.key == key, KVDocument.version == expected_version
                )
            ),
        )
        self.db.commit()
        return result.rowcount == 1

    def update(
        self,
        key: str,
        mutate: Callable[[Any], Any],
        ttl_seconds: int | None = None,
        retries: int = 5,
    ) -> Any:
        """Atomic read-modify-write.

        ``mutate`` receives a private copy of the current value (``None`` when
        absent) and returns the new one. Nothing is written when the value is
        unchanged; an empty result deletes the document. Conflicting writers
        cause a re-read and a fresh call to ``mutate``.
        """
        for attempt in range(retries):
            current, version = self.get_versioned(key)
            new = mutate(copy.deepcopy(current))

            if new == current:
                return current

            if _is_empty(new):
                if version == 0 or self.compare_and_delete(key, version):
                    return None
            elif self.compare_and_set(key, new, version, ttl_seconds=ttl_seconds):
                return new

            log.debug(f"Write conflict on {key} (attempt {attempt + 1}/{retries})")

        raise ConcurrentUpdateError(f"Concurrent update on {key}; gave up after {retries} attempts")

    def purge_expired(self, now: datetime | None = None) -> int:
        now = now or self.clock()
        result = cast(
            CursorResult,
            self.db.execute(
                delete(KVDocument).where(
                    KVDocument.expires_at.is_not(None), KVDocument.expires_at <= now
                )
            ),
        )
        self.db.commit()
        return result.rowcount or 0
