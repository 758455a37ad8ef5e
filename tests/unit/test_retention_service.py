"""Unit tests for retention service."""

from datetime import datetime, timedelta, timezone

from dnsguard.models.audit_event import AuditEvent
from dnsguard.models.kv_document import KVDocument
from dnsguard.services.kv_store import KVStore
from dnsguard.services.retention import (
    cleanup_expired_documents,
    cleanup_old_audit_events,
    run_retention_job,
)


class TestCleanupExpiredDocuments:
    def test_deletes_only_expired_documents(self, sync_db_session):
        now = datetime.now(timezone.utc)
        past = KVStore(sync_db_session, clock=lambda: now - timedelta(days=31))
        past.put("DNS_SNAPSHOT:z:old", {"records": []}, ttl_seconds=30 * 86400)
        kv = KVStore(sync_db_session)
        kv.put("DNS_SNAPSHOT:z:new", {"records": []}, ttl_seconds=30 * 86400)
        kv.put("SCHEDULED_CHANGES:alice", [])

        deleted = cleanup_expired_documents(sync_db_session)

        assert deleted == 1
        keys = sorted(k for (k,) in sync_db_session.query(KVDocument.key).all())
        assert keys == ["DNS_SNAPSHOT:z:new", "SCHEDULED_CHANGES:alice"]

    def test_returns_zero_when_nothing_expired(self, sync_db_session):
        assert cleanup_expired_documents(sync_db_session) == 0


class TestCleanupOldAuditEvents:
    def test_deletes_events_older_than_cutoff(self, sync_db_session):
        now = datetime.now(timezone.utc)
        sync_db_session.add_all(
            [
                AuditEvent(username="a", action="dns.create", created_at=now - timedelta(days=100)),
                AuditEvent(username="a", action="dns.delete", created_at=now - timedelta(days=1)),
            ]
        )
        sync_db_session.commit()

        deleted = cleanup_old_audit_events(sync_db_session, days=90)

        assert deleted == 1
        remaining = sync_db_session.query(AuditEvent).all()
        assert [e.action for e in remaining] == ["dns.delete"]


class TestRunRetentionJob:
    def test_returns_counts(self, sync_db_session):
        result = run_retention_job(sync_db_session)
        assert result == {"documents_deleted": 0, "audit_events_deleted": 0}
