"""Unit tests for the versioned document store."""

from datetime import timedelta

import pytest

from dnsguard.exceptions import ConcurrentUpdateError
from dnsguard.models.kv_document import KVDocument
from dnsguard.services.kv_store import KVStore


class TestBasicOperations:
    def test_missing_key_reads_as_none(self, kv):
        assert kv.get("nope") is None
        assert kv.get_versioned("nope") == (None, 0)

    def test_put_then_get(self, kv):
        kv.put("doc", {"a": [1, 2]})
        assert kv.get("doc") == {"a": [1, 2]}

    def test_put_bumps_version(self, kv):
        kv.put("doc", 1)
        kv.put("doc", 2)
        value, version = kv.get_versioned("doc")
        assert value == 2
        assert version == 2

    def test_get_returns_private_copy(self, kv):
        kv.put("doc", {"items": [1]})
        value = kv.get("doc")
        value["items"].append(2)
        assert kv.get("doc") == {"items": [1]}

    def test_delete(self, kv):
        kv.put("doc", "x")
        assert kv.delete("doc") is True
        assert kv.get("doc") is None
        assert kv.delete("doc") is False

    def test_list_keys_by_prefix_in_order(self, kv):
        kv.put("Z:b", 1)
        kv.put("Z:a", 1)
        kv.put("Y:a", 1)
        assert kv.list_keys("Z:") == ["Z:a", "Z:b"]

    def test_list_keys_escapes_wildcards(self, kv):
        kv.put("A_B:1", 1)
        kv.put("AXB:1", 1)
        assert kv.list_keys("A_B:") == ["A_B:1"]


class TestExpiry:
    def test_expired_documents_are_invisible(self, sync_db_session, clock):
        kv = KVStore(sync_db_session, clock=clock)
        kv.put("short", "v", ttl_seconds=60)
        assert kv.get("short") == "v"

        clock.advance(timedelta(seconds=61))
        assert kv.get("short") is None
        assert kv.list_keys("sh") == []

    def test_purge_expired_removes_rows(self, sync_db_session, clock):
        kv = KVStore(sync_db_session, clock=clock)
        kv.put("short", "v", ttl_seconds=60)
        kv.put("forever", "v")
        clock.advance(timedelta(hours=1))

        assert kv.purge_expired() == 1
        assert sync_db_session.query(KVDocument).count() == 1

    def test_insert_only_write_reclaims_expired_key(self, sync_db_session, clock):
        kv = KVStore(sync_db_session, clock=clock)
        kv.put("slot", "old", ttl_seconds=10)
        clock.advance(timedelta(seconds=11))

        assert kv.compare_and_set("slot", "new", 0) is True
        assert kv.get("slot") == "new"


class TestCompareAndSet:
    def test_insert_only_fails_when_present(self, kv):
        assert kv.compare_and_set("k", "first", 0) is True
        assert kv.compare_and_set("k", "second", 0) is False
        assert kv.get("k") == "first"

    def test_stale_version_is_rejected(self, kv):
        kv.put("k", "v1")
        _, version = kv.get_versioned("k")
        kv.put("k", "v2")

        assert kv.compare_and_set("k", "lost", version) is False
        assert kv.get("k") == "v2"

    def test_current_version_is_accepted(self, kv):
        kv.put("k", "v1")
        _, version = kv.get_versioned("k")
        assert kv.compare_and_set("k", "v2", version) is True
        assert kv.get_versioned("k") == ("v2", version + 1)


class TestUpdate:
    def test_creates_missing_document(self, kv):
        kv.update("list", lambda cur: (cur or []) + ["a"])
        assert kv.get("list") == ["a"]

    def test_unchanged_value_is_not_written(self, kv):
        kv.put("k", [1])
        kv.update("k", lambda cur: cur)
        assert kv.get_versioned("k") == ([1], 1)

    def test_empty_result_deletes(self, kv):
        kv.put("k", [1])
        kv.update("k", lambda cur: [])
        assert kv.get("k") is None

    def test_retries_after_conflicting_write(self, kv):
        kv.put("k", ["a"])
        interfered = []

        def mutate(cur):
            if not interfered:
                # Another writer gets in between our read and our write
                interfered.append(True)
                kv.put("k", cur + ["other"])
            return cur + ["mine"]

        kv.update("k", mutate)
        assert kv.get("k") == ["a", "other", "mine"]

    def test_gives_up_after_retries(self, kv):
        kv.put("k", 0)

        def mutate(cur):
            kv.put("k", (kv.get("k") or 0) + 100)
            return cur + 1

        with pytest.raises(ConcurrentUpdateError):
            kv.update("k", mutate, retries=3)

    def test_errors_from_mutate_propagate_without_writing(self, kv):
        kv.put("k", [1])

        def mutate(cur):
            raise ValueError("nope")

        with pytest.raises(ValueError):
            kv.update("k", mutate)
        assert kv.get_versioned("k") == ([1], 1)
