from __future__ import annotations

import asyncio
import json
from dataclasses import replace
from pathlib import Path

import pytest

from omsassist.cache import MISS
from omsassist.embeddings import vector_id
from omsassist.errors import DependencyError
from omsassist.indexing import ChangeTracker, VectorSyncService, fingerprint_order


class FlakyStore:
    def __init__(self, inner, fail_upserts: int = 0) -> None:
        self.inner = inner
        self.fail_upserts = fail_upserts

    def upsert(self, records):
        if self.fail_upserts:
            self.fail_upserts -= 1
            raise RuntimeError("vector db down")
        return self.inner.upsert(records)

    def __getattr__(self, name):
        return getattr(self.inner, name)


def test_first_sync_indexes_everything_and_second_is_a_no_op(sync_service, vector_store, orders):
    first = asyncio.run(sync_service.perform_incremental_update(orders))
    assert first.success
    assert first.new_vectors == 5
    assert vector_store.count() == 5

    second = asyncio.run(sync_service.perform_incremental_update(orders))
    assert second.new_vectors == 0
    assert second.updated_vectors == 0
    assert second.deleted_vectors == 0
    assert second.unchanged_vectors == 5


def test_detects_updates_and_deletions(sync_service, vector_store, orders):
    asyncio.run(sync_service.perform_incremental_update(orders))
    changed = [replace(orders[0], status="Shipped"), *orders[1:4]]
    changes = sync_service.detect_order_changes(changed)
    assert [order.job_number for order in changes.updated_orders] == ["1001"]
    assert changes.deleted_order_ids == ("1005",)

    result = asyncio.run(sync_service.perform_incremental_update(changed))
    assert result.updated_vectors == 1
    assert result.deleted_vectors == 1
    assert vector_store.count() == 4
    assert vector_store.snapshot()[vector_id("1001")]["status"] == "Shipped"


def test_last_updated_alone_is_not_a_change(orders):
    original = orders[0]
    touched = replace(original, last_updated="2024-03-13T00:00:00Z")
    assert fingerprint_order(original) == fingerprint_order(touched)


def test_failed_batch_is_retried_on_next_run(vector_store, embeddings, orders):
    flaky = FlakyStore(vector_store, fail_upserts=1)
    service = VectorSyncService(flaky, embeddings, ChangeTracker(), batch_size=2)
    first = asyncio.run(service.perform_incremental_update(orders))
    assert not first.success
    assert first.new_vectors == 3
    assert len(service.tracker) == 3

    second = asyncio.run(service.perform_incremental_update(orders))
    assert second.success
    assert second.new_vectors == 2
    assert vector_store.count() == 5


def test_rebuild_matches_incremental_result(sync_service, vector_store, orders):
    asyncio.run(sync_service.perform_incremental_update(orders))
    incremental = vector_store.snapshot()
    result = asyncio.run(sync_service.force_full_rebuild(orders))
    assert result.new_vectors == 5
    rebuilt = vector_store.snapshot()
    assert set(rebuilt) == set(incremental)
    assert {key: dict(value) for key, value in rebuilt.items()} == {key: dict(value) for key, value in incremental.items()}


def test_reset_tracker_twice(sync_service, orders):
    asyncio.run(sync_service.perform_incremental_update(orders))
    assert sync_service.reset_change_tracker() is True
    assert sync_service.reset_change_tracker() is False
    result = asyncio.run(sync_service.perform_incremental_update(orders))
    assert result.new_vectors == 5


def test_tracker_persists_fingerprints(tmp_path: Path, vector_store, embeddings, orders):
    path = tmp_path / "tracker.json"
    service = VectorSyncService(vector_store, embeddings, ChangeTracker(path))
    asyncio.run(service.perform_incremental_update(orders))
    payload = json.loads(path.read_text(encoding="utf-8"))
    assert set(payload["orderHashes"]) == {order.job_number for order in orders}
    assert payload["lastVectorUpdate"]

    reloaded = VectorSyncService(vector_store, embeddings, ChangeTracker(path))
    assert not reloaded.detect_order_changes(orders).has_changes


def test_sync_invalidates_vector_cache(sync_service, cache, orders):
    cache.set("vector:results:abc", ["stale"])
    asyncio.run(sync_service.perform_incremental_update(orders))
    assert cache.get("vector:results:abc") is MISS
    assert cache.stats().total_entries == 0


def test_pending_changes_reports_samples(sync_service, orders):
    pending = sync_service.pending_changes(orders, sample_size=2)
    assert pending["hasChanges"] is True
    assert pending["summary"]["newOrders"] == 5
    assert pending["samples"]["newOrders"] == ["1001", "1002"]


def test_store_failure_surfaces_as_dependency_error(embeddings, orders):
    class BrokenStore:
        def count(self):
            raise RuntimeError("connection refused")

    service = VectorSyncService(BrokenStore(), embeddings)
    with pytest.raises(DependencyError) as excinfo:
        asyncio.run(service.health_check())
    assert excinfo.value.component == "vectors"
