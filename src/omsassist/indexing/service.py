"""Change detection and incremental synchronisation of the order vector index."""

from __future__ import annotations

import asyncio
import json
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Iterable, Mapping, Sequence, TypeVar

from omsassist.cache.service import CacheStore
from omsassist.embeddings.service import EmbeddingBackend
from omsassist.embeddings.store import OrderVectorStore, vector_id
from omsassist.errors import DependencyError
from omsassist.indexing.documents import fingerprint_order, order_to_metadata, order_to_search_text
from omsassist.metrics.observability import PipelineMetrics, get_logger
from omsassist.models import ChangeSet, Order, SyncResult, VectorRecord

T = TypeVar("T")

TRACKER_VERSION = 1


class ChangeTracker:
    """Fingerprints of every order the vector index has confirmed."""

    def __init__(self, path: str | Path | None = None) -> None:
        self._path = Path(path) if path else None
        self._hashes: dict[str, str] = {}
        self.last_vector_update: str | None = None
        self._logger = get_logger("indexing.tracker")
        self._load()

    @property
    def path(self) -> Path | None:
        return self._path

    def get(self, job_number: str) -> str | None:
        return self._hashes.get(job_number)

    def record(self, job_number: str, fingerprint: str) -> None:
        self._hashes[job_number] = fingerprint

    def forget(self, job_number: str) -> None:
        self._hashes.pop(job_number, None)

    def job_numbers(self) -> set[str]:
        return set(self._hashes)

    def fingerprints(self) -> dict[str, str]:
        return dict(self._hashes)

    def __len__(self) -> int:
        return len(self._hashes)

    def reset(self) -> bool:
        """Forget everything; return ``False`` when there was nothing to forget."""

        if not self._hashes and self.last_vector_update is None:
            return False
        self._hashes.clear()
        self.last_vector_update = None
        self.save()
        return True

    def save(self) -> None:
        if self._path is None:
            return
        self._path.parent.mkdir(parents=True, exist_ok=True)
        payload = {
            "version": TRACKER_VERSION,
            "lastVectorUpdate": self.last_vector_update,
            "orderHashes": self._hashes,
        }
        tmp = self._path.with_suffix(self._path.suffix + ".tmp")
        tmp.write_text(json.dumps(payload, indent=2, sort_keys=True), encoding="utf-8")
        tmp.replace(self._path)

    def _load(self) -> None:
        if self._path is None or not self._path.exists():
            return
        try:
            payload = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            self._logger.warning("tracker.unreadable", path=str(self._path), detail=str(exc))
            return
        hashes = payload.get("orderHashes") if isinstance(payload, Mapping) else None
        if isinstance(hashes, Mapping):
            self._hashes = {str(key): str(value) for key, value in hashes.items()}
        self.last_vector_update = payload.get("lastVectorUpdate") if isinstance(payload, Mapping) else None


def _batched(items: Sequence[T], size: int) -> Iterable[Sequence[T]]:
    step = max(1, size)
    for offset in range(0, len(items), step):
        yield items[offset : offset + step]


class VectorSyncService:
    """Keeps the vector index aligned with the authoritative order set."""

    def __init__(
        self,
        store: OrderVectorStore,
        embeddings: EmbeddingBackend,
        tracker: ChangeTracker | None = None,
        *,
        batch_size: int = 50,
        timeout_seconds: float = 30.0,
        cache: CacheStore | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._store = store
        self._embeddings = embeddings
        self._tracker = tracker or ChangeTracker()
        self._batch_size = batch_size
        self._timeout = timeout_seconds
        self._cache = cache
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._lock = asyncio.Lock()
        self._runs = 0
        self._last_result: SyncResult | None = None
        self._logger = get_logger("indexing")

    @property
    def tracker(self) -> ChangeTracker:
        return self._tracker

    def detect_order_changes(self, current_orders: Sequence[Order]) -> ChangeSet:
        """Diff ``current_orders`` against the tracker without writing anything."""

        new: list[Order] = []
        updated: list[Order] = []
        unchanged: list[Order] = []
        seen: set[str] = set()
        for order in current_orders:
            if order.job_number in seen:
                continue
            seen.add(order.job_number)
            previous = self._tracker.get(order.job_number)
            if previous is None:
                new.append(order)
            elif previous != fingerprint_order(order):
                updated.append(order)
            else:
                unchanged.append(order)
        deleted = sorted(self._tracker.job_numbers() - seen)
        return ChangeSet(
            new_orders=tuple(new),
            updated_orders=tuple(updated),
            unchanged_orders=tuple(unchanged),
            deleted_order_ids=tuple(deleted),
        )

    async def perform_incremental_update(self, current_orders: Sequence[Order]) -> SyncResult:
        async with self._lock:
            return await self._incremental(current_orders)

    async def force_full_rebuild(self, current_orders: Sequence[Order]) -> SyncResult:
        async with self._lock:
            self._logger.warning("sync.rebuild.start", orders=len(current_orders))
            await self._call(self._store.reset)
            self._tracker.reset()
            return await self._incremental(current_orders)

    def reset_change_tracker(self) -> bool:
        cleared = self._tracker.reset()
        self._logger.info("sync.tracker.reset", cleared=cleared)
        return cleared

    def pending_changes(self, current_orders: Sequence[Order], *, sample_size: int = 5) -> dict[str, Any]:
        changes = self.detect_order_changes(current_orders)
        return {
            "hasChanges": changes.has_changes,
            "summary": changes.summary(),
            "samples": {
                "newOrders": [order.job_number for order in changes.new_orders[:sample_size]],
                "updatedOrders": [order.job_number for order in changes.updated_orders[:sample_size]],
                "deletedOrders": list(changes.deleted_order_ids[:sample_size]),
            },
        }

    def tracker_stats(self) -> dict[str, Any]:
        return {
            "trackedOrders": len(self._tracker),
            "lastVectorUpdate": self._tracker.last_vector_update,
            "persistedAt": str(self._tracker.path) if self._tracker.path else None,
            "runs": self._runs,
            "lastResult": self._last_result.to_dict() if self._last_result else None,
        }

    async def health_check(self) -> dict[str, Any]:
        indexed = await self._call(self._store.count)
        return {"healthy": True, "indexedVectors": indexed, "trackedOrders": len(self._tracker)}

    async def _incremental(self, current_orders: Sequence[Order]) -> SyncResult:
        start = time.perf_counter()
        changes = self.detect_order_changes(current_orders)
        errors: list[str] = []
        deleted = 0
        if changes.deleted_order_ids:
            try:
                await self._call(self._store.delete, [vector_id(job) for job in changes.deleted_order_ids])
            except DependencyError as exc:
                errors.append(f"delete failed: {exc}")
                self._logger.error("sync.delete.failed", count=len(changes.deleted_order_ids), detail=str(exc))
            else:
                for job_number in changes.deleted_order_ids:
                    self._tracker.forget(job_number)
                deleted = len(changes.deleted_order_ids)

        new_ids = {order.job_number for order in changes.new_orders}
        created = 0
        updated = 0
        pending = [*changes.new_orders, *changes.updated_orders]
        for batch in _batched(pending, self._batch_size):
            try:
                records = await self._build_records(batch)
                await self._call(self._store.upsert, records)
            except DependencyError as exc:
                errors.append(f"upsert failed for {len(batch)} orders: {exc}")
                self._logger.error(
                    "sync.upsert.failed",
                    jobs=[order.job_number for order in batch],
                    detail=str(exc),
                )
                continue
            for order in batch:
                self._tracker.record(order.job_number, fingerprint_order(order))
                if order.job_number in new_ids:
                    created += 1
                else:
                    updated += 1

        self._tracker.last_vector_update = self._clock().isoformat()
        self._tracker.save()
        if self._cache is not None and (created or updated or deleted):
            self._cache.invalidate_prefix("vector:")
        result = SyncResult(
            new_vectors=created,
            updated_vectors=updated,
            deleted_vectors=deleted,
            unchanged_vectors=len(changes.unchanged_orders),
            total_processed=created + updated + deleted + len(changes.unchanged_orders),
            processing_time_ms=(time.perf_counter() - start) * 1000,
            errors=tuple(errors),
        )
        self._runs += 1
        self._last_result = result
        PipelineMetrics.observe_sync(upserted=created + updated, deleted=deleted, tracked=len(self._tracker))
        self._logger.info("sync.incremental.complete", **result.to_dict())
        return result

    async def _build_records(self, orders: Sequence[Order]) -> list[VectorRecord]:
        texts = [order_to_search_text(order) for order in orders]
        vectors = await self._call(self._embeddings.embed_documents, texts)
        return [
            VectorRecord(
                id=vector_id(order.job_number),
                embedding=tuple(vector),
                document=text,
                metadata=order_to_metadata(order),
            )
            for order, text, vector in zip(orders, texts, vectors)
        ]

    async def _call(self, fn: Callable[..., T], *args: Any) -> T:
        try:
            return await asyncio.wait_for(asyncio.to_thread(fn, *args), timeout=self._timeout)
        except asyncio.TimeoutError as exc:
            raise DependencyError(f"{getattr(fn, '__name__', 'vector call')} timed out", component="vectors") from exc
        except DependencyError:
            raise
        except Exception as exc:
            raise DependencyError(str(exc) or exc.__class__.__name__, component="vectors") from exc


__all__ = ["ChangeTracker", "VectorSyncService"]
