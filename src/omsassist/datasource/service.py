"""Order sources: the live OMS API and the persisted JSON snapshot."""

from __future__ import annotations

import asyncio
import json
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Mapping, Protocol

import httpx
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential_jitter

from omsassist.cache.service import CacheStore, get_or_set, make_cache_key
from omsassist.datasource.normalize import DEFAULT_TIMEZONE, normalize_order, normalize_orders
from omsassist.errors import DependencyError, NotFoundError
from omsassist.metrics.observability import get_logger
from omsassist.models import Freshness, Order

SUPPORTED_SNAPSHOT_VERSIONS = frozenset({"1", "1.0", "2", "2.0"})
MAX_API_PAGES = 200


class TransientSourceError(DependencyError):
    """Source failure worth a single retry (timeouts, transport errors, 5xx)."""


@dataclass
class SourceStats:
    calls: int = 0
    errors: int = 0
    last_fetch_ms: float = 0.0
    last_order_count: int = 0
    last_error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "calls": self.calls,
            "errors": self.errors,
            "lastFetchMs": round(self.last_fetch_ms, 2),
            "lastOrderCount": self.last_order_count,
            "lastError": self.last_error,
        }


class OrderSource(Protocol):
    """Authoritative provider of the current order set."""

    name: str

    async def fetch_orders(self) -> list[Order]:
        """Return every current order."""

    async def get_order(self, job_number: str) -> Order | None:
        """Return a single order by job number, or ``None``."""

    async def health_check(self) -> dict[str, Any]:
        """Return a health payload including a ``healthy`` flag."""

    def stats(self) -> dict[str, Any]:
        """Return call counters."""


@dataclass(frozen=True)
class SnapshotSummary:
    total_orders: int = 0
    last_updated: str | None = None
    scraped_at: str | None = None
    version: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "totalOrders": self.total_orders,
            "lastUpdated": self.last_updated,
            "scrapedAt": self.scraped_at,
            "version": self.version,
        }


@dataclass
class _SnapshotMemo:
    mtime: float = -1.0
    orders: list[Order] = field(default_factory=list)
    summary: SnapshotSummary = field(default_factory=SnapshotSummary)


class JsonSnapshotSource:
    """Reads ``{orders, summary}`` from disk; a missing file is an empty order set."""

    name = "snapshot"

    def __init__(
        self,
        path: str | Path,
        *,
        stale_after: timedelta = timedelta(hours=24),
        timezone: str = DEFAULT_TIMEZONE,
    ) -> None:
        self._path = Path(path)
        self._stale_after = stale_after
        self._timezone = timezone
        self._memo = _SnapshotMemo()
        self._stats = SourceStats()
        self._logger = get_logger("datasource.snapshot")

    @property
    def path(self) -> Path:
        return self._path

    async def fetch_orders(self) -> list[Order]:
        return list(await asyncio.to_thread(self._load))

    async def get_order(self, job_number: str) -> Order | None:
        for order in await self.fetch_orders():
            if order.job_number == job_number:
                return order
        return None

    def summary(self) -> SnapshotSummary:
        self._load()
        return self._memo.summary

    def freshness(self, *, now: datetime | None = None) -> Freshness:
        last_updated = self.summary().last_updated
        if not last_updated:
            return "fresh"
        try:
            stamp = datetime.fromisoformat(last_updated.replace("Z", "+00:00"))
        except ValueError:
            return "fresh"
        if stamp.tzinfo is None:
            stamp = stamp.replace(tzinfo=timezone.utc)
        current = now or datetime.now(timezone.utc)
        return "stale" if current - stamp > self._stale_after else "fresh"

    async def health_check(self) -> dict[str, Any]:
        orders = await self.fetch_orders()
        return {
            "healthy": True,
            "source": self.name,
            "path": str(self._path),
            "exists": self._path.exists(),
            "orderCount": len(orders),
            "summary": self._memo.summary.to_dict(),
        }

    def stats(self) -> dict[str, Any]:
        return self._stats.to_dict()

    def _load(self) -> list[Order]:
        start = time.perf_counter()
        self._stats.calls += 1
        try:
            mtime = self._path.stat().st_mtime
        except FileNotFoundError:
            if self._memo.mtime != 0.0:
                self._logger.warning("snapshot.missing", path=str(self._path))
            self._memo = _SnapshotMemo(mtime=0.0)
            return self._memo.orders
        if mtime == self._memo.mtime:
            return self._memo.orders
        try:
            payload = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            self._stats.errors += 1
            self._stats.last_error = str(exc)
            raise DependencyError(f"Order snapshot unreadable: {exc}", component="snapshot") from exc
        raw_orders, summary = self._split_payload(payload)
        orders = normalize_orders(raw_orders, timezone=self._timezone)
        self._memo = _SnapshotMemo(mtime=mtime, orders=orders, summary=summary)
        self._stats.last_fetch_ms = (time.perf_counter() - start) * 1000
        self._stats.last_order_count = len(orders)
        self._logger.info("snapshot.loaded", path=str(self._path), orders=len(orders), version=summary.version)
        return orders

    def _split_payload(self, payload: Any) -> tuple[list[Any], SnapshotSummary]:
        if isinstance(payload, list):
            return payload, SnapshotSummary(total_orders=len(payload))
        if not isinstance(payload, Mapping):
            raise DependencyError("Order snapshot must be a JSON object or array", component="snapshot")
        raw_orders = payload.get("orders") or []
        raw_summary = payload.get("summary") if isinstance(payload.get("summary"), Mapping) else {}
        version = raw_summary.get("version")
        version = str(version) if version is not None else None
        if version is not None and version not in SUPPORTED_SNAPSHOT_VERSIONS:
            self._logger.warning("snapshot.unknown_version", version=version, path=str(self._path))
        summary = SnapshotSummary(
            total_orders=int(raw_summary.get("totalOrders") or len(raw_orders)),
            last_updated=raw_summary.get("lastUpdated"),
            scraped_at=raw_summary.get("scrapedAt"),
            version=version,
        )
        return list(raw_orders), summary


class OMSApiSource:
    """Paginated reader for the live OMS jobs API."""

    name = "api"

    def __init__(
        self,
        base_url: str,
        *,
        token: str | None = None,
        page_size: int = 500,
        timeout: float = 15.0,
        timezone: str = DEFAULT_TIMEZONE,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        headers = {"Accept": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        self._client = client or httpx.AsyncClient(base_url=base_url, timeout=timeout)
        self._headers = headers
        self._page_size = page_size
        self._timeout = timeout
        self._timezone = timezone
        self._stats = SourceStats()
        self._logger = get_logger("datasource.api")

    async def fetch_orders(self) -> list[Order]:
        start = time.perf_counter()
        raw: list[Any] = []
        for page in range(1, MAX_API_PAGES + 1):
            payload = await self._get_json(
                "/api/jobs",
                params={"page-size": self._page_size, "requested-page": page},
            )
            if isinstance(payload, list):
                raw.extend(payload)
                break
            entities = payload.get("Entities") or payload.get("entities") or []
            raw.extend(entities)
            if not payload.get("HasNext") or not entities:
                break
        orders = normalize_orders(raw, timezone=self._timezone)
        self._stats.last_fetch_ms = (time.perf_counter() - start) * 1000
        self._stats.last_order_count = len(orders)
        self._logger.info("api.fetch.complete", orders=len(orders), duration_ms=self._stats.last_fetch_ms)
        return orders

    async def get_order(self, job_number: str) -> Order | None:
        payload = await self._get_json(f"/api/jobs/{job_number}", allow_missing=True)
        if payload is None:
            return None
        if isinstance(payload, Mapping) and isinstance(payload.get("Entity"), Mapping):
            payload = payload["Entity"]
        return normalize_order(payload, timezone=self._timezone) if isinstance(payload, Mapping) else None

    async def health_check(self) -> dict[str, Any]:
        start = time.perf_counter()
        await self._get_json("/api/jobs", params={"page-size": 1, "requested-page": 1})
        return {
            "healthy": True,
            "source": self.name,
            "responseTime": round((time.perf_counter() - start) * 1000, 2),
        }

    def stats(self) -> dict[str, Any]:
        return self._stats.to_dict()

    async def aclose(self) -> None:
        await self._client.aclose()

    @retry(
        retry=retry_if_exception_type(TransientSourceError),
        stop=stop_after_attempt(2),
        wait=wait_exponential_jitter(0.1, 1.0),
        reraise=True,
    )
    async def _get_json(
        self,
        path: str,
        *,
        params: Mapping[str, Any] | None = None,
        allow_missing: bool = False,
    ) -> Any:
        self._stats.calls += 1
        try:
            response = await self._client.get(path, params=params, headers=self._headers, timeout=self._timeout)
        except httpx.TimeoutException as exc:
            self._record_error(f"timeout calling {path}")
            raise TransientSourceError(f"OMS API timed out on {path}", component="api") from exc
        except httpx.HTTPError as exc:
            self._record_error(str(exc))
            raise TransientSourceError(f"OMS API unreachable: {exc}", component="api") from exc
        if response.status_code == 404 and allow_missing:
            return None
        if response.status_code >= 500:
            self._record_error(f"HTTP {response.status_code} on {path}")
            raise TransientSourceError(f"OMS API returned {response.status_code}", component="api")
        if response.status_code >= 400:
            self._record_error(f"HTTP {response.status_code} on {path}")
            raise DependencyError(f"OMS API rejected request with {response.status_code}", component="api")
        try:
            return response.json()
        except ValueError as exc:
            self._record_error("invalid JSON")
            raise DependencyError("OMS API returned invalid JSON", component="api") from exc

    def _record_error(self, message: str) -> None:
        self._stats.errors += 1
        self._stats.last_error = message
        self._logger.warning("api.request.failed", detail=message)


class OrderRepository:
    """Cache-fronted access to the configured order source."""

    def __init__(self, source: OrderSource, cache: CacheStore, *, ttl_seconds: float = 300.0) -> None:
        self._source = source
        self._cache = cache
        self._ttl = ttl_seconds
        self._logger = get_logger("datasource")

    @property
    def source(self) -> OrderSource:
        return self._source

    @property
    def _key(self) -> str:
        return make_cache_key("orders", source=self._source.name, scope="all")

    async def load_orders(self, *, prefer_fresh: bool = False) -> tuple[tuple[Order, ...], Freshness]:
        """Return the full order set and where it came from."""

        if prefer_fresh:
            self._cache.delete(self._key)
        orders, hit = await get_or_set(self._cache, self._key, self._fetch, ttl=self._ttl)
        if hit:
            return orders, "cached"
        freshness = getattr(self._source, "freshness", None)
        return orders, freshness() if callable(freshness) else "fresh"

    async def get_order(self, job_number: str, *, prefer_fresh: bool = False) -> Order:
        cached = None if prefer_fresh else self._cache.get(self._key)
        if cached:
            for order in cached:
                if order.job_number == job_number:
                    return order
        order = await self._source.get_order(job_number)
        if order is None:
            raise NotFoundError(f"Job {job_number}")
        return order

    def invalidate(self) -> int:
        return self._cache.invalidate_prefix("orders:")

    async def _fetch(self) -> tuple[Order, ...]:
        orders = await self._source.fetch_orders()
        self._logger.info("orders.loaded", source=self._source.name, count=len(orders))
        return tuple(orders)


def build_order_source(settings) -> OrderSource:
    if settings.oms_api_base_url:
        return OMSApiSource(
            settings.oms_api_base_url,
            token=settings.oms_api_token,
            page_size=settings.oms_api_page_size,
            timeout=settings.oms_api_timeout_seconds,
            timezone=settings.business_timezone,
        )
    return JsonSnapshotSource(settings.orders_snapshot_path, timezone=settings.business_timezone)


__all__ = [
    "JsonSnapshotSource",
    "OMSApiSource",
    "OrderRepository",
    "OrderSource",
    "SnapshotSummary",
    "TransientSourceError",
    "build_order_source",
]
