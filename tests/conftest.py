from __future__ import annotations

from datetime import date, datetime
from typing import Any, Sequence
from uuid import uuid4
from zoneinfo import ZoneInfo

import chromadb
import pytest

from omsassist.cache import TTLCacheStore
from omsassist.datasource import OrderRepository
from omsassist.embeddings import ChromaOrderStore, EmbeddingConfig, HashEmbeddingBackend
from omsassist.indexing import ChangeTracker, VectorSyncService
from omsassist.models import Customer, LineItem, Order, Pricing, Tag
from omsassist.retrieval import RetrievalConfig, VectorSearchService

BUSINESS_TZ = "America/Los_Angeles"


class StaticSource:
    name = "static"

    def __init__(self, orders: Sequence[Order]) -> None:
        self.orders = list(orders)
        self.fetches = 0
        self.failure: Exception | None = None

    async def fetch_orders(self) -> list[Order]:
        self.fetches += 1
        if self.failure is not None:
            raise self.failure
        return list(self.orders)

    async def get_order(self, job_number: str) -> Order | None:
        if self.failure is not None:
            raise self.failure
        for order in self.orders:
            if order.job_number == job_number:
                return order
        return None

    async def health_check(self) -> dict[str, Any]:
        return {"healthy": self.failure is None, "source": self.name}

    def stats(self) -> dict[str, Any]:
        return {"fetches": self.fetches}


@pytest.fixture
def now() -> datetime:
    # Wednesday
    return datetime(2024, 3, 13, 10, 0, tzinfo=ZoneInfo(BUSINESS_TZ))


@pytest.fixture
def orders() -> list[Order]:
    return [
        Order(
            job_number="1001",
            status="Approved",
            customer=Customer(company="Acme Corp", contact_person="Ann Lee", phone="555-0101", email="ann@acme.test"),
            description="Laser cut acrylic signs",
            date_due=date(2024, 3, 10),
            pricing=Pricing(subtotal=140.0, tax=10.0, total=150.0),
            tags=(Tag(tag="laser", author="sam"),),
        ),
        Order(
            job_number="1002",
            status="Shipped",
            customer=Customer(company="Acme Corp", contact_person="Ann Lee", phone="555-0101"),
            description="Vinyl banners for trade show",
            date_due=date(2024, 3, 1),
            pricing=Pricing(total=250.0),
        ),
        Order(
            job_number="1003",
            status="In Production",
            priority="MUST",
            customer=Customer(company="Beta Industries", email="ops@beta.test"),
            description="Embroidered polo shirts",
            date_due=date(2024, 3, 14),
            pricing=Pricing(total=400.0),
            line_items=(LineItem(description="Polo shirt navy", quantity=48, progress=50.0, machine="EMB-2"),),
            tags=(Tag(tag="embroidery"),),
        ),
        Order(
            job_number="1004",
            status="Approved",
            customer=Customer(company="Gamma LLC"),
            description="Screen printed t-shirts",
            date_due=date(2024, 3, 20),
            pricing=Pricing(total=1200.0),
            tags=(Tag(tag="screen"),),
        ),
        Order(
            job_number="1005",
            status="Pending",
            customer=Customer(company="Delta Co"),
            description="Business cards",
            pricing=Pricing(total=80.0),
        ),
    ]


@pytest.fixture
def cache() -> TTLCacheStore:
    return TTLCacheStore(max_bytes=10 * 1024 * 1024, max_entries=500, default_ttl=300)


@pytest.fixture
def source(orders: list[Order]) -> StaticSource:
    return StaticSource(orders)


@pytest.fixture
def repository(source: StaticSource, cache: TTLCacheStore) -> OrderRepository:
    return OrderRepository(source, cache, ttl_seconds=300)


@pytest.fixture
def embeddings() -> HashEmbeddingBackend:
    return HashEmbeddingBackend(EmbeddingConfig(dim=384))


@pytest.fixture
def vector_store() -> ChromaOrderStore:
    return ChromaOrderStore(f"test-{uuid4().hex[:12]}", client=chromadb.EphemeralClient())


@pytest.fixture
def sync_service(vector_store: ChromaOrderStore, embeddings: HashEmbeddingBackend, cache: TTLCacheStore) -> VectorSyncService:
    return VectorSyncService(vector_store, embeddings, ChangeTracker(), batch_size=2, cache=cache)


@pytest.fixture
def retriever(vector_store: ChromaOrderStore, embeddings: HashEmbeddingBackend, cache: TTLCacheStore) -> VectorSearchService:
    return VectorSearchService(vector_store, embeddings, RetrievalConfig(top_k=3, min_score=0.1), cache=cache)
