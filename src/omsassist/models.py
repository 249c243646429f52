"""Shared domain models used across the OMS Assist pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from typing import Any, Literal, Mapping, Sequence

Strategy = Literal["api", "vector", "hybrid", "error"]
Confidence = Literal["high", "medium", "low"]
Freshness = Literal["fresh", "cached", "stale"]

CLOSED_STATUSES = frozenset({"closed", "shipped", "completed"})
RUSH_PRIORITIES = frozenset({"rush", "must"})


@dataclass(frozen=True)
class Customer:
    company: str = ""
    contact_person: str = ""
    phone: str = ""
    email: str = ""
    price_tier: str = ""


@dataclass(frozen=True)
class Pricing:
    subtotal: float = 0.0
    tax: float = 0.0
    total: float = 0.0
    currency: str = "USD"


@dataclass(frozen=True)
class LineItem:
    description: str = ""
    quantity: float = 0.0
    unit_price: float = 0.0
    total_price: float = 0.0
    progress: float | None = None
    machine: str = ""
    category: str = ""
    status: str = ""


@dataclass(frozen=True)
class Address:
    company: str = ""
    street: str = ""
    city: str = ""
    state: str = ""
    zip_code: str = ""
    country: str = ""

    def one_line(self) -> str:
        parts = [self.company, self.street, self.city, self.state, self.zip_code, self.country]
        return ", ".join(part for part in parts if part)


@dataclass(frozen=True)
class Shipment:
    shipment_number: int = 0
    status: str = ""
    method: str = ""
    tracking_number: str | None = None
    address: Address = field(default_factory=Address)
    shipped: bool = False


@dataclass(frozen=True)
class Tag:
    tag: str
    author: str = ""
    entered_at: str = ""


@dataclass(frozen=True)
class FileAttachment:
    name: str
    file_type: str = ""
    url: str = ""


@dataclass(frozen=True)
class HistoryEvent:
    event: str
    timestamp: str = ""
    author: str = ""


@dataclass(frozen=True)
class Order:
    """Canonical order record; ``job_number`` is its identity."""

    job_number: str
    order_number: str = ""
    status: str = ""
    priority: str = "normal"
    customer: Customer = field(default_factory=Customer)
    description: str = ""
    comments: str = ""
    date_entered: date | None = None
    requested_ship_date: date | None = None
    date_due: date | None = None
    pricing: Pricing = field(default_factory=Pricing)
    line_items: tuple[LineItem, ...] = ()
    shipments: tuple[Shipment, ...] = ()
    tags: tuple[Tag, ...] = ()
    history: tuple[HistoryEvent, ...] = ()
    files: tuple[FileAttachment, ...] = ()
    is_rush: bool = False
    last_updated: str = ""

    @property
    def due_date(self) -> date | None:
        return self.requested_ship_date or self.date_due

    @property
    def total_value(self) -> float:
        return self.pricing.total

    @property
    def is_closed(self) -> bool:
        return self.status.strip().lower() in CLOSED_STATUSES

    @property
    def tag_names(self) -> tuple[str, ...]:
        return tuple(tag.tag for tag in self.tags)

    def to_dict(self) -> dict[str, Any]:
        return {
            "jobNumber": self.job_number,
            "orderNumber": self.order_number,
            "status": self.status,
            "priority": self.priority,
            "customer": {
                "company": self.customer.company,
                "contactPerson": self.customer.contact_person,
                "phone": self.customer.phone,
                "email": self.customer.email,
                "priceTier": self.customer.price_tier,
            },
            "description": self.description,
            "comment": self.comments,
            "dateEntered": _iso(self.date_entered),
            "requestedShipDate": _iso(self.requested_ship_date),
            "dateDue": _iso(self.date_due),
            "pricing": {
                "subtotal": self.pricing.subtotal,
                "salesTax": self.pricing.tax,
                "totalDue": self.pricing.total,
                "currency": self.pricing.currency,
            },
            "lineItems": [
                {
                    "description": item.description,
                    "category": item.category,
                    "quantity": item.quantity,
                    "unitPrice": item.unit_price,
                    "totalPrice": item.total_price,
                    "progress": item.progress,
                    "machine": item.machine,
                    "status": item.status,
                }
                for item in self.line_items
            ],
            "shipments": [
                {
                    "shipmentNumber": shipment.shipment_number,
                    "status": shipment.status,
                    "shippingMethod": shipment.method,
                    "trackingNumber": shipment.tracking_number,
                    "shipped": shipment.shipped,
                    "shipToAddress": {
                        "company": shipment.address.company,
                        "street": shipment.address.street,
                        "city": shipment.address.city,
                        "state": shipment.address.state,
                        "zipCode": shipment.address.zip_code,
                        "country": shipment.address.country,
                    },
                }
                for shipment in self.shipments
            ],
            "tags": [
                {"tag": tag.tag, "author": tag.author, "enteredAt": tag.entered_at}
                for tag in self.tags
            ],
            "history": [
                {"event": event.event, "timestamp": event.timestamp, "author": event.author}
                for event in self.history
            ],
            "files": [
                {"fileName": item.name, "fileType": item.file_type, "url": item.url}
                for item in self.files
            ],
            "workflow": {"isRush": self.is_rush},
            "metadata": {"lastUpdated": self.last_updated, "tags": list(self.tag_names)},
        }


def _iso(value: date | None) -> str | None:
    return value.isoformat() if value else None


@dataclass(frozen=True)
class VectorRecord:
    """Derived index entry for a single order."""

    id: str
    embedding: tuple[float, ...]
    document: str
    metadata: Mapping[str, Any]


@dataclass(frozen=True)
class VectorMatch:
    """Nearest-neighbour hit returned by the vector index."""

    job_number: str
    score: float
    metadata: Mapping[str, Any] = field(default_factory=dict)
    document: str = ""


@dataclass(frozen=True)
class ChangeSet:
    new_orders: tuple[Order, ...] = ()
    updated_orders: tuple[Order, ...] = ()
    unchanged_orders: tuple[Order, ...] = ()
    deleted_order_ids: tuple[str, ...] = ()

    @property
    def has_changes(self) -> bool:
        return bool(self.new_orders or self.updated_orders or self.deleted_order_ids)

    def summary(self) -> dict[str, int]:
        return {
            "newOrders": len(self.new_orders),
            "updatedOrders": len(self.updated_orders),
            "unchangedOrders": len(self.unchanged_orders),
            "deletedOrders": len(self.deleted_order_ids),
        }


@dataclass(frozen=True)
class SyncResult:
    new_vectors: int = 0
    updated_vectors: int = 0
    deleted_vectors: int = 0
    unchanged_vectors: int = 0
    total_processed: int = 0
    processing_time_ms: float = 0.0
    errors: tuple[str, ...] = ()

    @property
    def success(self) -> bool:
        return not self.errors

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "newVectors": self.new_vectors,
            "updatedVectors": self.updated_vectors,
            "deletedVectors": self.deleted_vectors,
            "unchangedVectors": self.unchanged_vectors,
            "totalProcessed": self.total_processed,
            "processingTime": round(self.processing_time_ms, 2),
            "errors": list(self.errors),
        }


@dataclass(frozen=True)
class RouterResult:
    """Outcome of routing a query; never raised, always returned."""

    strategy: Strategy
    orders: tuple[Order, ...] = ()
    vector_results: tuple[VectorMatch, ...] = ()
    confidence: Confidence = "low"
    processing_time_ms: float = 0.0
    data_freshness: Freshness = "fresh"
    rule: str = ""
    filter_description: str = ""
    not_found: tuple[str, ...] = ()
    error: str | None = None
    fallbacks: tuple[str, ...] = ()


@dataclass(frozen=True)
class ChatMessage:
    role: Literal["user", "assistant"]
    content: str
    timestamp: float
    context: Mapping[str, Any] | None = None


@dataclass(frozen=True)
class SessionContext:
    last_query: str | None = None
    focused_customer: str | None = None
    focused_job: str | None = None
    shown_orders: tuple[Order, ...] = ()
    current_filter: str | None = None


@dataclass(frozen=True)
class Session:
    session_id: str
    messages: tuple[ChatMessage, ...] = ()
    last_activity: float = 0.0
    context: SessionContext = field(default_factory=SessionContext)


@dataclass(frozen=True)
class CacheEntry:
    key: str
    value: Any
    created_at: float
    ttl: float
    size_bytes: int


def dedupe_orders(orders: Sequence[Order]) -> tuple[Order, ...]:
    """Drop repeated job numbers, keeping the first occurrence."""

    seen: set[str] = set()
    ordered: list[Order] = []
    for order in orders:
        if order.job_number in seen:
            continue
        seen.add(order.job_number)
        ordered.append(order)
    return tuple(ordered)
