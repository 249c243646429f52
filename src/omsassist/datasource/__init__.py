"""Order data source adapters."""

from .normalize import normalize_order, normalize_orders
from .service import (
    JsonSnapshotSource,
    OMSApiSource,
    OrderRepository,
    OrderSource,
    TransientSourceError,
    build_order_source,
)

__all__ = [
    "JsonSnapshotSource",
    "OMSApiSource",
    "OrderRepository",
    "OrderSource",
    "TransientSourceError",
    "build_order_source",
    "normalize_order",
    "normalize_orders",
]
