"""Vector index population and change tracking."""

from .documents import fingerprint_order, order_from_metadata, order_to_metadata, order_to_search_text
from .service import ChangeTracker, VectorSyncService

__all__ = [
    "ChangeTracker",
    "VectorSyncService",
    "fingerprint_order",
    "order_from_metadata",
    "order_to_metadata",
    "order_to_search_text",
]
