"""Projection of orders onto embedding text, index metadata and fingerprints."""

from __future__ import annotations

import hashlib
import json
from typing import Any, Mapping

from omsassist.datasource.normalize import parse_date
from omsassist.embeddings.store import vector_id
from omsassist.formatting import format_date
from omsassist.models import Customer, Order, Pricing

DESCRIPTION_PREFIX_CHARS = 500
MAX_LINE_ITEMS_IN_TEXT = 20


def order_to_search_text(order: Order) -> str:
    lines = [
        f"Job {order.job_number}" + (f" | Order {order.order_number}" if order.order_number else ""),
        f"Customer: {order.customer.company}",
        f"Status: {order.status} | Priority: {order.priority}" + (" | Rush" if order.is_rush else ""),
        f"Description: {order.description}",
    ]
    if order.due_date:
        lines.append(f"Due: {format_date(order.due_date)}")
    if order.tags:
        lines.append("Tags: " + ", ".join(order.tag_names))
    if order.line_items:
        items = [
            f"{item.description} ({item.quantity:g})" if item.quantity else item.description
            for item in order.line_items[:MAX_LINE_ITEMS_IN_TEXT]
            if item.description
        ]
        if items:
            lines.append("Line items: " + "; ".join(items))
    if order.comments:
        lines.append(f"Comments: {order.comments}")
    return "\n".join(lines)


def order_to_metadata(order: Order) -> dict[str, Any]:
    """Lossy projection used for filtering without re-fetching the order."""

    return {
        "jobNumber": order.job_number,
        "customerCompany": order.customer.company,
        "status": order.status,
        "dateEntered": format_date(order.date_entered) if order.date_entered else "",
        "description": order.description[:DESCRIPTION_PREFIX_CHARS],
        "orderNumber": order.order_number,
        "priority": order.priority,
        "totalDue": float(order.pricing.total),
        "lastUpdated": order.last_updated,
    }


def order_from_metadata(metadata: Mapping[str, Any]) -> Order:
    """Partial order rebuilt from index metadata when the source no longer has it."""

    return Order(
        job_number=str(metadata.get("jobNumber", "")),
        order_number=str(metadata.get("orderNumber", "")),
        status=str(metadata.get("status", "")),
        priority=str(metadata.get("priority", "")) or "normal",
        customer=Customer(company=str(metadata.get("customerCompany", ""))),
        description=str(metadata.get("description", "")),
        date_entered=parse_date(metadata.get("dateEntered")),
        pricing=Pricing(total=float(metadata.get("totalDue") or 0.0)),
        last_updated=str(metadata.get("lastUpdated", "")),
    )


def fingerprint_order(order: Order) -> str:
    """Hash of everything written to the index for ``order`` except ``lastUpdated``."""

    metadata = order_to_metadata(order)
    metadata.pop("lastUpdated")
    payload = {"id": vector_id(order.job_number), "text": order_to_search_text(order), "metadata": metadata}
    canonical = json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


__all__ = ["fingerprint_order", "order_from_metadata", "order_to_metadata", "order_to_search_text"]
