"""Serialize routed orders into a bounded LLM context window."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Literal, Sequence

from omsassist.formatting import format_date, format_money
from omsassist.models import Order
from omsassist.routing.filters import extract_keywords

_PRICING = re.compile(r"\b(cost|costs|price|priced|pricing|total|value|revenue|invoice|billing|amount|owe)\b|\$", re.I)
_LINE_ITEMS = re.compile(r"\b(production|machine|machines|progress|line items?|items|quantity|quantities|made)\b", re.I)
_SHIPMENTS = re.compile(r"\b(ship|shipped|shipping|shipment|shipments|tracking|address|deliver\w*|carrier)\b", re.I)
_FILES = re.compile(r"\b(files?|attachments?|attached|artwork|pdfs?)\b", re.I)

MAX_HISTORY_EVENTS = 10


@dataclass(frozen=True)
class QueryFocus:
    pricing: bool = False
    line_items: bool = False
    shipments: bool = False
    files: bool = False


def detect_focus(query: str) -> QueryFocus:
    return QueryFocus(
        pricing=bool(_PRICING.search(query)),
        line_items=bool(_LINE_ITEMS.search(query)),
        shipments=bool(_SHIPMENTS.search(query)),
        files=bool(_FILES.search(query)),
    )


@dataclass(frozen=True)
class BuiltContext:
    text: str
    orders: tuple[Order, ...]
    mode: Literal["single", "summary", "empty"]
    truncated: bool = False


@dataclass(frozen=True)
class ContextBuilderConfig:
    """Configuration for context construction."""

    max_orders: int = 10
    char_budget: int = 12_000
    max_line_items: int = 8


class ContextBuilder:
    """Builds the order context handed to the generation backend."""

    def __init__(self, config: ContextBuilderConfig | None = None) -> None:
        self._config = config or ContextBuilderConfig()

    def build(
        self,
        query: str,
        orders: Sequence[Order],
        *,
        max_orders: int | None = None,
        include_line_items: bool = False,
        include_shipments: bool = False,
        include_files: bool = False,
    ) -> BuiltContext:
        if not orders:
            return BuiltContext(text="", orders=(), mode="empty")
        focus = detect_focus(query)
        line_items = include_line_items or focus.line_items
        shipments = include_shipments or focus.shipments
        files = include_files or focus.files
        if len(orders) == 1:
            text = self._single(orders[0], line_items=True, shipments=True)
            truncated = len(text) > self._config.char_budget
            return BuiltContext(text=text[: self._config.char_budget], orders=(orders[0],), mode="single", truncated=truncated)

        limit = max(1, min(max_orders or self._config.max_orders, self._config.max_orders))
        ranked = prioritize_orders(query, orders)
        blocks: list[str] = []
        included: list[Order] = []
        used = 0
        for order in ranked[:limit]:
            block = self._compact(
                order, pricing=focus.pricing, line_items=line_items, shipments=shipments, files=files
            )
            if used + len(block) > self._config.char_budget and included:
                break
            blocks.append(block)
            included.append(order)
            used += len(block) + 2
        header = f"{len(orders)} matching orders; showing {len(included)}."
        return BuiltContext(
            text="\n\n".join([header, *blocks]),
            orders=tuple(included),
            mode="summary",
            truncated=len(included) < len(orders),
        )

    def _compact(self, order: Order, *, pricing: bool, line_items: bool, shipments: bool, files: bool) -> str:
        lines = [
            f"Job {order.job_number} | {order.customer.company or 'Unknown customer'} | "
            f"status {order.status or 'Unknown'} | priority {order.priority} | due {format_date(order.due_date)}",
        ]
        if order.description:
            lines.append(f"  {order.description[:200]}")
        if pricing:
            lines.append(
                f"  subtotal {format_money(order.pricing.subtotal, order.pricing.currency)}, "
                f"tax {format_money(order.pricing.tax, order.pricing.currency)}, "
                f"total {format_money(order.pricing.total, order.pricing.currency)}"
            )
        else:
            lines.append(f"  total {format_money(order.pricing.total, order.pricing.currency)}")
        if order.tags:
            lines.append("  tags: " + ", ".join(order.tag_names))
        if line_items:
            for item in order.line_items[: self._config.max_line_items]:
                lines.append("  - " + _line_item(item))
        if shipments:
            for shipment in order.shipments:
                lines.append(
                    f"  shipment {shipment.shipment_number}: {shipment.status or ('shipped' if shipment.shipped else 'pending')}"
                    + (f", tracking {shipment.tracking_number}" if shipment.tracking_number else "")
                )
        if files and order.files:
            lines.append(f"  files: {len(order.files)} attached (" + ", ".join(item.name for item in order.files) + ")")
        return "\n".join(lines)

    def _single(self, order: Order, *, line_items: bool, shipments: bool) -> str:
        customer = order.customer
        lines = [
            f"Job {order.job_number}" + (f" (order {order.order_number})" if order.order_number else ""),
            f"Customer: {customer.company or 'Unknown'}",
        ]
        contact = ", ".join(value for value in (customer.contact_person, customer.phone, customer.email) if value)
        if contact:
            lines.append(f"Contact: {contact}")
        if customer.price_tier:
            lines.append(f"Price tier: {customer.price_tier}")
        lines += [
            f"Status: {order.status or 'Unknown'}",
            f"Priority: {order.priority}" + (" (rush)" if order.is_rush else ""),
            f"Entered: {format_date(order.date_entered)}",
            f"Requested ship date: {format_date(order.requested_ship_date)}",
            f"Date due: {format_date(order.date_due)}",
            f"Description: {order.description or 'n/a'}",
            f"Pricing: subtotal {format_money(order.pricing.subtotal, order.pricing.currency)}, "
            f"tax {format_money(order.pricing.tax, order.pricing.currency)}, "
            f"total {format_money(order.pricing.total, order.pricing.currency)}",
        ]
        if order.comments:
            lines.append(f"Comments: {order.comments}")
        if order.tags:
            lines.append("Tags: " + ", ".join(f"{tag.tag} ({tag.author})" if tag.author else tag.tag for tag in order.tags))
        if line_items and order.line_items:
            lines.append("Line items:")
            lines.extend("  - " + _line_item(item) for item in order.line_items)
        if shipments and order.shipments:
            lines.append("Shipments:")
            for shipment in order.shipments:
                state = "shipped" if shipment.shipped else "not shipped"
                address = shipment.address.one_line()
                lines.append(
                    f"  - #{shipment.shipment_number} {shipment.method or 'method n/a'}, {state}"
                    + (f", tracking {shipment.tracking_number}" if shipment.tracking_number else "")
                    + (f", to {address}" if address else "")
                )
        if order.files:
            lines.append("Files:")
            lines.extend(f"  - {item.name}" + (f" ({item.file_type})" if item.file_type else "") for item in order.files)
        if order.history:
            lines.append("Recent history:")
            lines.extend(
                f"  - {event.timestamp} {event.event}".rstrip() for event in order.history[-MAX_HISTORY_EVENTS:]
            )
        return "\n".join(lines)


def _line_item(item) -> str:
    parts = [item.description or item.category or "item"]
    if item.quantity:
        parts.append(f"qty {item.quantity:g}")
    if item.progress is not None:
        parts.append(f"{item.progress:g}% complete")
    if item.machine:
        parts.append(f"on {item.machine}")
    if item.total_price:
        parts.append(format_money(item.total_price))
    return ", ".join(parts)


def prioritize_orders(query: str, orders: Sequence[Order]) -> list[Order]:
    """Stable sort putting orders whose text mentions the query terms first."""

    terms = extract_keywords(query)
    if not terms:
        return list(orders)

    def relevance(order: Order) -> int:
        score = 0
        description = order.description.lower()
        company = order.customer.company.lower()
        tags = " ".join(order.tag_names).lower()
        items = " ".join(item.description for item in order.line_items).lower()
        comments = order.comments.lower()
        for term in terms:
            score += 10 if term in description else 0
            score += 5 if term in company else 0
            score += 7 if term in tags else 0
            score += 8 if term in items else 0
            score += 3 if term in comments else 0
        return score

    return sorted(orders, key=relevance, reverse=True)


__all__ = ["BuiltContext", "ContextBuilder", "ContextBuilderConfig", "QueryFocus", "detect_focus", "prioritize_orders"]
