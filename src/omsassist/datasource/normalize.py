"""Map heterogeneous OMS payloads onto the canonical :class:`Order`."""

from __future__ import annotations

import re
from datetime import date, datetime, timezone as dt_timezone
from typing import Any, Iterable, Mapping, Sequence
from zoneinfo import ZoneInfo

from omsassist.models import Address, Customer, FileAttachment, HistoryEvent, LineItem, Order, Pricing, Shipment, Tag

_MONEY_NOISE = re.compile(r"[^0-9.\-]")
_SHIPPED_STATES = {"shipped", "delivered", "complete", "completed"}
DEFAULT_TIMEZONE = "America/Los_Angeles"


def _pick(raw: Mapping[str, Any], *names: str, default: Any = None) -> Any:
    for name in names:
        value = raw.get(name)
        if value not in (None, ""):
            return value
    return default


def _text(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


def _mapping(value: Any) -> Mapping[str, Any]:
    return value if isinstance(value, Mapping) else {}


def _items(value: Any) -> Sequence[Any]:
    return value if isinstance(value, (list, tuple)) else ()


def parse_money(value: Any) -> float:
    if value is None or isinstance(value, bool):
        return 0.0
    if isinstance(value, (int, float)):
        return float(value)
    cleaned = _MONEY_NOISE.sub("", str(value))
    if cleaned in ("", "-", ".", "-."):
        return 0.0
    try:
        return float(cleaned)
    except ValueError:
        return 0.0


def parse_number(value: Any) -> float | None:
    if value is None or isinstance(value, bool) or value == "":
        return None
    if isinstance(value, (int, float)):
        return float(value)
    try:
        return float(str(value).strip().rstrip("%"))
    except ValueError:
        return None


def parse_date(value: Any, timezone: str | None = None, *, assume_utc: bool = False) -> date | None:
    """Accept ISO dates/datetimes (with ``Z``), ``MM/DD/YYYY`` and date objects.

    Timestamps carrying an offset are converted to ``timezone`` before taking the
    calendar date; ``assume_utc`` treats naive timestamps as UTC.
    """

    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return _local_date(value, timezone, assume_utc)
    if isinstance(value, date):
        return value
    text = str(value).strip()
    if len(text) > 10 and text[4] == "-" and text[7] == "-" and text[10] in "T ":
        try:
            stamp = datetime.fromisoformat(text.replace("Z", "+00:00").replace("z", "+00:00"))
        except ValueError:
            stamp = None
        if stamp is not None:
            return _local_date(stamp, timezone, assume_utc)
    if len(text) >= 10 and text[4] == "-" and text[7] == "-":
        try:
            return date.fromisoformat(text[:10])
        except ValueError:
            return None
    for fmt in ("%m/%d/%Y", "%m/%d/%y", "%m-%d-%Y"):
        try:
            return datetime.strptime(text.split(" ")[0], fmt).date()
        except ValueError:
            continue
    return None


def _local_date(stamp: datetime, timezone: str | None, assume_utc: bool) -> date:
    if stamp.tzinfo is None:
        if not assume_utc:
            return stamp.date()
        stamp = stamp.replace(tzinfo=dt_timezone.utc)
    if timezone is None:
        return stamp.date()
    return stamp.astimezone(ZoneInfo(timezone)).date()


def _pick_date(raw: Mapping[str, Any], local: Sequence[str], utc: Sequence[str], timezone: str) -> date | None:
    value = _pick(raw, *local)
    if value is not None:
        return parse_date(value, timezone)
    value = _pick(raw, *utc)
    return parse_date(value, timezone, assume_utc=True) if value is not None else None


def _customer(raw: Mapping[str, Any]) -> Customer:
    nested = _mapping(raw.get("customer"))
    company = _pick(nested, "company", "name") or _pick(
        raw, "customerCompany", "Client", "CustomerName", "customer_name", "client"
    )
    if isinstance(raw.get("customer"), str) and not company:
        company = raw["customer"]
    return Customer(
        company=_text(company),
        contact_person=_text(_pick(nested, "contactPerson", "contact", "contact_person") or raw.get("ContactName")),
        phone=_text(_pick(nested, "phone", "Phone") or raw.get("ContactPhone")),
        email=_text(_pick(nested, "email", "Email") or raw.get("ContactEmail")),
        price_tier=_text(_pick(nested, "priceTier", "price_tier") or raw.get("PriceTier")),
    )


def _pricing(raw: Mapping[str, Any]) -> Pricing:
    nested = _mapping(raw.get("pricing"))
    subtotal = parse_money(_pick(nested, "subtotal") or raw.get("Subtotal"))
    tax = parse_money(_pick(nested, "salesTax", "tax") or raw.get("SalesTax"))
    total_raw = _pick(nested, "totalDue", "total") or _pick(raw, "TotalDue", "Total", "totalDue")
    total = parse_money(total_raw) if total_raw is not None else subtotal + tax
    return Pricing(
        subtotal=subtotal,
        tax=tax,
        total=total,
        currency=_text(_pick(nested, "currency", default="USD")) or "USD",
    )


def _line_items(raw: Mapping[str, Any]) -> tuple[LineItem, ...]:
    items: list[LineItem] = []
    for item in _items(raw.get("lineItems")):
        entry = _mapping(item)
        quantity = parse_number(entry.get("quantity")) or 0.0
        unit_price = parse_money(entry.get("unitPrice"))
        total_price = entry.get("totalPrice")
        items.append(
            LineItem(
                description=_text(entry.get("description")),
                quantity=quantity,
                unit_price=unit_price,
                total_price=parse_money(total_price) if total_price is not None else quantity * unit_price,
                progress=parse_number(entry.get("progress")),
                machine=_text(_pick(entry, "machine", "assignedMachine")),
                category=_text(entry.get("category")),
                status=_text(entry.get("status")),
            )
        )
    for process in _items(raw.get("ProcessQuantities")):
        entry = _mapping(process)
        items.append(
            LineItem(
                description=_text(_pick(entry, "DisplayCode", "Code")),
                quantity=parse_number(entry.get("Qty")) or 0.0,
                machine=_text(entry.get("SuggestedMachineLabel")),
                category="process",
            )
        )
    return tuple(items)


def _shipments(raw: Mapping[str, Any]) -> tuple[Shipment, ...]:
    shipments: list[Shipment] = []
    for index, item in enumerate(_items(raw.get("shipments")), start=1):
        entry = _mapping(item)
        address = _mapping(_pick(entry, "shipToAddress", "address", default={}))
        status = _text(entry.get("status"))
        shipped = entry.get("shipped")
        shipments.append(
            Shipment(
                shipment_number=int(parse_number(entry.get("shipmentNumber")) or index),
                status=status,
                method=_text(_pick(entry, "shippingMethod", "method")),
                tracking_number=_text(entry.get("trackingNumber")) or None,
                address=Address(
                    company=_text(address.get("company")),
                    street=_text(address.get("street")),
                    city=_text(address.get("city")),
                    state=_text(address.get("state")),
                    zip_code=_text(_pick(address, "zipCode", "zip")),
                    country=_text(address.get("country")),
                ),
                shipped=bool(shipped) if shipped is not None else status.lower() in _SHIPPED_STATES,
            )
        )
    return tuple(shipments)


def _files(raw: Mapping[str, Any]) -> tuple[FileAttachment, ...]:
    files: list[FileAttachment] = []
    for item in [*_items(raw.get("files")), *_items(raw.get("Files"))]:
        entry = _mapping(item)
        name = _text(_pick(entry, "fileName", "FileName", "name", "Name"))
        if not name:
            continue
        files.append(
            FileAttachment(
                name=name,
                file_type=_text(_pick(entry, "fileType", "FileType", "ContentType", "type")),
                url=_text(_pick(entry, "url", "Url", "downloadUrl")),
            )
        )
    return tuple(files)


def _tags(raw: Mapping[str, Any]) -> tuple[Tag, ...]:
    sources = [
        *_items(raw.get("tags")),
        *_items(raw.get("JobTags")),
        *_items(_mapping(raw.get("metadata")).get("tags")),
    ]
    tags: list[Tag] = []
    seen: set[str] = set()
    for item in sources:
        if isinstance(item, Mapping):
            name = _text(_pick(item, "tag", "Tag", "name"))
            tag = Tag(
                tag=name,
                author=_text(_pick(item, "author", "WhoEnteredUsername", "enteredBy")),
                entered_at=_text(_pick(item, "enteredAt", "WhenEntered")),
            )
        else:
            name = _text(item)
            tag = Tag(tag=name)
        if not name or name.lower() in seen:
            continue
        seen.add(name.lower())
        tags.append(tag)
    return tuple(tags)


def _history(raw: Mapping[str, Any]) -> tuple[HistoryEvent, ...]:
    events: list[HistoryEvent] = []
    for item in _items(raw.get("history")):
        if isinstance(item, Mapping):
            events.append(
                HistoryEvent(
                    event=_text(_pick(item, "event", "action", "description")),
                    timestamp=_text(_pick(item, "timestamp", "date")),
                    author=_text(_pick(item, "author", "user")),
                )
            )
        elif item:
            events.append(HistoryEvent(event=_text(item)))
    for note in _items(_mapping(raw.get("production")).get("productionNotes")):
        events.append(HistoryEvent(event=_text(note)))
    return tuple(events)


def _priority(raw: Mapping[str, Any]) -> str:
    explicit = _text(_pick(raw, "priority", "Priority"))
    if explicit:
        return explicit
    if raw.get("MustDate") is True:
        return "MUST"
    if raw.get("TimeSensitive") is True:
        return "rush"
    return "normal"


def normalize_order(raw: Mapping[str, Any], *, timezone: str = DEFAULT_TIMEZONE) -> Order | None:
    """Return the canonical order, or ``None`` when the record has no job number.

    Dates are calendar dates in ``timezone``; ``*Utc`` fields are read as UTC.
    """

    job_number = _text(_pick(raw, "jobNumber", "JobNumber", "job_number", "jobId"))
    if not job_number:
        return None
    workflow = _mapping(raw.get("workflow"))
    metadata = _mapping(raw.get("metadata"))
    return Order(
        job_number=job_number,
        order_number=_text(_pick(raw, "orderNumber", "OrderNumber", "order_number")),
        status=_text(_pick(raw, "status", "MasterJobStatus", "Status")),
        priority=_priority(raw),
        customer=_customer(raw),
        description=_text(_pick(raw, "description", "Description")),
        comments=_text(_pick(raw, "comment", "comments", "Comments")),
        date_entered=_pick_date(raw, ("dateEntered", "DateIn"), ("DateInUtc",), timezone),
        requested_ship_date=_pick_date(
            raw, ("requestedShipDate", "RequestedShipDate"), ("RequestedShipDateUtc",), timezone
        ),
        date_due=_pick_date(raw, ("dateDue", "DateDue", "dueDate"), ("DateDueUtc",), timezone),
        pricing=_pricing(raw),
        line_items=_line_items(raw),
        shipments=_shipments(raw),
        tags=_tags(raw),
        history=_history(raw),
        files=_files(raw),
        is_rush=bool(_pick(workflow, "isRush", default=False) or raw.get("isRush") or raw.get("is_rush")),
        last_updated=_text(_pick(metadata, "lastUpdated") or _pick(raw, "lastUpdated", "LastUpdated")),
    )


def normalize_orders(raw_orders: Iterable[Any], *, timezone: str = DEFAULT_TIMEZONE) -> list[Order]:
    orders: list[Order] = []
    seen: set[str] = set()
    for raw in raw_orders:
        if not isinstance(raw, Mapping):
            continue
        order = normalize_order(raw, timezone=timezone)
        if order is None or order.job_number in seen:
            continue
        seen.add(order.job_number)
        orders.append(order)
    return orders


__all__ = ["DEFAULT_TIMEZONE", "normalize_order", "normalize_orders", "parse_date", "parse_money", "parse_number"]
