"""Structured order predicates evaluated against an explicit reference date."""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Literal, Sequence
from zoneinfo import ZoneInfo

from omsassist.models import RUSH_PRIORITIES, Order

DueWindow = Literal["today", "tomorrow", "this_week", "next_week"]

STOP_WORDS = frozenset(
    """
    a about all also am an and any are as at be been but by can could did do does for from get give had has
    have how i in into is it its job jobs just let like list me more my need of on or order orders our please
    related show similar so some than that the their them then there these they this those to up us was we
    were what whats when where which who why will with would you your find tell any anything info information
    """.split()
)

_WORD = re.compile(r"[a-z0-9][a-z0-9\-]*")


def business_today(now: datetime | None, timezone: str) -> date:
    """Return the calendar date of ``now`` in the business timezone."""

    zone = ZoneInfo(timezone)
    current = now or datetime.now(zone)
    if current.tzinfo is None:
        current = current.replace(tzinfo=zone)
    return current.astimezone(zone).date()


def week_bounds(today: date, *, offset_weeks: int = 0) -> tuple[date, date]:
    """Monday..Sunday window containing ``today`` shifted by ``offset_weeks``."""

    monday = today - timedelta(days=today.weekday()) + timedelta(weeks=offset_weeks)
    return monday, monday + timedelta(days=6)


def is_overdue(order: Order, today: date) -> bool:
    due = order.due_date
    return due is not None and due < today and not order.is_closed


def is_rush(order: Order) -> bool:
    return order.priority.strip().lower() in RUSH_PRIORITIES or order.is_rush or "rush" in order.status.lower()


def is_due_within(order: Order, window: DueWindow, today: date) -> bool:
    due = order.due_date
    if due is None or order.is_closed:
        return False
    if window == "today":
        return due == today
    if window == "tomorrow":
        return due == today + timedelta(days=1)
    start, end = week_bounds(today, offset_weeks=0 if window == "this_week" else 1)
    return start <= due <= end


def matches_status(order: Order, terms: Sequence[str]) -> bool:
    status = order.status.lower()
    return any(term in status for term in terms)


def matches_customer(order: Order, customer: str) -> bool:
    return customer.lower() in order.customer.company.lower()


def has_tag(order: Order, term: str) -> bool:
    needle = term.lower().lstrip("@")
    return any(needle in tag.lower() for tag in order.tag_names)


def keyword_score(order: Order, keywords: Sequence[str]) -> int:
    haystack = " ".join(
        [
            order.job_number,
            order.order_number,
            order.customer.company,
            order.description,
            order.comments,
            order.status,
            " ".join(order.tag_names),
            " ".join(item.description for item in order.line_items),
        ]
    ).lower()
    return sum(1 for keyword in keywords if keyword in haystack)


def extract_keywords(text: str) -> tuple[str, ...]:
    words = _WORD.findall(text.lower().replace("'", ""))
    seen: list[str] = []
    for word in words:
        if len(word) < 3 or word in STOP_WORDS or word in seen:
            continue
        seen.append(word)
    return tuple(seen)


@dataclass(frozen=True)
class OrderFilter:
    """Conjunction of order predicates; empty fields do not constrain."""

    job_numbers: tuple[str, ...] = ()
    statuses: tuple[str, ...] = ()
    exclude_statuses: tuple[str, ...] = ()
    rush: bool = False
    overdue: bool = False
    due_window: DueWindow | None = None
    customer: str | None = None
    include_tags: tuple[str, ...] = ()
    exclude_tags: tuple[str, ...] = ()
    keywords: tuple[str, ...] = ()
    limit: int | None = None

    @property
    def is_exact(self) -> bool:
        """True when the filter carries a status, priority, date or tag predicate."""

        return bool(
            self.job_numbers
            or self.statuses
            or self.exclude_statuses
            or self.rush
            or self.overdue
            or self.due_window
            or self.include_tags
            or self.exclude_tags
        )

    def describe(self) -> str:
        parts: list[str] = []
        if self.overdue:
            parts.append("overdue")
        if self.rush:
            parts.append("rush")
        if self.statuses:
            parts.append("/".join(self.statuses))
        parts.append("orders")
        if self.exclude_statuses:
            parts.append("not " + "/".join(self.exclude_statuses))
        if self.job_numbers:
            parts.append("matching job " + ", ".join(self.job_numbers))
        if self.customer:
            parts.append(f"for {self.customer}")
        if self.due_window:
            parts.append("due " + self.due_window.replace("_", " "))
        if self.include_tags:
            parts.append("tagged " + ", ".join(self.include_tags))
        if self.exclude_tags:
            parts.append("not tagged " + ", ".join(self.exclude_tags))
        if self.keywords:
            parts.append("mentioning " + ", ".join(self.keywords))
        return " ".join(parts)

    def matches(self, order: Order, today: date) -> bool:
        if self.job_numbers and order.job_number not in self.job_numbers:
            return False
        if self.statuses and not matches_status(order, self.statuses):
            return False
        if self.exclude_statuses and matches_status(order, self.exclude_statuses):
            return False
        if self.rush and not is_rush(order):
            return False
        if self.overdue and not is_overdue(order, today):
            return False
        if self.due_window and not is_due_within(order, self.due_window, today):
            return False
        if self.customer and not matches_customer(order, self.customer):
            return False
        if any(not has_tag(order, tag) for tag in self.include_tags):
            return False
        if any(has_tag(order, tag) for tag in self.exclude_tags):
            return False
        if self.keywords and keyword_score(order, self.keywords) == 0:
            return False
        return True


def apply_filter(orders: Sequence[Order], order_filter: OrderFilter, today: date) -> list[Order]:
    """Return every order satisfying the filter, keyword hits ranked first, then limited."""

    matched = [order for order in orders if order_filter.matches(order, today)]
    if order_filter.keywords:
        matched.sort(key=lambda order: keyword_score(order, order_filter.keywords), reverse=True)
    elif order_filter.overdue or order_filter.due_window:
        matched.sort(key=lambda order: order.due_date or date.max)
    if order_filter.limit:
        return matched[: order_filter.limit]
    return matched


__all__ = [
    "DueWindow",
    "OrderFilter",
    "STOP_WORDS",
    "apply_filter",
    "business_today",
    "extract_keywords",
    "has_tag",
    "is_due_within",
    "is_overdue",
    "is_rush",
    "keyword_score",
    "matches_customer",
    "matches_status",
    "week_bounds",
]
