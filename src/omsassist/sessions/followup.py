"""Resolve follow-up questions against the orders shown in the previous turn."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Literal, Sequence

from omsassist.formatting import format_money, pluralize
from omsassist.models import Order, SessionContext
from omsassist.routing.rules import extract_job_numbers

FollowUpKind = Literal["calculation", "contact"]

_CALCULATION = re.compile(r"\b(total|sum|add(?:ed)?\s+up|how much|combined|altogether|grand total)\b", re.I)
_CONTACT = re.compile(r"\b(contact|phone|e-?mail|reach|call)\b", re.I)
_REFERENCE = re.compile(r"\b(these|those|them|they|their|it|its|that one|this one|same|above|previous)\b", re.I)
_NEW_TARGET = re.compile(r"\b(orders?|jobs?)\b", re.I)


@dataclass(frozen=True)
class FollowUp:
    kind: FollowUpKind
    orders: tuple[Order, ...]


def detect_follow_up(query: str, context: SessionContext) -> FollowUp | None:
    """Return a follow-up when ``query`` refers back to the previously shown orders.

    A query counts as a follow-up only when the session still holds the prior
    result set and the query does not name a new job. Calculation words qualify
    on their own unless the query also asks about orders or jobs, in which case a
    reference word ("these", "them") is required as well.
    """

    if not context.shown_orders or extract_job_numbers(query):
        return None
    refers_back = bool(_REFERENCE.search(query))
    names_target = bool(_NEW_TARGET.search(query))
    if _CALCULATION.search(query) and (refers_back or not names_target):
        return FollowUp(kind="calculation", orders=context.shown_orders)
    if _CONTACT.search(query) and (refers_back or not names_target):
        return FollowUp(kind="contact", orders=context.shown_orders)
    return None


def answer_follow_up(follow_up: FollowUp) -> str:
    if follow_up.kind == "calculation":
        return summarize_total(follow_up.orders)
    return summarize_contacts(follow_up.orders)


def summarize_total(orders: Sequence[Order]) -> str:
    total = sum(order.pricing.total for order in orders)
    currency = orders[0].pricing.currency if orders else "USD"
    lines = [
        f"The total value of the {pluralize(len(orders), 'order')} shown previously is "
        f"{format_money(total, currency)}."
    ]
    for order in orders:
        company = order.customer.company or "Unknown customer"
        lines.append(f"- Job {order.job_number} ({company}): {format_money(order.pricing.total, order.pricing.currency)}")
    return "\n".join(lines)


def summarize_contacts(orders: Sequence[Order]) -> str:
    seen: set[str] = set()
    lines = ["Contact details for the orders shown previously:"]
    for order in orders:
        customer = order.customer
        key = customer.company.lower()
        if key in seen:
            continue
        seen.add(key)
        details = [value for value in (customer.contact_person, customer.phone, customer.email) if value]
        rendered = ", ".join(details) if details else "no contact details on file"
        lines.append(f"- {customer.company or 'Unknown customer'}: {rendered}")
    return "\n".join(lines)


__all__ = ["FollowUp", "answer_follow_up", "detect_follow_up", "summarize_contacts", "summarize_total"]
