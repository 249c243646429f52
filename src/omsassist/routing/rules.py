"""Ordered query classification rules.

Rules are evaluated once, in order, and the first whose predicate matches decides
the strategy and extracts the plan:

1. ``job-number``: an explicit job/order number; exact lookup by key.
2. ``structured``: status, priority, customer, date, tag or listing phrases;
   combined with logical AND and applied over the full order set.
3. ``semantic``: everything else, including fuzzy phrasing such as
   "similar to"; nearest-neighbour search over the vector index.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field, replace
from typing import Callable, Literal, Sequence

from omsassist.routing.filters import DueWindow, OrderFilter, extract_keywords

PlanStrategy = Literal["api", "vector"]

_JOB_PATTERNS = (
    re.compile(r"\b(?:job|order)s?\s*(?:#|number|num|no\.?)?\s*:?\s*#?(\d+)\b", re.I),
    re.compile(r"#\s*(\d{3,})\b"),
    re.compile(r"\b(?:details?|more)\s+(?:for|on|about)\s+(\d{3,})\b", re.I),
    re.compile(r"\b(\d{5,})\b"),
)
_EXTRA_JOB = re.compile(r"^\s*(?:,|and|&)\s*#?(\d{3,})\b", re.I)

_STATUS_PATTERNS: tuple[tuple[re.Pattern[str], tuple[str, ...]], ...] = (
    (re.compile(r"\bapproved\b", re.I), ("approved",)),
    (re.compile(r"\bshipped\b", re.I), ("shipped",)),
    (re.compile(r"\b(?:closed|completed?)\b", re.I), ("closed", "complete")),
    (re.compile(r"\bin production\b|\bproduction orders?\b", re.I), ("production",)),
    (re.compile(r"\bon hold\b", re.I), ("hold",)),
    (re.compile(r"\bpending\b", re.I), ("pending",)),
    (re.compile(r"\b(?:awaiting|needs?) proof\b|\bproofing\b", re.I), ("proof",)),
)
_NEGATED_STATUS = re.compile(
    r"(?:(?:\bnot|n['’]t|\b(?:has|have|is|are|was|were|did|does|do)nt|\bnever|\bno longer|\byet to be)\s+"
    r"(?:\w+\s+){0,2}|\bun-)$",
    re.I,
)
_UN_PREFIXED = re.compile(r"\bun(?P<word>[a-z]+)\b", re.I)
_OVERDUE = re.compile(r"\b(?:overdue|late|past due|behind schedule)\b", re.I)
_RUSH = re.compile(r"\b(?:rush|urgent|expedited?|must[- ]date|must orders?)\b", re.I)
_DUE_WINDOWS: tuple[tuple[re.Pattern[str], DueWindow], ...] = (
    (re.compile(r"\b(?:due|ship(?:s|ping)?)\s+tomorrow\b", re.I), "tomorrow"),
    (re.compile(r"\b(?:due|ship(?:s|ping)?)\s+(?:this|the) week\b", re.I), "this_week"),
    (re.compile(r"\b(?:due|ship(?:s|ping)?)\s+next week\b", re.I), "next_week"),
    (
        re.compile(
            r"\b(?:due|ship(?:s|ping)?)\s+today\b|\bwhat(?:'s|s| is)\s+due\b(?!\s+(?:tomorrow|this week|next week))",
            re.I,
        ),
        "today",
    ),
)
_NAME_STOP = (
    r"(?=\s+(?:that|which|who|due|with|tagged|not|in|are|is|was|this|next|today|tomorrow|and|or|sorted)\b|[?.!,;]|$)"
)
_CUSTOMER_PATTERNS = (
    re.compile(r"\b(?:orders?|jobs?|work)\s+(?:for|from|by)\s+(?:customer\s+|client\s+)?(?P<name>[\w&.'\- ]+?)" + _NAME_STOP, re.I),
    re.compile(r"\b(?:customer|client)\s*:?\s+(?P<name>[\w&.'\- ]+?)" + _NAME_STOP, re.I),
)
_NAME_REJECT = frozenset(
    {"today", "tomorrow", "yesterday", "me", "us", "all", "now", "this week", "next week", "last week", "the week"}
)
_EXCLUDE_TAG = re.compile(r"\bnot tagged\s+(?:with\s+|as\s+)?[\"']?(?P<tag>@?[\w\- ]+?)[\"']?" + _NAME_STOP, re.I)
_INCLUDE_TAG = re.compile(r"(?<!not )\btagged\s+(?:with\s+|as\s+)?[\"']?(?P<tag>@?[\w\- ]+?)[\"']?" + _NAME_STOP, re.I)
_WITH_TAG = re.compile(r"\bwith (?:the )?tag\s+[\"']?(?P<tag>@?[\w\- ]+?)[\"']?" + _NAME_STOP, re.I)
_AT_TAG = re.compile(r"(?<![\w.])@(?P<tag>[\w\-]+)")
_LIMIT_PATTERNS = (
    re.compile(r"\btop\s+(\d+)\b", re.I),
    re.compile(r"\bfirst\s+(\d+)\b", re.I),
    re.compile(r"\b(?:show|list|give|get)\s+(?:me\s+)?(\d+)\b", re.I),
)
_VAGUE_LIMITS = (
    (re.compile(r"\ba couple(?: of)?\b", re.I), 2),
    (re.compile(r"\ba few\b", re.I), 3),
    (re.compile(r"\bseveral\b", re.I), 5),
)
_LIST_ALL = re.compile(
    r"^\s*(?:please\s+)?(?:show|list|give|get)?\s*(?:me\s+)?(?:all|every|the)?\s*(?:(?:top\s+)?\d+\s+)?(?:open\s+)?"
    r"(?:orders|jobs)\s*[?.!]?\s*$",
    re.I,
)
_FUZZY = re.compile(r"\b(?:similar to|related to|like|about|resembl\w*|involving|anything with)\b", re.I)


@dataclass(frozen=True)
class QueryPlan:
    """What a rule decided to do with a query."""

    rule: str
    strategy: PlanStrategy
    order_filter: OrderFilter = field(default_factory=OrderFilter)
    semantic_text: str = ""
    fuzzy: bool = False


@dataclass(frozen=True)
class RoutingRule:
    name: str
    predicate: Callable[[str], bool]
    strategy: PlanStrategy
    extractor: Callable[[str], QueryPlan]


def extract_job_numbers(query: str) -> tuple[str, ...]:
    found: list[str] = []
    for pattern in _JOB_PATTERNS:
        for match in pattern.finditer(query):
            _append_unique(found, match.group(1))
            tail = query[match.end() :]
            extra = _EXTRA_JOB.match(tail)
            while extra:
                _append_unique(found, extra.group(1))
                tail = tail[extra.end() :]
                extra = _EXTRA_JOB.match(tail)
    return tuple(found)


def _append_unique(items: list[str], value: str) -> None:
    if value not in items:
        items.append(value)


def extract_limit(query: str) -> int | None:
    for pattern in _LIMIT_PATTERNS:
        match = pattern.search(query)
        if match:
            value = int(match.group(1))
            return value if value > 0 else None
    for pattern, value in _VAGUE_LIMITS:
        if pattern.search(query):
            return value
    return None


def _clean_name(raw: str) -> str | None:
    name = re.sub(r"^(?:the|a|an)\s+", "", raw.strip(), flags=re.I).strip(" '\"")
    if not name or name.lower() in _NAME_REJECT:
        return None
    return name


def extract_customer(query: str) -> str | None:
    for pattern in _CUSTOMER_PATTERNS:
        match = pattern.search(query)
        if match:
            name = _clean_name(match.group("name"))
            if name:
                return name
    return None


def extract_tags(query: str) -> tuple[tuple[str, ...], tuple[str, ...]]:
    excluded = [match.group("tag").strip() for match in _EXCLUDE_TAG.finditer(query)]
    included = [match.group("tag").strip() for match in _INCLUDE_TAG.finditer(query)]
    included += [match.group("tag").strip() for match in _WITH_TAG.finditer(query)]
    excluded_lower = {tag.lower() for tag in excluded}
    for match in _AT_TAG.finditer(query):
        tag = "@" + match.group("tag")
        if tag.lower() not in excluded_lower:
            included.append(tag)
    return _unique(included), _unique(excluded)


def _unique(items: Sequence[str]) -> tuple[str, ...]:
    ordered: list[str] = []
    for item in items:
        if item and item.lower() not in {existing.lower() for existing in ordered}:
            ordered.append(item)
    return tuple(ordered)


def extract_statuses(query: str) -> tuple[tuple[str, ...], tuple[str, ...]]:
    """Split status mentions into wanted and excluded terms.

    A mention preceded by a negation ("not", "haven't", "never", "no longer")
    within two words, or written with an ``un`` prefix, is excluded.
    """

    included: list[str] = []
    excluded: list[str] = []
    for pattern, terms in _STATUS_PATTERNS:
        for match in pattern.finditer(query):
            target = excluded if _NEGATED_STATUS.search(query[: match.start()]) else included
            target.extend(terms)
    for match in _UN_PREFIXED.finditer(query):
        for pattern, terms in _STATUS_PATTERNS:
            if pattern.search(match.group("word")):
                excluded.extend(terms)
    return _unique(included), _unique(excluded)


def extract_filter(query: str) -> OrderFilter:
    statuses, exclude_statuses = extract_statuses(query)
    due_window: DueWindow | None = None
    for pattern, window in _DUE_WINDOWS:
        if pattern.search(query):
            due_window = window
            break
    include_tags, exclude_tags = extract_tags(query)
    return OrderFilter(
        statuses=statuses,
        exclude_statuses=exclude_statuses,
        rush=bool(_RUSH.search(query)),
        overdue=bool(_OVERDUE.search(query)),
        due_window=due_window,
        customer=extract_customer(query),
        include_tags=include_tags,
        exclude_tags=exclude_tags,
        limit=extract_limit(query),
    )


def has_job_number(query: str) -> bool:
    return bool(extract_job_numbers(query))


def has_structured_pattern(query: str) -> bool:
    candidate = extract_filter(query)
    return candidate.is_exact or bool(candidate.customer) or bool(_LIST_ALL.match(query))


def _job_plan(query: str) -> QueryPlan:
    return QueryPlan(
        rule="job-number",
        strategy="api",
        order_filter=OrderFilter(job_numbers=extract_job_numbers(query)),
    )


def _structured_plan(query: str) -> QueryPlan:
    return QueryPlan(
        rule="structured",
        strategy="api",
        order_filter=extract_filter(query),
        semantic_text=query,
    )


def _semantic_plan(query: str) -> QueryPlan:
    fuzzy = bool(_FUZZY.search(query))
    return QueryPlan(
        rule="semantic-fuzzy" if fuzzy else "semantic",
        strategy="vector",
        order_filter=OrderFilter(keywords=extract_keywords(query), limit=extract_limit(query)),
        semantic_text=query,
        fuzzy=fuzzy,
    )


DEFAULT_RULES: tuple[RoutingRule, ...] = (
    RoutingRule("job-number", has_job_number, "api", _job_plan),
    RoutingRule("structured", has_structured_pattern, "api", _structured_plan),
    RoutingRule("semantic", lambda query: True, "vector", _semantic_plan),
)


def classify(query: str, rules: Sequence[RoutingRule] = DEFAULT_RULES) -> QueryPlan:
    for rule in rules:
        if rule.predicate(query):
            plan = rule.extractor(query)
            return plan if plan.strategy == rule.strategy else replace(plan, strategy=rule.strategy)
    return _semantic_plan(query)


__all__ = [
    "DEFAULT_RULES",
    "QueryPlan",
    "RoutingRule",
    "classify",
    "extract_customer",
    "extract_filter",
    "extract_job_numbers",
    "extract_limit",
    "extract_statuses",
    "extract_tags",
]
