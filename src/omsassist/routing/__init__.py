"""Query routing."""

from .filters import OrderFilter, apply_filter, business_today
from .rules import DEFAULT_RULES, QueryPlan, RoutingRule, classify, extract_job_numbers
from .service import QueryRouter

__all__ = [
    "DEFAULT_RULES",
    "OrderFilter",
    "QueryPlan",
    "QueryRouter",
    "RoutingRule",
    "apply_filter",
    "business_today",
    "classify",
    "extract_job_numbers",
]
