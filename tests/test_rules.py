from __future__ import annotations

from dataclasses import replace
from datetime import date, datetime, timezone

from omsassist.models import Tag
from omsassist.routing import apply_filter, business_today, classify
from omsassist.routing.filters import OrderFilter, is_overdue, week_bounds
from omsassist.routing.rules import (
    extract_customer,
    extract_job_numbers,
    extract_limit,
    extract_statuses,
    extract_tags,
)

TODAY = date(2024, 3, 13)


def _jobs(orders) -> list[str]:
    return [order.job_number for order in orders]


def test_job_number_patterns():
    assert extract_job_numbers("show me job 51234") == ("51234",)
    assert extract_job_numbers("details for #4521") == ("4521",)
    assert extract_job_numbers("order number: 1001 and 1002") == ("1001", "1002")
    assert extract_job_numbers("what is 98765 doing") == ("98765",)
    assert extract_job_numbers("orders due this week") == ()


def test_classification_order():
    assert classify("job 1001").rule == "job-number"
    assert classify("show rush orders").rule == "structured"
    assert classify("orders for Acme Corp").rule == "structured"
    assert classify("list all orders").rule == "structured"
    semantic = classify("anything similar to acrylic signage")
    assert semantic.strategy == "vector"
    assert semantic.fuzzy


def test_customer_and_limit_extraction():
    assert extract_customer("approved orders for Acme Corp due this week") == "Acme Corp"
    assert extract_customer("orders for today") is None
    assert extract_limit("show top 3 orders") == 3
    assert extract_limit("a couple of jobs for Acme") == 2
    assert extract_limit("orders for Acme") is None


def test_tag_extraction():
    included, excluded = extract_tags("orders tagged laser not tagged rush")
    assert included == ("laser",)
    assert excluded == ("rush",)
    assert extract_tags("jobs with @embroidery")[0] == ("@embroidery",)


def test_overdue_excludes_closed_and_undated(orders):
    overdue = apply_filter(orders, classify("show overdue orders").order_filter, TODAY)
    assert _jobs(overdue) == ["1001"]
    for order in overdue:
        assert order.due_date < TODAY and not order.is_closed
    assert not is_overdue(orders[1], TODAY)
    assert not is_overdue(orders[4], TODAY)


def test_rush_returns_only_rush_priority(orders):
    assert _jobs(apply_filter(orders, classify("rush orders").order_filter, TODAY)) == ["1003"]


def test_due_windows(orders):
    assert _jobs(apply_filter(orders, classify("what's due tomorrow?").order_filter, TODAY)) == ["1003"]
    assert _jobs(apply_filter(orders, classify("orders due next week").order_filter, TODAY)) == ["1004"]
    assert _jobs(apply_filter(orders, classify("orders due this week").order_filter, TODAY)) == ["1003"]
    assert week_bounds(TODAY) == (date(2024, 3, 11), date(2024, 3, 17))


def test_customer_and_status_combine_with_and(orders):
    plan = classify("approved orders for Acme")
    assert plan.order_filter.statuses == ("approved",)
    assert _jobs(apply_filter(orders, plan.order_filter, TODAY)) == ["1001"]


def test_tag_filters(orders):
    tagged = [replace(orders[3], tags=(Tag(tag="@Laser-Cut"),)), *orders[:3]]
    assert _jobs(apply_filter(tagged, classify("orders tagged laser").order_filter, TODAY)) == ["1004", "1001"]
    excluded = apply_filter(tagged, classify("approved orders not tagged laser").order_filter, TODAY)
    assert _jobs(excluded) == []


def test_limit_applies_after_filtering(orders):
    plan = classify("show me 1 approved orders")
    assert plan.order_filter.limit == 1
    assert len(apply_filter(orders, plan.order_filter, TODAY)) == 1


def test_business_today_uses_business_timezone():
    late_utc = datetime(2024, 3, 14, 3, 30, tzinfo=timezone.utc)
    assert business_today(late_utc, "America/Los_Angeles") == date(2024, 3, 13)
    assert business_today(late_utc, "UTC") == date(2024, 3, 14)


def test_describe_reads_naturally():
    assert OrderFilter(rush=True).describe() == "rush orders"
    assert OrderFilter(customer="Acme").describe() == "orders for Acme"
    assert OrderFilter(exclude_statuses=("shipped",)).describe() == "orders not shipped"


def test_negated_statuses_are_excluded():
    assert extract_statuses("which orders haven't shipped yet?") == ((), ("shipped",))
    assert extract_statuses("orders that are not shipped") == ((), ("shipped",))
    assert extract_statuses("orders that havent been shipped") == ((), ("shipped",))
    assert extract_statuses("unshipped orders") == ((), ("shipped",))
    assert extract_statuses("un-approved jobs") == ((), ("approved",))
    assert extract_statuses("approved but not yet shipped") == (("approved",), ("shipped",))
    assert extract_statuses("orders not tagged laser that are shipped") == (("shipped",), ())


def test_negated_status_query_filters_out_matching_orders(orders):
    plan = classify("which orders haven't shipped yet?")
    assert plan.rule == "structured"
    assert plan.order_filter.statuses == ()
    assert _jobs(apply_filter(orders, plan.order_filter, TODAY)) == ["1001", "1003", "1004", "1005"]

    acme = classify("not shipped orders for Acme").order_filter
    assert _jobs(apply_filter(orders, acme, TODAY)) == ["1001"]
