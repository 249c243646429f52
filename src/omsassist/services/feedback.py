"""User-facing messages for empty results and failures."""

from __future__ import annotations

from omsassist.models import RouterResult

SYSTEM_FAILURE_MESSAGE = (
    "Sorry, I couldn't reach the order data just now. Please try again in a moment."
)


def no_results_message(query: str, routed: RouterResult | None = None) -> str:
    """Explain what was searched for and how to rephrase."""

    if routed is not None and routed.not_found:
        jobs = ", ".join(routed.not_found)
        label = "job" if len(routed.not_found) == 1 else "jobs"
        return (
            f"No order found for {label} {jobs}. Double-check the number, "
            "or search by customer name or description instead."
        )
    description = routed.filter_description if routed is not None else ""
    if description and routed is not None and routed.rule == "structured":
        suggestions = _suggestions(description)
        return f"No {description} found. " + " ".join(suggestions)
    return (
        f"No orders found matching \"{query.strip()}\". Try including a customer name, "
        "a job number, or a status such as 'approved' or 'overdue'."
    )


def _suggestions(description: str) -> list[str]:
    tips: list[str] = []
    if " for " in description:
        tips.append("Check the spelling of the customer name or try a shorter part of it.")
    if " due " in description:
        tips.append("Try a wider window such as 'due this week' or 'due next week'.")
    if "tagged" in description:
        tips.append("Check the tag name; partial tags like 'laser' also match.")
    if not tips:
        tips.append("Try removing one of the conditions to broaden the search.")
    return tips


__all__ = ["SYSTEM_FAILURE_MESSAGE", "no_results_message"]
