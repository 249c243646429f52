"""Administrative CLI for the OMS Assist vector index."""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from typing import Any, Sequence

from omsassist.api.app import AppDependencies, build_dependencies
from omsassist.config import get_settings
from omsassist.metrics.observability import configure_logging


async def _sync(deps: AppDependencies, *, rebuild: bool) -> dict[str, Any]:
    orders, _ = await deps.repository.load_orders(prefer_fresh=True)
    if rebuild:
        result = await deps.sync.force_full_rebuild(orders)
    else:
        result = await deps.sync.perform_incremental_update(orders)
    return result.to_dict()


async def _changes(deps: AppDependencies, sample_size: int) -> dict[str, Any]:
    orders, freshness = await deps.repository.load_orders(prefer_fresh=True)
    return {**deps.sync.pending_changes(orders, sample_size=sample_size), "dataFreshness": freshness}


async def _ask(deps: AppDependencies, question: str) -> dict[str, Any]:
    result = await deps.chat.handle(question)
    return {
        "success": result.success,
        "message": result.message,
        "analytics": result.analytics,
        "orders": [order.job_number for order in result.orders],
    }


def parse_args(argv: Sequence[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="omsassist-admin", description="Manage the OMS Assist order index.")
    commands = parser.add_subparsers(dest="command", required=True)
    commands.add_parser("sync", help="Embed new and changed orders, remove deleted ones")
    commands.add_parser("rebuild", help="Drop the index and re-embed every order")
    changes = commands.add_parser("changes", help="Show pending changes without writing")
    changes.add_argument("--samples", type=int, default=5, help="Job numbers to list per change kind")
    commands.add_parser("reset-tracker", help="Forget all fingerprints so the next sync re-embeds everything")
    ask = commands.add_parser("ask", help="Answer a question through the chat pipeline")
    ask.add_argument("question", help="Natural-language question about orders")
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> int:
    args = parse_args(argv if argv is not None else sys.argv[1:])
    configure_logging()
    deps = build_dependencies(get_settings())

    if args.command == "reset-tracker":
        payload: dict[str, Any] = {"success": True, "cleared": deps.sync.reset_change_tracker()}
    elif args.command == "changes":
        payload = asyncio.run(_changes(deps, args.samples))
    elif args.command == "ask":
        payload = asyncio.run(_ask(deps, args.question))
    else:
        payload = asyncio.run(_sync(deps, rebuild=args.command == "rebuild"))

    print(json.dumps(payload, indent=2, default=str))
    return 0 if payload.get("success", True) else 1


if __name__ == "__main__":  # pragma: no cover - CLI entry
    sys.exit(main())
