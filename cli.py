#!/usr/bin/env python3
"""Operator CLI for bundle engines and automation passes"""

import argparse
import asyncio
import json
import sys
from pathlib import Path
from typing import Optional

from launchpad.config import settings
from launchpad.core.automation import EngineKind, MemoryAutomationStore
from launchpad.logging_config import setup_logging
from launchpad.services import Services, build_services


def print_engines(services: Services):
    """Pretty print the configured bundle engines"""
    registry = services.executor.coordinator.registry
    engines = registry.list_engines()

    print("\n🧭 Bundle Engines")
    print("=" * 50)
    for engine in engines:
        marker = "★" if engine["default"] else " "
        state = "dry-run" if engine["dryRun"] else ("ready" if engine["available"] else "not configured")
        print(f"{marker} {engine['key']:<12} {engine['endpointCount']:>2} endpoint(s)  {state}")
        if engine.get("description"):
            print(f"    {engine['description']}")

    order = registry.default_order
    print(f"\nFailover order: {' → '.join(order) if order else '(none available)'}")


async def cli_status(services: Services, bundle_id: str, engine: Optional[str]):
    """Look up the landing status of a bundle"""
    print(f"🔍 Checking bundle {bundle_id}...")
    result = await services.executor.poller.get_bundle_status(bundle_id, engine=engine)
    print(json.dumps(result.to_dict(), indent=2))


async def cli_run(services: Services, engine: str, dry_run: bool) -> int:
    """Run a single automation pass"""
    kind = EngineKind(engine)
    banner = " (dry run)" if dry_run else ""
    print(f"⚙️  Running {kind.value} pass{banner}...")

    summary = await services.engine(kind).run_pass(dry_run=dry_run)
    data = summary.to_dict()

    if summary.already_running:
        print("⏳ A pass for this engine is already running")
        return 1

    print(f"\nProcessed:   {data['processed']}")
    print(f"Succeeded:   {data['succeeded']}")
    print(f"Skipped:     {data['skipped']}")
    print(f"Failed:      {data['failed']}")
    print(f"Unconfirmed: {data['unconfirmed']}")
    print(f"Contended:   {data['contended']}")
    print(f"Total:       {data['totalAmount']}")
    if data["failureReasons"]:
        print("\nFailures:")
        for reason in data["failureReasons"]:
            print(f" - {reason}")
    return 1 if summary.failed else 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Launchpad automation CLI")
    parser.add_argument("--log-level", default=None, help="Override LOG_LEVEL for this run")
    subparsers = parser.add_subparsers(dest="command")

    subparsers.add_parser("engines", help="List bundle engines and failover order")

    status_parser = subparsers.add_parser("status", help="Check a bundle's landing status")
    status_parser.add_argument("bundle_id", help="Bundle id returned by the relay")
    status_parser.add_argument("--engine", help="Engine whose status API to ask")

    run_parser = subparsers.add_parser("run", help="Run one automation pass")
    run_parser.add_argument("engine", choices=[kind.value for kind in EngineKind])
    run_parser.add_argument("--dry-run", action="store_true", help="Plan without writing or submitting")
    run_parser.add_argument(
        "--memory",
        type=Path,
        help="Run against an in-memory store loaded from a JSON fixture instead of Supabase",
    )

    return parser


async def main() -> int:
    parser = build_parser()
    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        return 0

    setup_logging(args.log_level)

    store = None
    if getattr(args, "memory", None):
        store = MemoryAutomationStore.from_fixture(args.memory)
        print(f"💾 Loaded fixture {args.memory}")

    services = build_services(settings, store=store)
    try:
        if args.command == "engines":
            print_engines(services)
            return 0

        if args.command == "status":
            await cli_status(services, args.bundle_id, args.engine)
            return 0

        if args.command == "run":
            return await cli_run(services, args.engine, args.dry_run)

        print(f"❌ Unknown command: {args.command}")
        parser.print_help()
        return 2
    finally:
        await services.close()


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
