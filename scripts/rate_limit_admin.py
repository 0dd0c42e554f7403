#!/usr/bin/env python3
"""
Inspect, reset or block rate limit keys directly against the counter store.

Mirrors the /v1/admin/rate-limits endpoints for operators with access to the
store but not to a running API instance (e.g. while the API is failing
closed). Reads the same APP_* / REDIS_* settings as the service.

    python scripts/rate_limit_admin.py policies
    python scripts/rate_limit_admin.py status login 203.0.113.7
    python scripts/rate_limit_admin.py reset login 203.0.113.7
    python scripts/rate_limit_admin.py block api 203.0.113.7 --seconds 900
"""

import argparse
import asyncio
import json
import os
import sys
from dataclasses import asdict

sys.path.append(os.path.join(os.path.dirname(__file__), '..'))

from app.adapters.rate_limit import create_counter_store  # noqa: E402
from app.core.errors import AppError  # noqa: E402
from app.services.limiter_cache import LimiterCache  # noqa: E402
from app.services.policies import PolicyRegistry  # noqa: E402
from app.services.rate_limit_admin import RateLimitAdminService  # noqa: E402


async def run(args: argparse.Namespace) -> dict:
    """Execute one admin command and return a JSON-serializable summary."""
    from app.core.config import settings

    store = create_counter_store(settings)
    admin = RateLimitAdminService(
        PolicyRegistry.with_defaults(settings.app.rate_limit_policies),
        LimiterCache(store),
    )
    try:
        if args.command == "policies":
            return {"policies": [asdict(policy) for policy in admin.policies()]}
        if args.command == "status":
            record = await admin.status(args.key, args.policy)
            return {"policy": args.policy, "key": args.key, "record": asdict(record) if record else None}
        if args.command == "reset":
            deleted = await admin.reset(args.key, args.policy)
            return {"policy": args.policy, "key": args.key, "deleted": deleted}
        record = await admin.block(args.key, args.policy, seconds=args.seconds)
        return {"policy": args.policy, "key": args.key, "record": asdict(record) if record else None}
    finally:
        await store.close()


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Operate on rate limit counters.")
    commands = parser.add_subparsers(dest="command", required=True)

    commands.add_parser("policies", help="List registered policies")

    for name, help_text in (
        ("status", "Show a key's counter and block state"),
        ("reset", "Clear a key's counter and block"),
        ("block", "Block a key"),
    ):
        sub = commands.add_parser(name, help=help_text)
        sub.add_argument("policy", help="Policy name (e.g. login, api)")
        sub.add_argument("key", help="Derived key (IP, IP:user, email...)")
        if name == "block":
            sub.add_argument("--seconds", type=int, default=None, help="Block duration (default: policy block duration)")

    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = _parse_args(argv)
    if getattr(args, "seconds", None) is not None and args.seconds < 1:
        print("[rate-limit-admin] --seconds must be >= 1", file=sys.stderr)
        return 2
    try:
        summary = asyncio.run(run(args))
    except KeyboardInterrupt:
        return 130
    except AppError as exc:
        print(f"[rate-limit-admin] {exc.code}: {exc.message}", file=sys.stderr)
        return 1

    print(json.dumps(summary, indent=2))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
