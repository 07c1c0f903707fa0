#!/usr/bin/env python3
"""
Expire approval requests that have sat unanswered past the timeout.

The kernel has no timer; run this from cron (or any scheduler).  Each
expired request's governed transaction is expired with it and the
property is restored to its pre-request state, all in one transaction.

The timeout defaults to ``settings.request_timeout_hours`` of the
configuration set; ``--timeout-hours`` overrides it.

Usage:
  python3 scripts/expire_requests.py [--database-url URL] [--timeout-hours H]
                                     [--config-set NAME]
"""

import argparse
import os
import sys
from pathlib import Path
from uuid import UUID

ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))

SYSTEM_ACTOR_ID = UUID("00000000-0000-0000-0000-000000000001")


def main() -> int:
    parser = argparse.ArgumentParser(description="Expire stale approval requests")
    parser.add_argument(
        "--database-url",
        default=os.environ.get("DATABASE_URL"),
        help="SQLAlchemy database URL (default: DATABASE_URL)",
    )
    parser.add_argument("--config-set", default="default", help="Configuration set name")
    parser.add_argument(
        "--timeout-hours",
        type=int,
        help="Expire requests idle longer than this (default: from configuration)",
    )
    args = parser.parse_args()
    if not args.database_url:
        print("error: pass --database-url or set DATABASE_URL", file=sys.stderr)
        return 2

    from property_config import get_active_config
    from property_config.bridges import build_settings
    from property_kernel.db.engine import (
        dispose_engine,
        get_session_factory,
        init_engine_from_url,
    )
    from property_kernel.services.approval_workflow import ApprovalWorkflow

    settings = build_settings(get_active_config(set_name=args.config_set))
    init_engine_from_url(args.database_url)
    workflow = ApprovalWorkflow(get_session_factory(), settings=settings)

    try:
        result = workflow.expire_stale_requests(
            SYSTEM_ACTOR_ID, timeout_hours=args.timeout_hours
        )
    finally:
        dispose_engine()
    if not result.success:
        print(f"error [{result.code}]: {result.error}", file=sys.stderr)
        return 1

    if result.data["timeout_hours"] is None:
        print("No request timeout configured; nothing to do.")
        return 0

    expired = result.data["expired"]
    print(f"Expired {len(expired)} request(s) idle for more than {result.data['timeout_hours']}h")
    for request_id in expired:
        print(f"  - {request_id}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
