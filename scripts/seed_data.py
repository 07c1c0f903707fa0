#!/usr/bin/env python3
"""
Create the schema and seed it from a YAML configuration set.

Creates every table, then seeds the roles, business units, banks and
workflow templates of the configuration set.  Seeding is idempotent:
rows that already exist (matched by name) are left alone, so the script
can be re-run after editing the YAML to pick up additions.

Optionally adds sample properties at main office custody so the
release/turnover/return flows can be exercised by hand.

Usage:
  python3 scripts/seed_data.py [--database-url URL] [--config-set NAME]
                               [--reset] [--sample-properties N]
"""

import argparse
import os
import sys
from pathlib import Path
from uuid import UUID

ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))

SYSTEM_ACTOR_ID = UUID("00000000-0000-0000-0000-000000000001")


def _parse_args() -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Create tables and seed from a configuration set")
    p.add_argument(
        "--database-url",
        default=os.environ.get("DATABASE_URL"),
        help="SQLAlchemy database URL (default: DATABASE_URL)",
    )
    p.add_argument(
        "--config-set",
        default="default",
        help="Configuration set under property_config/sets/ (default: 'default')",
    )
    p.add_argument(
        "--reset",
        action="store_true",
        help="Drop all tables before creating them",
    )
    p.add_argument(
        "--sample-properties",
        type=int,
        default=0,
        metavar="N",
        help="Also create N sample properties owned by the first business unit",
    )
    return p.parse_args()


def _seed_sample_properties(session, count: int) -> int:
    from sqlalchemy import func, select

    from property_kernel.domain.property import PropertyLocation, PropertyStatus
    from property_kernel.models.organization import BusinessUnit
    from property_kernel.models.property import Property

    unit = session.execute(select(BusinessUnit).order_by(BusinessUnit.name)).scalars().first()
    existing = session.execute(select(func.count(Property.id))).scalar_one()
    for i in range(existing + 1, existing + count + 1):
        session.add(
            Property(
                title_number=f"TCT-{i:05d}",
                lot_number=f"Lot {i}",
                registered_owner=unit.name if unit else None,
                location="General Santos City",
                status=PropertyStatus.ACTIVE.value,
                custody_location=PropertyLocation.MAIN_OFFICE.value,
                business_unit_id=unit.id if unit else None,
                created_by_id=SYSTEM_ACTOR_ID,
            )
        )
    session.flush()
    return count


def main() -> int:
    args = _parse_args()
    if not args.database_url:
        print("error: pass --database-url or set DATABASE_URL", file=sys.stderr)
        return 2

    from property_config import get_active_config
    from property_config.bridges import seed_configuration
    from property_kernel.db.engine import (
        create_tables,
        dispose_engine,
        drop_tables,
        init_engine_from_url,
        session_scope,
    )

    try:
        config = get_active_config(set_name=args.config_set)
    except (FileNotFoundError, ValueError) as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 1

    init_engine_from_url(args.database_url)
    if args.reset:
        drop_tables()
    create_tables()

    try:
        with session_scope() as session:
            result = seed_configuration(session, config, SYSTEM_ACTOR_ID)
            properties = (
                _seed_sample_properties(session, args.sample_properties)
                if args.sample_properties > 0
                else 0
            )
    finally:
        dispose_engine()

    print(f"Configuration set {config.config_id} v{config.version} ({config.checksum[:12]})")
    print(f"  roles created:          {len(result.roles)}")
    print(f"  business units created: {len(result.business_units)}")
    print(f"  banks created:          {len(result.banks)}")
    print(f"  workflows created:      {len(result.workflows)}")
    for name in result.workflows:
        print(f"    - {name}")
    if properties:
        print(f"  sample properties:      {properties}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
