#!/usr/bin/env python3
"""
Periodic refresh of derived order state.

Writes the current aging level onto open orders and recomputes the cached
occupancy columns of every table. Both steps are pure recomputation, so the
job can run as often as wanted, and a missed run is repaired by the next.

Usage:
    python -m qrdine.refresh
    python -m qrdine.refresh --tenant 3 --tenant 7
    python -m qrdine.refresh --interval 60   # Loop until interrupted
"""
import argparse
import logging
import sys
import time
from datetime import datetime

from sqlalchemy.exc import SQLAlchemyError

from .aging import refresh_aging_levels
from .db import Database
from .errors import NotFound
from .occupancy import refresh_counts
from .tenants import get_tenant, list_tenants

logger = logging.getLogger(__name__)


def refresh_all(
    database: Database,
    tenant_ids: list[int] | None = None,
    now: datetime | None = None,
) -> dict[int, tuple[int, int]]:
    """
    Refresh the given tenants (all active ones by default). Unknown or
    inactive tenant ids are skipped with a warning.

    Returns {tenant_id: (orders_updated, tables_processed)}.
    """
    results = {}
    with database.session() as session:
        if tenant_ids:
            tenants = []
            for tenant_id in tenant_ids:
                try:
                    tenants.append(get_tenant(session, tenant_id))
                except NotFound:
                    logger.warning(f"Tenant {tenant_id} not found or inactive, skipped")
        else:
            tenants = list_tenants(session)
        for tenant in tenants:
            orders_updated = refresh_aging_levels(session, tenant.id, now)
            tables = refresh_counts(session, tenant.id)
            results[tenant.id] = (orders_updated, tables)
            logger.info(f"Tenant {tenant.id}: {orders_updated} orders re-aged, {tables} tables recounted")
    return results


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    # Set up logging for CLI usage
    logging.basicConfig(
        level=logging.INFO,
        format='%(levelname)s: %(message)s'
    )

    parser = argparse.ArgumentParser(description="Refresh order aging levels and table counts")
    parser.add_argument(
        "--tenant",
        type=int,
        action="append",
        dest="tenants",
        help="Tenant id to refresh (repeatable; default: every active tenant)",
    )
    parser.add_argument(
        "--interval",
        type=float,
        default=None,
        help="Repeat every INTERVAL seconds instead of running once",
    )
    parser.add_argument(
        "--database-url",
        default=None,
        help="Override DATABASE_URL",
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable verbose logging",
    )

    args = parser.parse_args(argv)

    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    database = Database(args.database_url)
    try:
        while True:
            refresh_all(database, args.tenants)
            if args.interval is None:
                break
            time.sleep(args.interval)
    except KeyboardInterrupt:
        logger.info("Refresh loop stopped")
    except SQLAlchemyError as e:
        logger.error(f"Refresh failed: {e}")
        return 1
    finally:
        database.dispose()
    return 0


if __name__ == "__main__":
    sys.exit(main())
