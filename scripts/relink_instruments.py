#!/usr/bin/env python3
"""
Run smart linking over every pending instrument that has no owner link.

Owners and outstanding debts are read from the parties tables of the same
database.  The summary is printed as JSON; review items list the best
candidate found so an operator can link them by hand.

Usage:
    python3 scripts/relink_instruments.py --db-url sqlite:///inventory.db
    python3 scripts/relink_instruments.py --db-url sqlite:///inventory.db --floor medium
"""

import argparse
import json
import logging
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))

DEFAULT_DB_URL = "sqlite:///inventory.db"


def summarize(result) -> dict:
    review = []
    for item in result.needs_review:
        best = item.best
        review.append(
            {
                "entity_id": item.entity.entity_id,
                "entity_type": item.entity.entity_type.value,
                "reason": item.reason.value,
                "best_owner_id": best.owner_id if best else None,
                "best_confidence": best.confidence.value if best else None,
                "best_score": str(best.score) if best else None,
            }
        )
    return {
        "total_processed": result.total_processed,
        "successful_links": result.successful_links,
        "links": [
            {
                "entity_id": link.entity_id,
                "entity_type": link.entity_type.value,
                "owner_id": link.owner_id,
                "owner_type": link.owner_type.value,
                "confidence": link.confidence.value,
            }
            for link in result.links
        ],
        "needs_review": review,
        "errors": [
            {"entity_id": e.entity_id, "error_code": e.error_code, "message": e.message}
            for e in result.errors
        ],
        "skipped_user_linked": list(result.skipped_user_linked),
    }


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[1])
    parser.add_argument("--db-url", default=DEFAULT_DB_URL, help="SQLAlchemy database URL")
    parser.add_argument("--config", default=None, help="Configuration YAML (default: bundled)")
    parser.add_argument(
        "--floor",
        choices=("high", "medium", "low"),
        default=None,
        help="Override linking.auto_link_floor for this run",
    )
    parser.add_argument("--verbose", action="store_true", help="Emit structured logs to stderr")
    args = parser.parse_args(argv)

    from inventory_config import get_active_config
    from inventory_config.bridges import auto_link_floor, build_match_policy
    from inventory_kernel.db.engine import LedgerDatabase
    from inventory_kernel.domain.linking import Confidence
    from inventory_kernel.logging_config import configure_logging
    from inventory_kernel.services.entity_link_service import EntityLinkService
    from inventory_kernel.services.instrument_registry import InstrumentRegistry
    from inventory_services.reconciliation_service import ReconciliationService

    configure_logging(level=logging.INFO if args.verbose else logging.WARNING)

    config = get_active_config(args.config)
    floor = Confidence(args.floor) if args.floor else auto_link_floor(config.linking)

    db = LedgerDatabase(args.db_url)
    try:
        service = ReconciliationService(
            db,
            links=EntityLinkService(db),
            instruments=InstrumentRegistry(db),
            auto_link_floor=floor,
            policy=build_match_policy(config.linking),
            parallelism=config.linking.parallelism,
        )
        result = service.auto_link_unlinked()
    finally:
        db.dispose()

    print(json.dumps(summarize(result), indent=2))
    return 1 if result.errors else 0


if __name__ == "__main__":
    sys.exit(main())
