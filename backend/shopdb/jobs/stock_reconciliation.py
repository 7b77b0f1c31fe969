"""Stock reconciliation job.

Intended for cron/Task Scheduler (e.g. nightly). Compares every part's
balance with its opening quantity plus its ledger, and reports any part that
does not add up. Read-only: it never corrects a balance.

Exit status is 1 when any part is out of balance, so a scheduler can alert.
"""

from __future__ import annotations

import logging
import sys
from typing import Optional

from sqlalchemy.orm import Session

from shopdb.database import ReadSessionLocal
from shopdb.apps.inventory import ledger

logger = logging.getLogger(__name__)


def check(db: Session) -> dict:
    report = ledger.reconcile_all(db)
    mismatches = [row for row in report if not row.balanced]
    for row in mismatches:
        logger.error(
            "Stock ledger out of balance",
            extra={
                "part_id": row.part_id,
                "part_number": row.part_number,
                "quantity": row.quantity,
                "expected_quantity": row.expected_quantity,
            },
        )
    return {
        "parts_checked": len(report),
        "mismatched": [
            {
                "part_id": row.part_id,
                "part_number": row.part_number,
                "quantity": row.quantity,
                "expected_quantity": row.expected_quantity,
            }
            for row in mismatches
        ],
    }


def run(db: Optional[Session] = None) -> dict:
    """Execute the check and return a summary dict."""
    if db is not None:
        return check(db)
    db = ReadSessionLocal()
    try:
        return check(db)
    finally:
        db.close()


def main() -> None:
    logging.basicConfig(level=logging.INFO)
    result = run()
    print("Stock reconciliation completed:", result)
    sys.exit(1 if result["mismatched"] else 0)


if __name__ == "__main__":
    main()
