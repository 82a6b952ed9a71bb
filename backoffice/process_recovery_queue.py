from __future__ import annotations

import argparse
from datetime import date

from backoffice.db import SessionLocal
from backoffice.logging_setup import configure_logging
from backoffice.security.sessions import purge_expired_sessions
from backoffice.services.installment_service import mark_overdue_payments
from backoffice.services.recovery_service import recovery_service


def process_queue(*, limit: int, mark_overdue: bool, purge_sessions: bool = False) -> dict[str, int]:
    with SessionLocal() as db:
        summary = recovery_service.process_recovery_queue(db, limit=limit)
        if mark_overdue:
            summary['overdue_payments'] = mark_overdue_payments(db, today=date.today())
        if purge_sessions:
            summary['purged_sessions'] = purge_expired_sessions(db)
        db.commit()
    return summary


def main() -> None:
    parser = argparse.ArgumentParser(description='Run due items in the recovery queue.')
    parser.add_argument('--limit', type=int, default=100, help='Maximum number of queued items to run.')
    parser.add_argument('--mark-overdue', action='store_true', help='Also flag installment payments past their due date.')
    parser.add_argument('--purge-sessions', action='store_true', help='Also delete expired and revoked staff sessions.')
    args = parser.parse_args()
    configure_logging()

    summary = process_queue(limit=args.limit, mark_overdue=args.mark_overdue, purge_sessions=args.purge_sessions)
    print(
        f"Recovery queue complete: processed={summary['processed']} "
        f"successful={summary['successful']} failed={summary['failed']}"
    )
    if 'overdue_payments' in summary:
        print(f"Installment payments marked overdue: {summary['overdue_payments']}")
    if 'purged_sessions' in summary:
        print(f"Staff sessions purged: {summary['purged_sessions']}")


if __name__ == '__main__':
    main()
