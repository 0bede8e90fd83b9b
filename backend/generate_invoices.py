"""
generate_invoices.py
====================
Monthly invoice run for the scheduled job.

  cd backend
  python3 generate_invoices.py --center-id <id> --academic-year 2024-25
  python3 generate_invoices.py --all-centers --academic-year 2024-25 --month 6 --year 2024

Month and year default to the current month. Re-running for a period that is
already billed is a no-op. Exits non-zero if any center fails.
"""
import argparse
import logging
import os
import sys
from datetime import date
from decimal import Decimal

from dotenv import load_dotenv

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(message)s",
    handlers=[logging.StreamHandler()],
)
logger = logging.getLogger("generate_invoices")

env_path = os.path.join(os.path.dirname(os.path.abspath(__file__)), ".env")
load_dotenv(dotenv_path=env_path, override=True)

from sqlalchemy import select  # noqa: E402

from finance_module import init_finance_module  # noqa: E402
from finance_module.capabilities import Capabilities  # noqa: E402
from finance_module.config import settings  # noqa: E402
from finance_module.database import SessionLocal  # noqa: E402
from finance_module.exceptions import FinanceError  # noqa: E402
from finance_module.invoices import generate_monthly_invoices, refresh_invoice_statuses  # noqa: E402
from finance_module.models import Center  # noqa: E402


def build_parser() -> argparse.ArgumentParser:
    today = date.today()
    parser = argparse.ArgumentParser(description="Generate monthly fee invoices.")
    target = parser.add_mutually_exclusive_group(required=True)
    target.add_argument("--center-id", help="Center to bill")
    target.add_argument("--all-centers", action="store_true", help="Bill every center")
    parser.add_argument("--academic-year", required=True, help="Academic year of the fee assignments, e.g. 2024-25")
    parser.add_argument("--month", type=int, default=today.month)
    parser.add_argument("--year", type=int, default=today.year)
    parser.add_argument("--due-days", type=int, default=settings.default_due_days)
    parser.add_argument("--late-fee", type=Decimal, default=Decimal("0"), help="Late fee per day past the due date")
    parser.add_argument(
        "--refresh-status",
        action="store_true",
        help="Also re-derive stored statuses (e.g. issued -> overdue) for open invoices",
    )
    return parser


def run(args) -> int:
    init_finance_module()
    caps = Capabilities.full()
    failures = 0
    db = SessionLocal()
    try:
        if args.all_centers:
            center_ids = list(db.execute(select(Center.id).order_by(Center.name)).scalars())
        else:
            center_ids = [args.center_id]

        for center_id in center_ids:
            try:
                result = generate_monthly_invoices(
                    db,
                    caps,
                    center_id=center_id,
                    month=args.month,
                    year=args.year,
                    academic_year=args.academic_year,
                    due_in_days=args.due_days,
                    late_fee_per_day=args.late_fee,
                )
                print(f"[{center_id}] {result.message}")
                for inv in result.invoices:
                    print(f"   {inv.invoice_number}  {inv.student_name:<30} {inv.total_amount:>12}")
                if args.refresh_status:
                    changed = refresh_invoice_statuses(db, caps, center_id=center_id)
                    print(f"[{center_id}] {changed} invoice statuses updated")
            except FinanceError as e:
                failures += 1
                logger.error(f"Invoice generation failed for center {center_id}: {e}")
    finally:
        db.close()
    return 1 if failures else 0


if __name__ == "__main__":
    sys.exit(run(build_parser().parse_args()))
