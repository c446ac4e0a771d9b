from __future__ import annotations

import argparse
from datetime import date
from typing import List, Optional

from sqlalchemy.orm import Session

import lexbill.models  # noqa: F401
from lexbill.core.rbac import Actor
from lexbill.core.settings import settings
from lexbill.db.base import Base
from lexbill.db.session import SessionLocal, engine
from lexbill.models.enums import InvoiceStatus, Role
from lexbill.models.invoice import Invoice
from lexbill.services.invoices import list_outstanding_invoices, verify_invoice_amount
from lexbill.services.recurring import generate_due_recurring_invoices


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Billing maintenance tasks.")
    sub = parser.add_subparsers(dest="command", required=True)

    init_db = sub.add_parser("init-db", help="Create all billing tables.")
    init_db.add_argument(
        "--allow-production",
        action="store_true",
        help="Allow running in production (not recommended).",
    )

    sub.add_parser("verify", help="Recompute every non-cancelled invoice and list mismatches.")

    outstanding = sub.add_parser("outstanding", help="List invoices past their due date.")
    outstanding.add_argument("--today", type=date.fromisoformat, default=None)

    recurring = sub.add_parser("recurring", help="Invoice every recurring charge that is due.")
    recurring.add_argument("--today", type=date.fromisoformat, default=None)
    recurring.add_argument("--actor-id", type=int, required=True, help="Admin user recorded as the invoice creator.")
    return parser.parse_args(argv)


def find_mismatched_invoices(db: Session) -> List[Invoice]:
    invoices = (
        db.query(Invoice)
        .filter(Invoice.status != InvoiceStatus.CANCELLED, Invoice.is_upfront_payment.is_(False))
        .order_by(Invoice.id.asc())
        .all()
    )
    return [invoice for invoice in invoices if not verify_invoice_amount(invoice)]


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)

    if args.command == "init-db":
        env = settings.environment.lower()
        if env in {"prod", "production"} and not args.allow_production:
            raise RuntimeError("Refusing to run in production without --allow-production")
        Base.metadata.create_all(bind=engine)
        print(f"created tables on {engine.url.render_as_string(hide_password=True)}")
        return 0

    with SessionLocal() as db:
        if args.command == "verify":
            mismatched = find_mismatched_invoices(db)
            for invoice in mismatched:
                print(f"mismatch: invoice {invoice.id} ({invoice.invoice_number or 'unnumbered'}) amount={invoice.amount}")
            print(f"{len(mismatched)} mismatched invoice(s)")
            return 1 if mismatched else 0

        if args.command == "recurring":
            run = generate_due_recurring_invoices(db, actor=Actor(user_id=args.actor_id, role=Role.ADMIN), today=args.today)
            for invoice in run.invoices:
                print(f"{invoice.invoice_number or invoice.id}\tproject {invoice.project_id}\t{invoice.amount}")
            for project_id in run.failed_project_ids:
                print(f"failed: project {project_id}")
            print(f"{len(run.invoices)} recurring invoice(s)")
            return 1 if run.failed_project_ids else 0

        rows = list_outstanding_invoices(db, args.today)
        for invoice in rows:
            print(f"{invoice.invoice_number or invoice.id}\t{invoice.status.value}\tdue {invoice.due_date}\t{invoice.amount}")
        print(f"{len(rows)} outstanding invoice(s)")
        return 0


if __name__ == "__main__":
    raise SystemExit(main())
