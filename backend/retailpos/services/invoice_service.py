# Overview: Invoice number allocation (INV-YYYYMMDD-NNNN, restarting every day).

from __future__ import annotations

from datetime import datetime

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import InvoiceSequence
from retailpos.time_utils import utcnow


INVOICE_PREFIX = "INV"


def format_invoice_number(day_key: str, number: int, pad: int = 4) -> str:
    return f"{INVOICE_PREFIX}-{day_key}-{number:0{pad}d}"


def next_invoice_number(*, at: datetime | None = None, pad: int = 4) -> str:
    """
    Allocate the next invoice number for the day of `at` (default: now, UTC).

    Uses an atomic UPDATE on the day's sequence row so two checkouts can never
    share a number. Does not commit; the number is only consumed if the
    caller's transaction commits.
    """
    day_key = (at or utcnow()).strftime("%Y%m%d")

    stmt = (
        update(InvoiceSequence)
        .where(InvoiceSequence.day_key == day_key)
        .values(next_number=InvoiceSequence.next_number + 1)
        .execution_options(synchronize_session=False)
    )

    result = db.session.execute(stmt)
    if result.rowcount:
        current = (
            db.session.query(InvoiceSequence.next_number)
            .filter_by(day_key=day_key)
            .scalar()
        )
        return format_invoice_number(day_key, current - 1, pad)

    seq = InvoiceSequence(day_key=day_key, next_number=2)
    try:
        with db.session.begin_nested():
            db.session.add(seq)
    except IntegrityError:
        # first-of-day row inserted concurrently; take the next number from it
        result = db.session.execute(stmt)
        if not result.rowcount:
            raise
        current = (
            db.session.query(InvoiceSequence.next_number)
            .filter_by(day_key=day_key)
            .scalar()
        )
        return format_invoice_number(day_key, current - 1, pad)

    return format_invoice_number(day_key, 1, pad)
