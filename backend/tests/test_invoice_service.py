from datetime import datetime

from retailpos.models import InvoiceSequence
from retailpos.services.invoice_service import format_invoice_number, next_invoice_number


def test_format_pads_sequence():
    assert format_invoice_number("20240301", 7) == "INV-20240301-0007"
    assert format_invoice_number("20240301", 12345) == "INV-20240301-12345"


def test_numbers_increase_within_a_day(db_session):
    day = datetime(2024, 3, 1, 10, 0)

    first = next_invoice_number(at=day)
    second = next_invoice_number(at=day)
    db_session.commit()

    assert first == "INV-20240301-0001"
    assert second == "INV-20240301-0002"
    assert db_session.query(InvoiceSequence).filter_by(day_key="20240301").one().next_number == 3


def test_numbering_restarts_each_day(db_session):
    next_invoice_number(at=datetime(2024, 3, 1, 23, 59))
    next_invoice_number(at=datetime(2024, 3, 1, 23, 59))

    assert next_invoice_number(at=datetime(2024, 3, 2, 0, 1)) == "INV-20240302-0001"
    db_session.commit()
    assert db_session.query(InvoiceSequence).count() == 2


def test_uncommitted_numbers_are_not_consumed(db_session):
    day = datetime(2024, 3, 5)
    next_invoice_number(at=day)
    db_session.commit()

    next_invoice_number(at=day)
    db_session.rollback()

    assert next_invoice_number(at=day) == "INV-20240305-0002"
