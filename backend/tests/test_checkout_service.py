"""
Checkout pipeline tests.

Covers the happy path arithmetic, all-or-nothing validation, retry
exhaustion on lost decrements and the best-effort order confirmation.
"""

import re
import smtplib

import pytest
from jinja2 import TemplateError
from sqlalchemy.exc import OperationalError

from retailpos.errors import (
    CartNotFoundError,
    CommitOutcomeUnknownError,
    EmptyCartError,
    InsufficientStockError,
    ItemsUnavailableError,
    ValidationError,
)
from retailpos.extensions import db
from retailpos.models import Cart, Report, ReportItem, Sale, CART_ACTIVE, CART_CONVERTED
from retailpos.services import cart_service, checkout_service, inventory_service, notification_service


CUSTOMER = {"name": "Ada Buyer", "email": "ada@example.com", "phone": "555-0100", "address": "1 Main St"}


def _stock(db_session, product_id):
    return inventory_service.current_stock(product_id)


class TestCheckoutHappyPath:
    def test_single_line_arithmetic(self, db_session, user, product):
        cart_service.add_item(user.id, product.id, 2)

        result = checkout_service.checkout(user.id, "cash", CUSTOMER)

        assert _stock(db_session, product.id) == 3
        report = result.report
        assert report.total_revenue_cents == 2000
        assert report.total_cost_cents == 1200
        assert report.total_profit_cents == 800
        assert report.categories == {"General": {"count": 2, "revenue": 2000, "profit": 800}}
        assert report.payment_method == "cash"
        assert report.payment_status == "paid"
        assert report.amount_paid_cents == 2000
        assert report.remaining_balance_cents == 0

        item = db_session.query(ReportItem).one()
        assert (item.cost_cents, item.revenue_cents, item.profit_cents) == (1200, 2000, 800)
        assert item.product_name == "Product A"

    def test_cart_is_converted_and_new_cart_starts_empty(self, db_session, user, product):
        cart = cart_service.add_item(user.id, product.id, 1)
        cart_id = cart.id

        result = checkout_service.checkout(user.id, "debit")

        assert result.cart.status == CART_CONVERTED
        assert result.cart.converted_at is not None

        fresh = cart_service.get_cart(user.id)
        assert fresh.id != cart_id
        assert fresh.items == []
        assert db_session.get(Cart, cart_id).status == CART_CONVERTED

    def test_profit_equals_sum_of_lines(self, db_session, user, make_product):
        a = make_product("A", selling=1000, buying=600, quantity=5, category="Tools")
        b = make_product("B", selling=250, buying=300, quantity=10, category="Paint")
        c = make_product("C", selling=500, buying=100, quantity=3, category="Tools")
        cart_service.add_item(user.id, a.id, 2)
        cart_service.add_item(user.id, b.id, 4)
        cart_service.add_item(user.id, c.id, 3)

        result = checkout_service.checkout(user.id, "credit")

        items = db_session.query(ReportItem).all()
        assert result.report.total_profit_cents == sum(i.revenue_cents - i.cost_cents for i in items)
        assert list(result.report.categories) == ["Tools", "Paint"]
        assert result.report.categories["Tools"] == {"count": 5, "revenue": 3500, "profit": 2000}
        assert result.report.categories["Paint"] == {"count": 4, "revenue": 1000, "profit": -200}
        assert [_stock(db_session, p.id) for p in (a, b, c)] == [3, 6, 0]

    def test_sale_record_and_invoice_number(self, db_session, user, product):
        cart_service.add_item(user.id, product.id, 1)

        result = checkout_service.checkout(user.id, "cash", CUSTOMER)

        assert re.fullmatch(r"INV-\d{8}-0001", result.sale.invoice_number)
        assert result.report.sale_id == result.sale.id
        sale = db_session.query(Sale).one()
        assert sale.customer_info() == CUSTOMER
        assert sale.total_cents == 1000
        assert [line.quantity for line in sale.items] == [1]

    def test_sale_creation_can_be_disabled(self, app, db_session, user, product, monkeypatch):
        monkeypatch.setitem(app.config, "CHECKOUT_CREATE_SALE", False)
        cart_service.add_item(user.id, product.id, 1)

        result = checkout_service.checkout(user.id, "cash")

        assert result.sale is None
        assert result.report.sale_id is None
        assert db_session.query(Sale).count() == 0
        assert result.to_dict()["invoice_number"] is None

    def test_result_payload(self, db_session, user, product):
        cart_service.add_item(user.id, product.id, 2)

        payload = checkout_service.checkout(user.id, "Cash").to_dict()

        assert payload["payment_method"] == "cash"
        assert payload["total_profit_cents"] == 800
        assert payload["item_count"] == 2
        assert payload["total_cents"] == 2000
        assert payload["status"] == CART_CONVERTED
        assert payload["notification"]["status"] == notification_service.STATUS_SKIPPED
        assert payload["occurred_at"].endswith("Z")


class TestCheckoutRejections:
    def test_empty_cart(self, db_session, user, product):
        cart_service.get_cart(user.id)

        with pytest.raises(EmptyCartError):
            checkout_service.checkout(user.id, "cash")

        assert db_session.query(Report).count() == 0
        assert _stock(db_session, product.id) == 5

    def test_no_cart(self, db_session, user):
        with pytest.raises(CartNotFoundError):
            checkout_service.checkout(user.id, "cash")

    @pytest.mark.parametrize("method", [None, "", "barter", 5])
    def test_invalid_payment_method(self, db_session, user, product, method):
        cart_service.add_item(user.id, product.id, 1)

        with pytest.raises(ValidationError):
            checkout_service.checkout(user.id, method)

        assert _stock(db_session, product.id) == 5

    def test_invalid_customer_info(self, db_session, user, product):
        cart_service.add_item(user.id, product.id, 1)
        with pytest.raises(ValidationError):
            checkout_service.checkout(user.id, "cash", ["not", "a", "dict"])

    def test_all_or_nothing(self, db_session, user, make_product):
        a = make_product("A", quantity=5)
        b = make_product("B", quantity=3)
        cart_service.add_item(user.id, a.id, 2)
        cart_service.add_item(user.id, b.id, 3)

        b.quantity = 1
        db_session.commit()

        with pytest.raises(ItemsUnavailableError) as exc_info:
            checkout_service.checkout(user.id, "cash")

        unavailable = exc_info.value.items
        assert [(u["name"], u["requested"], u["available"]) for u in unavailable] == [("B", 3, 1)]
        assert _stock(db_session, a.id) == 5
        assert _stock(db_session, b.id) == 1
        assert db_session.query(Report).count() == 0
        assert db_session.query(Sale).count() == 0
        assert cart_service.find_active_cart(user.id).status == CART_ACTIVE

    def test_deleted_product_counts_as_zero_stock(self, db_session, user, product):
        cart_service.add_item(user.id, product.id, 1)
        inventory_service.delete_product(product.id)

        with pytest.raises(ItemsUnavailableError) as exc_info:
            checkout_service.checkout(user.id, "cash")

        assert exc_info.value.items[0]["available"] == 0
        assert exc_info.value.items[0]["name"] == "Product A"

    def test_lost_decrement_race_exhausts_retries(self, db_session, user, product, monkeypatch):
        cart_service.add_item(user.id, product.id, 2)
        calls = []

        def always_lose(product_id, quantity):
            calls.append(product_id)
            raise InsufficientStockError(0, product_id=product_id)

        monkeypatch.setattr(inventory_service, "decrement_stock", always_lose)

        with pytest.raises(ItemsUnavailableError) as exc_info:
            checkout_service.checkout(user.id, "cash")

        assert len(calls) == 3
        assert exc_info.value.items[0]["product_id"] == product.id
        assert exc_info.value.items[0]["requested"] == 2
        assert _stock(db_session, product.id) == 5
        assert db_session.query(Report).count() == 0
        assert cart_service.find_active_cart(user.id) is not None


class TestOrderConfirmation:
    def test_sent_after_commit(self, app, db_session, user, product, monkeypatch):
        monkeypatch.setitem(app.config, "NOTIFICATIONS_ENABLED", True)
        sent = []
        monkeypatch.setattr(notification_service, "_deliver", lambda message: sent.append(message))
        cart_service.add_item(user.id, product.id, 1)

        result = checkout_service.checkout(user.id, "cash", CUSTOMER)

        assert result.notification == {"status": "sent", "recipient": "ada@example.com"}
        assert result.message == "Checkout completed successfully"
        assert len(sent) == 1
        assert sent[0]["To"] == "ada@example.com"
        html = sent[0].get_body(preferencelist=("html",)).get_content()
        assert "Ada Buyer" in html
        assert result.sale.invoice_number in html

    def test_failure_does_not_roll_back(self, app, db_session, user, product, monkeypatch):
        monkeypatch.setitem(app.config, "NOTIFICATIONS_ENABLED", True)

        def broken(message):
            raise smtplib.SMTPException("relay refused")

        monkeypatch.setattr(notification_service, "_deliver", broken)
        cart_service.add_item(user.id, product.id, 2)

        result = checkout_service.checkout(user.id, "cash", CUSTOMER)

        assert result.notification_failed
        assert result.notification["status"] == notification_service.STATUS_FAILED
        assert "could not be sent" in result.message
        assert db_session.query(Report).count() == 1
        assert _stock(db_session, product.id) == 3
        assert result.cart.status == CART_CONVERTED

    def test_skipped_without_email(self, app, db_session, user, product, monkeypatch):
        monkeypatch.setitem(app.config, "NOTIFICATIONS_ENABLED", True)
        cart_service.add_item(user.id, product.id, 1)

        result = checkout_service.checkout(user.id, "cash", {"name": "Walk-in"})

        assert result.notification["status"] == notification_service.STATUS_SKIPPED

    def test_unexpected_delivery_error_is_contained(self, app, db_session, user, product, monkeypatch):
        monkeypatch.setitem(app.config, "NOTIFICATIONS_ENABLED", True)

        def broken(message):
            raise RuntimeError("mail client crashed")

        monkeypatch.setattr(notification_service, "_deliver", broken)
        cart_service.add_item(user.id, product.id, 1)

        result = checkout_service.checkout(user.id, "cash", CUSTOMER)

        assert result.notification["status"] == notification_service.STATUS_FAILED
        assert db_session.query(Report).count() == 1
        assert _stock(db_session, product.id) == 4
        assert result.cart.status == CART_CONVERTED

    def test_template_error_is_contained(self, app, db_session, user, product, monkeypatch):
        monkeypatch.setitem(app.config, "NOTIFICATIONS_ENABLED", True)

        def broken(email, customer_name, order_details):
            raise TemplateError("template missing")

        monkeypatch.setattr(notification_service, "render_order_confirmation", broken)
        cart_service.add_item(user.id, product.id, 1)

        result = checkout_service.checkout(user.id, "cash", CUSTOMER)

        assert result.notification_failed
        assert db_session.query(Report).count() == 1

    @pytest.mark.parametrize("field", ["email", "name", "phone"])
    def test_line_breaks_in_header_fields_rejected(self, app, db_session, user, product, monkeypatch, field):
        monkeypatch.setitem(app.config, "NOTIFICATIONS_ENABLED", True)
        cart_service.add_item(user.id, product.id, 1)
        customer = dict(CUSTOMER, **{field: "ada@example.com\r\nBcc: other@example.com"})

        with pytest.raises(ValidationError):
            checkout_service.checkout(user.id, "cash", customer)

        assert _stock(db_session, product.id) == 5
        assert db_session.query(Report).count() == 0
        assert cart_service.find_active_cart(user.id) is not None

    def test_multiline_address_is_kept(self, db_session, user, product):
        cart_service.add_item(user.id, product.id, 1)
        customer = dict(CUSTOMER, address="1 Main St\nSpringfield")

        result = checkout_service.checkout(user.id, "cash", customer)

        assert result.sale.customer_address == "1 Main St\nSpringfield"


class TestCommitFailure:
    def test_commit_error_is_reported_once_and_not_retried(self, db_session, user, product, monkeypatch):
        cart = cart_service.add_item(user.id, product.id, 2)
        cart_id = cart.id
        calls = []

        def failing_commit():
            calls.append(1)
            raise OperationalError("COMMIT", {}, Exception("disk I/O error"))

        monkeypatch.setattr(db.session, "commit", failing_commit)

        with pytest.raises(CommitOutcomeUnknownError) as exc_info:
            checkout_service.checkout(user.id, "cash")

        monkeypatch.undo()
        assert len(calls) == 1
        assert exc_info.value.status_code == 503
        assert exc_info.value.details["cart_id"] == cart_id
        assert _stock(db_session, product.id) == 5
        assert db_session.query(Report).count() == 0
        assert db_session.get(Cart, cart_id).status == CART_ACTIVE

    def test_route_maps_unknown_outcome_to_503(self, client, db_session, user, user_headers, product, monkeypatch):
        cart_service.add_item(user.id, product.id, 1)

        def failing_commit(**details):
            raise CommitOutcomeUnknownError(details=details)

        monkeypatch.setattr(checkout_service, "commit_write", failing_commit)

        response = client.post("/api/cart/checkout", json={"paymentMethod": "cash"}, headers=user_headers)

        assert response.status_code == 503
        assert response.get_json()["success"] is False
