"""Cart aggregate: lazy creation, line editing and inventory reconciliation."""

from datetime import datetime

import pytest
from sqlalchemy.exc import OperationalError

from retailpos.errors import (
    CartNotFoundError,
    CommitOutcomeUnknownError,
    InsufficientStockError,
    NotFoundError,
    ValidationError,
)
from retailpos.extensions import db
from retailpos.models import Cart, CartItem, CART_ACTIVE
from retailpos.services import cart_service, inventory_service


def _assert_totals(cart):
    assert cart.item_count == sum(item.quantity for item in cart.items)
    assert cart.total_cents == cart.subtotal_cents - cart.applied_discount_cents


class TestGetCart:
    def test_creates_empty_active_cart_lazily(self, db_session, user):
        assert db_session.query(Cart).count() == 0

        cart = cart_service.get_cart(user.id)

        assert cart.status == CART_ACTIVE
        assert cart.items == []
        assert cart.item_count == 0
        assert cart.total_cents == 0
        assert db_session.query(Cart).count() == 1

    def test_returns_same_cart_on_second_call(self, db_session, user):
        first = cart_service.get_cart(user.id)
        second = cart_service.get_cart(user.id)
        assert first.id == second.id
        assert db_session.query(Cart).filter_by(user_id=user.id).count() == 1

    def test_clamps_quantity_to_current_stock_and_persists(self, db_session, user, product):
        cart_service.add_item(user.id, product.id, 5)

        product.quantity = 2
        db_session.commit()

        cart = cart_service.get_cart(user.id)
        assert cart.items[0].quantity == 2
        _assert_totals(cart)

        db_session.expire_all()
        stored = db_session.query(CartItem).one()
        assert stored.quantity == 2

    def test_drops_line_for_out_of_stock_product(self, db_session, user, product, make_product):
        other = make_product("Product B", quantity=4)
        cart_service.add_item(user.id, product.id, 1)
        cart_service.add_item(user.id, other.id, 2)

        product.quantity = 0
        db_session.commit()

        cart = cart_service.get_cart(user.id)
        assert [item.product_id for item in cart.items] == [other.id]
        _assert_totals(cart)

    def test_drops_line_for_deleted_product(self, db_session, user, product):
        cart_service.add_item(user.id, product.id, 1)
        inventory_service.delete_product(product.id)

        cart = cart_service.get_cart(user.id)
        assert cart.items == []
        assert db_session.query(CartItem).count() == 0


class TestReconcile:
    def test_consistent_cart_is_left_untouched(self, db_session, user, product):
        cart = cart_service.add_item(user.id, product.id, 2)

        assert cart_service.reconcile(cart) is False
        assert not db_session.dirty
        assert cart.items[0].quantity == 2

    def test_reconcile_is_idempotent(self, db_session, user, product):
        cart = cart_service.add_item(user.id, product.id, 4)
        product.quantity = 3
        db_session.commit()

        assert cart_service.reconcile(cart) is True
        assert cart_service.reconcile(cart) is False
        assert cart.items[0].quantity == 3


class TestAddItem:
    def test_snapshots_product_details(self, db_session, user, product):
        cart = cart_service.add_item(user.id, product.id, 2)

        line = cart.items[0]
        assert line.product_id == product.id
        assert line.quantity == 2
        assert line.unit_price_cents == 1000
        assert line.name == "Product A"
        assert line.product_code == product.product_code
        assert line.unit == "pcs"
        assert cart.subtotal_cents == 2000
        _assert_totals(cart)

    def test_quantity_defaults_to_one(self, db_session, user, product):
        cart = cart_service.add_item(user.id, product.id)
        assert cart.items[0].quantity == 1

    def test_existing_line_is_summed(self, db_session, user, product):
        cart_service.add_item(user.id, product.id, 2)
        cart = cart_service.add_item(user.id, product.id, 3)

        assert len(cart.items) == 1
        assert cart.items[0].quantity == 5
        _assert_totals(cart)

    def test_summed_quantity_over_stock_is_rejected(self, db_session, user, product):
        cart_service.add_item(user.id, product.id, 4)

        with pytest.raises(InsufficientStockError) as exc_info:
            cart_service.add_item(user.id, product.id, 2)

        assert exc_info.value.available == 5
        assert exc_info.value.to_dict()["available_quantity"] == 5
        assert cart_service.get_cart(user.id).items[0].quantity == 4

    def test_unknown_product(self, db_session, user):
        with pytest.raises(NotFoundError):
            cart_service.add_item(user.id, 9999, 1)

    def test_missing_product_id(self, db_session, user):
        with pytest.raises(ValidationError):
            cart_service.add_item(user.id, None, 1)

    @pytest.mark.parametrize("quantity", [0, -1, "1.5", 2.0, True])
    def test_invalid_quantity(self, db_session, user, product, quantity):
        with pytest.raises(ValidationError):
            cart_service.add_item(user.id, product.id, quantity)

    def test_lines_keep_insertion_order(self, db_session, user, make_product):
        first = make_product("First")
        second = make_product("Second")
        cart_service.add_item(user.id, second.id)
        cart = cart_service.add_item(user.id, first.id)

        assert [item.name for item in cart.items] == ["Second", "First"]


class TestEditLines:
    def test_update_quantity_skips_stock_check(self, db_session, user, product):
        cart = cart_service.add_item(user.id, product.id, 1)
        item_id = cart.items[0].id

        cart = cart_service.update_item_quantity(user.id, item_id, 50)

        assert cart.items[0].quantity == 50
        _assert_totals(cart)

    def test_update_quantity_rejects_zero(self, db_session, user, product):
        cart = cart_service.add_item(user.id, product.id, 1)
        with pytest.raises(ValidationError):
            cart_service.update_item_quantity(user.id, cart.items[0].id, 0)

    def test_update_unknown_line(self, db_session, user, product):
        cart_service.add_item(user.id, product.id, 1)
        with pytest.raises(NotFoundError):
            cart_service.update_item_quantity(user.id, 9999, 2)

    def test_update_without_cart(self, db_session, user):
        with pytest.raises(CartNotFoundError):
            cart_service.update_item_quantity(user.id, 1, 2)

    def test_remove_item(self, db_session, user, product, make_product):
        other = make_product("Product B")
        cart_service.add_item(user.id, product.id, 1)
        cart = cart_service.add_item(user.id, other.id, 1)
        item_id = cart.items[0].id

        cart = cart_service.remove_item(user.id, item_id)

        assert [item.product_id for item in cart.items] == [other.id]
        assert db_session.query(CartItem).count() == 1

    def test_remove_unknown_line(self, db_session, user, product):
        cart_service.add_item(user.id, product.id, 1)
        with pytest.raises(NotFoundError):
            cart_service.remove_item(user.id, 9999)

    def test_clear(self, db_session, user, product):
        cart_service.add_item(user.id, product.id, 3)

        cart = cart_service.clear(user.id)

        assert cart.items == []
        assert cart.item_count == 0
        assert cart.total_cents == 0
        assert db_session.query(CartItem).count() == 0

    def test_clear_without_cart(self, db_session, user):
        with pytest.raises(CartNotFoundError):
            cart_service.clear(user.id)


class TestDetails:
    def test_note_and_coupon_code(self, db_session, user):
        cart = cart_service.update_details(user.id, {"note": " leave at door ", "coupon_code": "save10"})
        assert cart.note == "leave at door"
        assert cart.coupon_code == "SAVE10"

        cart = cart_service.update_details(user.id, {"coupon_code": None})
        assert cart.coupon_code is None
        assert cart.note == "leave at door"

    def test_discount_never_exceeds_subtotal(self, db_session, user, product):
        cart = cart_service.add_item(user.id, product.id, 1)
        cart.discount_cents = 5000
        db_session.commit()

        assert cart.applied_discount_cents == 1000
        assert cart.total_cents == 0


class TestListCarts:
    def test_paginates_by_status(self, db_session, make_user, product):
        for i in range(3):
            owner = make_user(f"shopper{i}")
            cart_service.add_item(owner.id, product.id, 1)

        page = cart_service.list_carts(status=CART_ACTIVE, page=1, limit=2)

        assert page["total"] == 3
        assert page["total_pages"] == 2
        assert page["current_page"] == 1
        assert page["count"] == 2
        assert page["carts"][0]["user"]["username"].startswith("shopper")

        second = cart_service.list_carts(status=CART_ACTIVE, page=2, limit=2)
        assert second["count"] == 1

    def test_empty_listing(self, db_session):
        page = cart_service.list_carts(status="converted")
        assert page == {"count": 0, "total": 0, "total_pages": 0, "current_page": 1, "carts": []}

    def test_line_edits_move_cart_to_the_front(self, db_session, make_user, product):
        older = make_user("older")
        newer = make_user("newer")
        older_cart = cart_service.get_cart(older.id)
        newer_cart = cart_service.get_cart(newer.id)
        older_cart.updated_at = datetime(2020, 1, 1)
        newer_cart.updated_at = datetime(2020, 6, 1)
        db_session.commit()

        assert cart_service.list_carts()["carts"][0]["id"] == newer_cart.id

        cart_service.add_item(older.id, product.id, 1)

        assert cart_service.list_carts()["carts"][0]["id"] == older_cart.id

    @pytest.mark.parametrize("edit", ["update", "remove", "clear"])
    def test_every_line_edit_touches_updated_at(self, db_session, user, product, edit):
        cart = cart_service.add_item(user.id, product.id, 2)
        item_id = cart.items[0].id
        cart.updated_at = datetime(2020, 1, 1)
        db_session.commit()

        if edit == "update":
            cart_service.update_item_quantity(user.id, item_id, 1)
        elif edit == "remove":
            cart_service.remove_item(user.id, item_id)
        else:
            cart_service.clear(user.id)

        assert db_session.get(Cart, cart.id).updated_at > datetime(2020, 1, 1)


class TestCommitFailures:
    def test_failed_commit_is_not_retried(self, db_session, user, product, monkeypatch):
        cart = cart_service.get_cart(user.id)
        calls = []

        def failing_commit():
            calls.append(1)
            raise OperationalError("COMMIT", {}, Exception("disk I/O error"))

        monkeypatch.setattr(db.session, "commit", failing_commit)

        with pytest.raises(CommitOutcomeUnknownError) as exc_info:
            cart_service.add_item(user.id, product.id, 1)

        assert len(calls) == 1
        assert exc_info.value.status_code == 503
        assert exc_info.value.details == {"cart_id": cart.id}


class TestAddByCode:
    def test_reuses_add_item_rules(self, db_session, user, product):
        cart = cart_service.add_item_by_code(user.id, product.product_code)
        assert [(i.product_id, i.quantity) for i in cart.items] == [(product.id, 1)]

        cart = cart_service.add_item_by_code(user.id, product.product_code, 4)
        assert cart.items[0].quantity == 5

        with pytest.raises(InsufficientStockError):
            cart_service.add_item_by_code(user.id, product.product_code, 1)

    def test_unknown_code(self, db_session, user):
        with pytest.raises(NotFoundError):
            cart_service.add_item_by_code(user.id, "NOPE-1")
