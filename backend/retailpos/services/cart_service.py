# Overview: Cart aggregate; lazy creation, inventory reconciliation and line editing.

"""
Cart Service

Carts are single-owner documents: each user has at most one ACTIVE cart,
created lazily on first access. Reads reconcile the cart against live
inventory (drop lines for products that are gone or out of stock, clamp
quantities to what is on hand). Reconciliation is a lazy repair, not a
guarantee; checkout re-checks stock authoritatively.
"""

from __future__ import annotations

import math

from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import Cart, CartItem, CART_ACTIVE
from ..errors import CartNotFoundError, InsufficientStockError, NotFoundError, ValidationError
from ..validation import coerce_int, optional_str, positive_quantity
from . import inventory_service
from .concurrency import commit_write, run_with_retry
from retailpos.time_utils import utcnow


def find_active_cart(user_id: int) -> Cart | None:
    return db.session.query(Cart).filter_by(user_id=user_id, status=CART_ACTIVE).first()


def require_active_cart(user_id: int) -> Cart:
    cart = find_active_cart(user_id)
    if not cart:
        raise CartNotFoundError()
    return cart


def get_or_create(user_id: int) -> Cart:
    """Return the user's active cart, creating an empty one if none exists."""
    cart = find_active_cart(user_id)
    if cart:
        return cart

    cart = Cart(user_id=user_id, status=CART_ACTIVE)
    db.session.add(cart)
    try:
        db.session.commit()
    except IntegrityError:
        # Another request created it first (uq_carts_user_active)
        db.session.rollback()
        cart = find_active_cart(user_id)
        if not cart:
            raise
    return cart


def reconcile(cart: Cart) -> bool:
    """
    Repair the cart against current stock.

    Walks lines in reverse so removal is safe. Returns True when anything
    changed; only then is the cart written.
    """
    changed = False
    for item in reversed(list(cart.items)):
        product = inventory_service.get_product(item.product_id) if item.product_id else None

        if product is None or product.quantity <= 0:
            cart.items.remove(item)
            changed = True
            continue

        if item.quantity > product.quantity:
            item.quantity = product.quantity
            changed = True

    if changed:
        cart.updated_at = utcnow()
        db.session.commit()
    return changed


def get_cart(user_id: int) -> Cart:
    """get-cart: lazily created and reconciled."""
    def _op():
        cart = get_or_create(user_id)
        reconcile(cart)
        return cart

    return run_with_retry(_op)


def add_item(user_id: int, product_id, quantity=1) -> Cart:
    """
    Add a product, or grow the existing line for it.

    The requested total (existing + new) must fit in current stock.
    """
    if product_id is None:
        raise ValidationError("Product ID is required")
    product_id = coerce_int(product_id, "product_id")
    quantity = positive_quantity(quantity)

    def _op():
        product = inventory_service.get_product(product_id)
        if not product:
            raise NotFoundError("Product not found")

        cart = get_or_create(user_id)
        line = cart.find_product_line(product_id)
        requested = quantity + (line.quantity if line else 0)

        if requested > product.quantity:
            raise InsufficientStockError(product.quantity, product_id=product_id)

        if line:
            line.quantity = requested
        else:
            cart.items.append(
                CartItem(
                    product_id=product.id,
                    quantity=quantity,
                    unit_price_cents=product.selling_price_cents,
                    name=product.name,
                    product_code=product.product_code,
                    unit=product.unit,
                    position=cart.next_position(),
                )
            )

        cart.updated_at = utcnow()
        commit_write(cart_id=cart.id)
        return cart

    return run_with_retry(_op)


def add_item_by_code(user_id: int, product_code, quantity=1) -> Cart:
    """Scanner flow: resolve the printed code, then add as usual."""
    product = inventory_service.require_product_by_code(product_code)
    return add_item(user_id, product.id, quantity)


def update_item_quantity(user_id: int, item_id: int, quantity) -> Cart:
    """Replace a line's quantity. Stock is not checked here; checkout does that."""
    if quantity is None:
        raise ValidationError("Valid quantity is required")
    quantity = coerce_int(quantity, "quantity")
    if quantity < 1:
        raise ValidationError("Valid quantity is required")

    def _op():
        cart = require_active_cart(user_id)
        line = cart.find_item(item_id)
        if not line:
            raise NotFoundError("Item not found in cart")

        line.quantity = quantity
        cart.updated_at = utcnow()
        commit_write(cart_id=cart.id)
        return cart

    return run_with_retry(_op)


def remove_item(user_id: int, item_id: int) -> Cart:
    def _op():
        cart = require_active_cart(user_id)
        line = cart.find_item(item_id)
        if not line:
            raise NotFoundError("Item not found in cart")

        cart.items.remove(line)
        cart.updated_at = utcnow()
        commit_write(cart_id=cart.id)
        return cart

    return run_with_retry(_op)


def clear(user_id: int) -> Cart:
    def _op():
        cart = require_active_cart(user_id)
        cart.items.clear()
        cart.updated_at = utcnow()
        commit_write(cart_id=cart.id)
        return cart

    return run_with_retry(_op)


def update_details(user_id: int, data: dict) -> Cart:
    """Set the free-text note and/or coupon code of the active cart."""
    note = optional_str(data, "note", max_length=2000)
    code = optional_str(data, "coupon_code", max_length=64)

    def _op():
        cart = get_or_create(user_id)
        if "note" in data:
            cart.note = note
        if "coupon_code" in data:
            cart.coupon_code = code.upper() if code else None
        cart.updated_at = utcnow()
        commit_write(cart_id=cart.id)
        return cart

    return run_with_retry(_op)


def list_carts(*, status: str = CART_ACTIVE, page: int = 1, limit: int = 10) -> dict:
    """Admin listing of carts by status, most recently touched first."""
    page = max(1, page)
    limit = max(1, min(limit, 100))

    query = db.session.query(Cart).filter(Cart.status == status)
    total = query.count()
    carts = (
        query.order_by(Cart.updated_at.desc(), Cart.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )

    rows = []
    for cart in carts:
        row = cart.to_dict()
        row["user"] = {"id": cart.user.id, "username": cart.user.username, "email": cart.user.email} if cart.user else None
        rows.append(row)

    return {
        "count": len(rows),
        "total": total,
        "total_pages": math.ceil(total / limit) if total else 0,
        "current_page": page,
        "carts": rows,
    }
