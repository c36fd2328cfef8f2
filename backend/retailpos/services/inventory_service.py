# Overview: Inventory store; product lookup, creation and guarded stock changes.

"""
Inventory Store

Product stock is the only state shared by concurrent checkouts, so every
stock change goes through a single guarded UPDATE:

    UPDATE products
       SET quantity = quantity - :qty, version_id = version_id + 1
     WHERE id = :id AND quantity >= :qty

The WHERE clause is the compare-and-swap; two writers that both saw stock 1
cannot both succeed, and the CHECK constraint backs it up at the schema level.
"""

from __future__ import annotations

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import Product
from ..errors import InsufficientStockError, NotFoundError, ProductVersionConflictError, ValidationError
from ..validation import coerce_int, non_negative_int, positive_quantity, price_cents, required_str, optional_str
from .concurrency import commit_write, run_with_retry


def get_product(product_id: int) -> Product | None:
    """Fresh read of a product; None if it no longer exists."""
    return db.session.get(Product, product_id, populate_existing=True)


def require_product(product_id: int) -> Product:
    product = get_product(product_id)
    if not product:
        raise NotFoundError("Product not found")
    return product


def get_product_by_code(code: str) -> Product | None:
    """Scanner lookup by the printed product code."""
    if not isinstance(code, str) or not code.strip():
        return None
    return (
        db.session.query(Product)
        .filter(Product.product_code == code.strip())
        .populate_existing()
        .first()
    )


def require_product_by_code(code: str) -> Product:
    product = get_product_by_code(code)
    if not product:
        raise NotFoundError("Product not found", details={"product_code": code})
    return product


def current_stock(product_id: int) -> int:
    """Stock straight from the database; 0 for a deleted product."""
    qty = db.session.query(Product.quantity).filter(Product.id == product_id).scalar()
    return int(qty or 0)


def _expire(product_id: int) -> None:
    product = db.session.identity_map.get(db.session.identity_key(Product, product_id))
    if product is not None:
        db.session.expire(product, ["quantity", "version_id", "updated_at"])


def decrement_stock(product_id: int, quantity: int) -> None:
    """
    Atomically remove `quantity` units.

    Does not commit; the caller owns the transaction. Raises
    InsufficientStockError (with the stock actually available) when the guard
    rejects the update.
    """
    quantity = positive_quantity(quantity)
    stmt = (
        update(Product)
        .where(Product.id == product_id, Product.quantity >= quantity)
        .values(quantity=Product.quantity - quantity, version_id=Product.version_id + 1)
        .execution_options(synchronize_session=False)
    )
    result = db.session.execute(stmt)
    _expire(product_id)
    if result.rowcount != 1:
        raise InsufficientStockError(current_stock(product_id), product_id=product_id)


def increment_stock(product_id: int, quantity: int, *, commit: bool = True) -> Product:
    """Restock. Also used to hand units back if a caller needs to compensate."""
    quantity = positive_quantity(quantity)
    stmt = (
        update(Product)
        .where(Product.id == product_id)
        .values(quantity=Product.quantity + quantity, version_id=Product.version_id + 1)
        .execution_options(synchronize_session=False)
    )
    result = db.session.execute(stmt)
    if result.rowcount != 1:
        db.session.rollback()
        raise NotFoundError("Product not found")
    _expire(product_id)
    if commit:
        db.session.commit()
    return require_product(product_id)


def create_product(data: dict) -> Product:
    product = Product(
        name=required_str(data, "name"),
        product_code=required_str(data, "product_code", max_length=64),
        category=optional_str(data, "category", max_length=120) or "Uncategorized",
        unit=optional_str(data, "unit", max_length=32) or "pcs",
        buying_price_cents=price_cents(data.get("buying_price_cents", 0), "buying_price_cents"),
        selling_price_cents=price_cents(data.get("selling_price_cents", 0), "selling_price_cents"),
        quantity=non_negative_int(data.get("quantity", 0), "quantity"),
        reorder_level=non_negative_int(data.get("reorder_level", 5), "reorder_level"),
    )
    db.session.add(product)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise ValidationError(f"Product code {product.product_code!r} already exists")
    return product


def _product_changes(data: dict) -> dict:
    if "quantity" in data:
        raise ValidationError("quantity cannot be edited directly; restock the product instead")

    changes = {}
    if "name" in data:
        changes["name"] = required_str(data, "name")
    if "product_code" in data:
        changes["product_code"] = required_str(data, "product_code", max_length=64)
    if "category" in data:
        changes["category"] = required_str(data, "category", max_length=120)
    if "unit" in data:
        changes["unit"] = required_str(data, "unit", max_length=32)
    for field in ("buying_price_cents", "selling_price_cents"):
        if field in data:
            changes[field] = price_cents(data[field], field)
    if "reorder_level" in data:
        changes["reorder_level"] = non_negative_int(data["reorder_level"], "reorder_level")
    if "is_active" in data:
        if not isinstance(data["is_active"], bool):
            raise ValidationError("is_active must be a boolean")
        changes["is_active"] = data["is_active"]

    if not changes:
        raise ValidationError("No updatable product fields supplied")
    return changes


def update_product(product_id: int, data: dict) -> Product:
    """
    Partial edit of a product's identity and pricing.

    Stock is never written here. The ORM update is guarded by version_id,
    so an edit that races a checkout's decrement raises StaleDataError and
    is replayed on a fresh read. A client that sends version_id gets
    ProductVersionConflictError when the product moved on since it read it.
    """
    changes = _product_changes(data)
    expected = None
    if data.get("version_id") is not None:
        expected = coerce_int(data["version_id"], "version_id")

    def _op():
        product = require_product(product_id)
        if expected is not None and product.version_id != expected:
            raise ProductVersionConflictError(product_id, expected, product.version_id)
        for field, value in changes.items():
            setattr(product, field, value)
        try:
            commit_write(product_id=product_id)
        except IntegrityError:
            db.session.rollback()
            raise ValidationError(f"Product code {changes.get('product_code')!r} already exists")
        return product

    return run_with_retry(_op)


def delete_product(product_id: int) -> None:
    """
    Hard delete. Carts that still reference the product keep an orphan line
    that reconciliation drops; reports keep their own copy of the product.
    """
    product = require_product(product_id)
    db.session.delete(product)
    db.session.commit()


def list_products(*, category: str | None = None, low_stock: bool = False, search: str | None = None) -> list[Product]:
    query = db.session.query(Product).filter(Product.is_active.is_(True))
    if category:
        query = query.filter(Product.category == category)
    if low_stock:
        query = query.filter(Product.quantity <= Product.reorder_level)
    if search:
        like = f"%{search.strip()}%"
        query = query.filter((Product.name.ilike(like)) | (Product.product_code.ilike(like)))
    return query.order_by(Product.name.asc()).all()
