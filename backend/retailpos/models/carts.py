from __future__ import annotations

from ..extensions import db
from retailpos.time_utils import to_utc_z


CART_ACTIVE = "active"
CART_CONVERTED = "converted"


class Cart(db.Model):
    """
    Shopping cart owned by a single user.

    A user has at most one ACTIVE cart (partial unique index). Checkout moves
    the cart to CONVERTED exactly once; converted carts are kept for audit and
    never edited again.
    """
    __tablename__ = "carts"
    __table_args__ = (
        db.Index(
            "uq_carts_user_active",
            "user_id",
            unique=True,
            sqlite_where=db.text("status = 'active'"),
            postgresql_where=db.text("status = 'active'"),
        ),
        db.Index("ix_carts_status_updated", "status", "updated_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    status = db.Column(db.String(16), nullable=False, default=CART_ACTIVE, index=True)

    note = db.Column(db.Text, nullable=True)
    coupon_code = db.Column(db.String(64), nullable=True)
    discount_cents = db.Column(db.Integer, nullable=False, default=0)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )
    converted_at = db.Column(db.DateTime(timezone=True), nullable=True)

    user = db.relationship("User", backref=db.backref("carts", lazy=True))
    items = db.relationship(
        "CartItem",
        back_populates="cart",
        cascade="all, delete-orphan",
        order_by="CartItem.position.asc()",
    )

    def __repr__(self) -> str:
        return f"<Cart id={self.id} user_id={self.user_id} status={self.status!r} lines={len(self.items)}>"

    @property
    def is_active(self) -> bool:
        return self.status == CART_ACTIVE

    @property
    def item_count(self) -> int:
        return sum(item.quantity for item in self.items)

    @property
    def subtotal_cents(self) -> int:
        return sum(item.line_total_cents for item in self.items)

    @property
    def applied_discount_cents(self) -> int:
        # never discount below zero
        return max(0, min(self.discount_cents or 0, self.subtotal_cents))

    @property
    def total_cents(self) -> int:
        return self.subtotal_cents - self.applied_discount_cents

    def find_item(self, item_id: int) -> "CartItem | None":
        for item in self.items:
            if item.id == item_id:
                return item
        return None

    def find_product_line(self, product_id: int) -> "CartItem | None":
        for item in self.items:
            if item.product_id == product_id:
                return item
        return None

    def next_position(self) -> int:
        return max((item.position for item in self.items), default=0) + 1

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "status": self.status,
            "items": [item.to_dict() for item in self.items],
            "item_count": self.item_count,
            "subtotal_cents": self.subtotal_cents,
            "discount_cents": self.applied_discount_cents,
            "total_cents": self.total_cents,
            "note": self.note,
            "coupon_code": self.coupon_code,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "converted_at": to_utc_z(self.converted_at) if self.converted_at else None,
        }


class CartItem(db.Model):
    """Line on a cart. Price, name, code and unit are snapshotted at add time."""
    __tablename__ = "cart_items"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    cart_id = db.Column(db.Integer, db.ForeignKey("carts.id", ondelete="CASCADE"), nullable=False, index=True)
    # Nullable: a product deleted after add-to-cart leaves the line orphaned until reconciliation drops it
    product_id = db.Column(db.Integer, db.ForeignKey("products.id", ondelete="SET NULL"), nullable=True, index=True)

    quantity = db.Column(db.Integer, nullable=False, default=1)
    unit_price_cents = db.Column(db.Integer, nullable=False, default=0)
    name = db.Column(db.String(255), nullable=False)
    product_code = db.Column(db.String(64), nullable=True)
    unit = db.Column(db.String(32), nullable=True)

    # Display order within the cart
    position = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    cart = db.relationship("Cart", back_populates="items")
    product = db.relationship("Product")

    def __repr__(self) -> str:
        return f"<CartItem id={self.id} product_id={self.product_id} qty={self.quantity}>"

    @property
    def line_total_cents(self) -> int:
        return self.unit_price_cents * self.quantity

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "name": self.name,
            "product_code": self.product_code,
            "unit": self.unit,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "line_total_cents": self.line_total_cents,
        }
