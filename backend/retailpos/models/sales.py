from __future__ import annotations

from ..extensions import db
from retailpos.time_utils import to_utc_z


PAYMENT_METHODS = ("cash", "credit", "debit", "bank_transfer", "online", "other")


class Sale(db.Model):
    """
    Historical sale record created alongside the report at checkout.

    Holds the invoice number and the customer's contact details. Immutable
    after creation apart from refund status, which this system never sets.
    """
    __tablename__ = "sales"
    __table_args__ = (
        db.Index("ix_sales_user_created", "user_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # Human-readable invoice number (e.g., "INV-20240301-0007")
    invoice_number = db.Column(db.String(32), nullable=False, unique=True, index=True)

    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    cart_id = db.Column(db.Integer, db.ForeignKey("carts.id"), nullable=True, index=True)

    subtotal_cents = db.Column(db.Integer, nullable=False)
    discount_cents = db.Column(db.Integer, nullable=False, default=0)
    total_cents = db.Column(db.Integer, nullable=False)

    payment_method = db.Column(db.String(32), nullable=False)

    customer_name = db.Column(db.String(255), nullable=False, default="")
    customer_email = db.Column(db.String(255), nullable=False, default="")
    customer_phone = db.Column(db.String(64), nullable=False, default="")
    customer_address = db.Column(db.String(512), nullable=False, default="")

    note = db.Column(db.Text, nullable=True)
    coupon_code = db.Column(db.String(64), nullable=True)

    # completed | refunded | partially_refunded
    status = db.Column(db.String(32), nullable=False, default="completed", index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    items = db.relationship("SaleItem", back_populates="sale", cascade="all, delete-orphan", order_by="SaleItem.id.asc()")
    user = db.relationship("User")

    @property
    def item_count(self) -> int:
        return sum(item.quantity for item in self.items)

    def customer_info(self) -> dict:
        return {
            "name": self.customer_name,
            "email": self.customer_email,
            "phone": self.customer_phone,
            "address": self.customer_address,
        }

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "invoice_number": self.invoice_number,
            "user_id": self.user_id,
            "cart_id": self.cart_id,
            "items": [item.to_dict() for item in self.items],
            "item_count": self.item_count,
            "subtotal_cents": self.subtotal_cents,
            "discount_cents": self.discount_cents,
            "total_cents": self.total_cents,
            "payment_method": self.payment_method,
            "customer_info": self.customer_info(),
            "note": self.note,
            "coupon_code": self.coupon_code,
            "status": self.status,
            "created_at": to_utc_z(self.created_at),
        }


class SaleItem(db.Model):
    """Snapshot of a cart line at checkout."""
    __tablename__ = "sale_items"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, nullable=True)

    name = db.Column(db.String(255), nullable=False)
    product_code = db.Column(db.String(64), nullable=True)
    unit = db.Column(db.String(32), nullable=True)
    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)

    sale = db.relationship("Sale", back_populates="items")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "name": self.name,
            "product_code": self.product_code,
            "unit": self.unit,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "line_total_cents": self.unit_price_cents * self.quantity,
        }


class InvoiceSequence(db.Model):
    """
    Atomic per-day invoice sequences.

    One row per calendar day (YYYYMMDD); numbering restarts at 1 every day.
    """
    __tablename__ = "invoice_sequences"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    day_key = db.Column(db.String(8), nullable=False, unique=True, index=True)
    next_number = db.Column(db.Integer, nullable=False, default=1)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "day_key": self.day_key,
            "next_number": self.next_number,
            "updated_at": to_utc_z(self.updated_at),
        }
