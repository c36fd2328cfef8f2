from __future__ import annotations

from ..extensions import db
from retailpos.time_utils import to_utc_z


class Report(db.Model):
    """
    One analytics row per completed checkout.

    Product data is copied into ReportItem so historical figures survive later
    product edits or deletions. Immutable once written.
    """
    __tablename__ = "reports"
    __table_args__ = (
        db.Index("ix_reports_occurred_payment", "occurred_at", "payment_method"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=True, unique=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)

    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, index=True)

    total_revenue_cents = db.Column(db.Integer, nullable=False, default=0)
    total_cost_cents = db.Column(db.Integer, nullable=False, default=0)
    total_profit_cents = db.Column(db.Integer, nullable=False, default=0)

    # {category: {"count": int, "revenue": int, "profit": int}} in first-seen order
    categories = db.Column(db.JSON, nullable=False, default=dict)

    payment_method = db.Column(db.String(32), nullable=False, index=True)
    payment_status = db.Column(db.String(16), nullable=False, default="paid")
    amount_paid_cents = db.Column(db.Integer, nullable=False, default=0)
    remaining_balance_cents = db.Column(db.Integer, nullable=False, default=0)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    items = db.relationship("ReportItem", back_populates="report", cascade="all, delete-orphan", order_by="ReportItem.id.asc()")
    sale = db.relationship("Sale", backref=db.backref("report", uselist=False))
    user = db.relationship("User")

    @property
    def profit_margin(self) -> float:
        if not self.total_revenue_cents:
            return 0.0
        return round(self.total_profit_cents / self.total_revenue_cents * 100.0, 2)

    def to_dict(self, include_items: bool = True) -> dict:
        data = {
            "id": self.id,
            "sale_id": self.sale_id,
            "invoice_number": self.sale.invoice_number if self.sale else None,
            "user_id": self.user_id,
            "occurred_at": to_utc_z(self.occurred_at),
            "total_revenue_cents": self.total_revenue_cents,
            "total_cost_cents": self.total_cost_cents,
            "total_profit_cents": self.total_profit_cents,
            "profit_margin": self.profit_margin,
            "categories": dict(self.categories or {}),
            "payment_method": self.payment_method,
            "payment_status": self.payment_status,
            "amount_paid_cents": self.amount_paid_cents,
            "remaining_balance_cents": self.remaining_balance_cents,
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
        return data


class ReportItem(db.Model):
    """Per-line cost/revenue/profit breakdown with a denormalised product copy."""
    __tablename__ = "report_items"
    __table_args__ = (
        db.Index("ix_report_items_category", "category"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    report_id = db.Column(db.Integer, db.ForeignKey("reports.id"), nullable=False, index=True)

    product_id = db.Column(db.Integer, nullable=True, index=True)
    product_name = db.Column(db.String(255), nullable=False)
    product_code = db.Column(db.String(64), nullable=True)
    category = db.Column(db.String(120), nullable=False)
    unit = db.Column(db.String(32), nullable=True)

    quantity = db.Column(db.Integer, nullable=False)
    buying_price_cents = db.Column(db.Integer, nullable=False)
    selling_price_cents = db.Column(db.Integer, nullable=False)

    cost_cents = db.Column(db.Integer, nullable=False)
    revenue_cents = db.Column(db.Integer, nullable=False)
    profit_cents = db.Column(db.Integer, nullable=False)

    report = db.relationship("Report", back_populates="items")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "product_name": self.product_name,
            "product_code": self.product_code,
            "category": self.category,
            "unit": self.unit,
            "quantity": self.quantity,
            "buying_price_cents": self.buying_price_cents,
            "selling_price_cents": self.selling_price_cents,
            "cost_cents": self.cost_cents,
            "revenue_cents": self.revenue_cents,
            "profit_cents": self.profit_cents,
        }
