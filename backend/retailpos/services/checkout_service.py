# Overview: Checkout pipeline; turns the active cart into a report (and sale) while decrementing stock.

"""
Checkout Pipeline

    ACTIVE -> VALIDATING -> COMMITTING -> CONVERTED
                  |
                  +-> back to ACTIVE (nothing written)

VALIDATING re-reads every product from the inventory store; any shortfall
aborts with ItemsUnavailableError and the cart stays active.

COMMITTING runs in one database transaction: guarded stock decrements, the
Report (+ Sale), and the cart status flip commit together or not at all, so
stock is never decremented without a matching report.

A decrement that loses a race (ConcurrencyConflictError) rolls the whole
transaction back and the pipeline is retried from VALIDATING, where the
shortfall normally shows up as ItemsUnavailableError.

The order confirmation is sent only after the commit. Its failure is logged
and reported back, never rolled into the transaction outcome.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from flask import current_app

from ..extensions import db
from ..models import (
    Cart,
    CartItem,
    Product,
    Report,
    ReportItem,
    Sale,
    SaleItem,
    CART_ACTIVE,
    CART_CONVERTED,
    PAYMENT_METHODS,
)
from ..errors import (
    CartNotFoundError,
    ConcurrencyConflictError,
    EmptyCartError,
    InsufficientStockError,
    ItemsUnavailableError,
    NotificationError,
    ValidationError,
)
from . import inventory_service, notification_service
from .concurrency import (
    RETRYABLE_ERRORS,
    begin_write_transaction,
    commit_write,
    lock_for_update,
    run_with_retry,
)
from .invoice_service import next_invoice_number
from retailpos.time_utils import utcnow, to_utc_z


STAGE_VALIDATING = "validating"
STAGE_COMMITTING = "committing"
STAGE_CONVERTED = "converted"

CUSTOMER_FIELDS = ("name", "email", "phone", "address")
# These end up in mail headers
SINGLE_LINE_FIELDS = ("name", "email", "phone")


@dataclass
class CheckoutResult:
    report: Report
    sale: Sale | None
    cart: Cart
    notification: dict = field(default_factory=lambda: {"status": notification_service.STATUS_SKIPPED})

    @property
    def notification_failed(self) -> bool:
        return self.notification.get("status") == notification_service.STATUS_FAILED

    @property
    def message(self) -> str:
        if self.notification_failed:
            return "Checkout completed, but the order confirmation email could not be sent"
        return "Checkout completed successfully"

    def to_dict(self) -> dict:
        return {
            "report_id": self.report.id,
            "sale_id": self.sale.id if self.sale else None,
            "invoice_number": self.sale.invoice_number if self.sale else None,
            "cart_id": self.cart.id,
            "status": self.cart.status,
            "items": [item.to_dict() for item in self.cart.items],
            "item_count": self.cart.item_count,
            "subtotal_cents": self.cart.subtotal_cents,
            "discount_cents": self.cart.applied_discount_cents,
            "total_cents": self.cart.total_cents,
            "total_revenue_cents": self.report.total_revenue_cents,
            "total_cost_cents": self.report.total_cost_cents,
            "total_profit_cents": self.report.total_profit_cents,
            "categories": dict(self.report.categories or {}),
            "payment_method": self.report.payment_method,
            "occurred_at": to_utc_z(self.report.occurred_at),
            "notification": self.notification,
        }


def normalize_payment_method(value) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError("paymentMethod is required", details={"allowed": list(PAYMENT_METHODS)})
    method = value.strip().lower()
    if method not in PAYMENT_METHODS:
        raise ValidationError(
            f"Unsupported payment method {value!r}",
            details={"allowed": list(PAYMENT_METHODS)},
        )
    return method


def normalize_customer_info(value) -> dict:
    if value is None:
        return {key: "" for key in CUSTOMER_FIELDS}
    if not isinstance(value, dict):
        raise ValidationError("customerInfo must be an object")
    info = {}
    for key in CUSTOMER_FIELDS:
        raw = value.get(key) or ""
        if not isinstance(raw, str):
            raise ValidationError(f"customerInfo.{key} must be a string")
        raw = raw.strip()
        if key in SINGLE_LINE_FIELDS and ("\r" in raw or "\n" in raw):
            raise ValidationError(f"customerInfo.{key} must not contain line breaks")
        info[key] = raw
    return info


def _requested_by_product(cart: Cart) -> dict[int, int]:
    totals: dict[int, int] = {}
    for item in cart.items:
        if item.product_id is not None:
            totals[item.product_id] = totals.get(item.product_id, 0) + item.quantity
    return totals


def check_availability(cart: Cart) -> list[tuple[CartItem, Product]]:
    """
    VALIDATING: fresh stock read for every line.

    A deleted product counts as stock 0. Raises ItemsUnavailableError listing
    {name, requested, available} for every line that cannot be served.
    """
    requested = _requested_by_product(cart)
    unavailable = []
    resolved = []

    for item in cart.items:
        product = inventory_service.get_product(item.product_id) if item.product_id else None
        available = product.quantity if product else 0

        if product is None or requested[item.product_id] > available:
            unavailable.append({
                "item_id": item.id,
                "product_id": item.product_id,
                "name": item.name,
                "requested": item.quantity,
                "available": available,
            })
            continue
        resolved.append((item, product))

    if unavailable:
        raise ItemsUnavailableError(unavailable)
    return resolved


def merge_category(categories: dict, category: str, *, count: int, revenue: int, profit: int) -> None:
    """Key-wise addition into the {category: {count, revenue, profit}} map."""
    bucket = categories.setdefault(category, {"count": 0, "revenue": 0, "profit": 0})
    bucket["count"] += count
    bucket["revenue"] += revenue
    bucket["profit"] += profit


def _commit_lines(lines: list[tuple[CartItem, Product]], report: Report) -> None:
    """COMMITTING: decrement stock and build the per-line breakdown."""
    categories: dict = {}
    total_revenue = total_cost = total_profit = 0

    for item, product in lines:
        try:
            inventory_service.decrement_stock(product.id, item.quantity)
        except InsufficientStockError:
            raise ConcurrencyConflictError(product.id, item.quantity)

        cost = product.buying_price_cents * item.quantity
        revenue = item.unit_price_cents * item.quantity
        profit = revenue - cost

        report.items.append(
            ReportItem(
                product_id=product.id,
                product_name=product.name,
                product_code=product.product_code,
                category=product.category,
                unit=product.unit,
                quantity=item.quantity,
                buying_price_cents=product.buying_price_cents,
                selling_price_cents=product.selling_price_cents,
                cost_cents=cost,
                revenue_cents=revenue,
                profit_cents=profit,
            )
        )
        merge_category(categories, product.category, count=item.quantity, revenue=revenue, profit=profit)

        total_revenue += revenue
        total_cost += cost
        total_profit += profit

    report.categories = categories
    report.total_revenue_cents = total_revenue
    report.total_cost_cents = total_cost
    report.total_profit_cents = total_profit


def _create_sale(cart: Cart, payment_method: str, customer: dict, occurred_at) -> Sale:
    sale = Sale(
        invoice_number=next_invoice_number(at=occurred_at),
        user_id=cart.user_id,
        cart_id=cart.id,
        subtotal_cents=cart.subtotal_cents,
        discount_cents=cart.applied_discount_cents,
        total_cents=cart.total_cents,
        payment_method=payment_method,
        customer_name=customer["name"],
        customer_email=customer["email"],
        customer_phone=customer["phone"],
        customer_address=customer["address"],
        note=cart.note,
        coupon_code=cart.coupon_code,
        status="completed",
        created_at=occurred_at,
    )
    for item in cart.items:
        sale.items.append(
            SaleItem(
                product_id=item.product_id,
                name=item.name,
                product_code=item.product_code,
                unit=item.unit,
                quantity=item.quantity,
                unit_price_cents=item.unit_price_cents,
            )
        )
    db.session.add(sale)
    return sale


def _shortfall_after_conflict(user_id: int, conflict: ConcurrencyConflictError) -> list[dict]:
    """Build the unavailable list from the latest stock once retries are spent."""
    cart = db.session.query(Cart).filter_by(user_id=user_id, status=CART_ACTIVE).first()
    if cart:
        try:
            check_availability(cart)
        except ItemsUnavailableError as exc:
            return exc.items
        for item in cart.items:
            if item.product_id == conflict.product_id:
                return [{
                    "item_id": item.id,
                    "product_id": item.product_id,
                    "name": item.name,
                    "requested": item.quantity,
                    "available": inventory_service.current_stock(item.product_id),
                }]
    return [{
        "item_id": None,
        "product_id": conflict.product_id,
        "name": None,
        "requested": conflict.requested,
        "available": inventory_service.current_stock(conflict.product_id),
    }]


def _notify(result: CheckoutResult, customer: dict) -> dict:
    """Best-effort order confirmation. Never raises."""
    if not current_app.config.get("NOTIFICATIONS_ENABLED"):
        return {"status": notification_service.STATUS_SKIPPED, "reason": "disabled"}
    if not customer.get("email"):
        return {"status": notification_service.STATUS_SKIPPED, "reason": "no customer email"}

    details = result.to_dict()
    details["transaction_id"] = result.report.id
    details["customer_info"] = customer
    try:
        return notification_service.send_order_confirmation(
            customer["email"], customer.get("name") or "Customer", details
        )
    except NotificationError as exc:
        current_app.logger.warning(
            "Order confirmation for report %s failed: %s %s", result.report.id, exc.message, exc.details
        )
        return {"status": notification_service.STATUS_FAILED, "error": exc.message}
    except Exception:
        current_app.logger.warning("Order confirmation for report %s failed", result.report.id, exc_info=True)
        return {
            "status": notification_service.STATUS_FAILED,
            "error": "Unexpected error while sending the order confirmation",
        }


def checkout(user_id: int, payment_method, customer_info=None) -> CheckoutResult:
    """
    Convert the user's active cart into a Report (and Sale).

    Raises CartNotFoundError, EmptyCartError, ValidationError or
    ItemsUnavailableError; in all of those cases nothing has been written.
    CommitOutcomeUnknownError means the COMMIT failed in flight and the
    cart must be re-read before another attempt.
    """
    method = normalize_payment_method(payment_method)
    customer = normalize_customer_info(customer_info)
    cfg = current_app.config

    def _op():
        begin_write_transaction()
        cart = lock_for_update(
            db.session.query(Cart).filter_by(user_id=user_id, status=CART_ACTIVE)
        ).first()
        if not cart:
            raise CartNotFoundError()
        if not cart.items:
            raise EmptyCartError()

        current_app.logger.debug("Checkout cart %s: %s", cart.id, STAGE_VALIDATING)
        lines = check_availability(cart)

        current_app.logger.debug("Checkout cart %s: %s", cart.id, STAGE_COMMITTING)
        occurred_at = utcnow()
        report = Report(
            user_id=user_id,
            occurred_at=occurred_at,
            payment_method=method,
            payment_status="paid",
            amount_paid_cents=cart.total_cents,
            remaining_balance_cents=0,
        )
        _commit_lines(lines, report)

        sale = None
        if cfg.get("CHECKOUT_CREATE_SALE", True):
            sale = _create_sale(cart, method, customer, occurred_at)
            report.sale = sale
        db.session.add(report)

        cart.status = CART_CONVERTED
        cart.converted_at = occurred_at

        commit_write(cart_id=cart.id, user_id=user_id)
        current_app.logger.debug("Checkout cart %s: %s", cart.id, STAGE_CONVERTED)
        return CheckoutResult(report=report, sale=sale, cart=cart)

    try:
        result = run_with_retry(
            _op,
            attempts=cfg.get("CHECKOUT_RETRY_ATTEMPTS", 3),
            backoff_base=cfg.get("CHECKOUT_RETRY_BACKOFF", 0.05),
            retry_on=RETRYABLE_ERRORS + (ConcurrencyConflictError,),
        )
    except ConcurrencyConflictError as exc:
        db.session.rollback()
        raise ItemsUnavailableError(_shortfall_after_conflict(user_id, exc))
    except Exception:
        db.session.rollback()
        raise

    current_app.logger.info(
        "Checkout completed: report=%s invoice=%s user=%s total_cents=%s",
        result.report.id,
        result.sale.invoice_number if result.sale else None,
        user_id,
        result.report.total_revenue_cents,
    )

    result.notification = _notify(result, customer)
    return result
