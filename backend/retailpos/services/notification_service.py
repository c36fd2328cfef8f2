# Overview: Order confirmation mail; best-effort collaborator of the checkout pipeline.

from __future__ import annotations

import smtplib
from email.message import EmailMessage

from flask import current_app, render_template

from ..errors import NotificationError
from retailpos.time_utils import utcnow


STATUS_SENT = "sent"
STATUS_FAILED = "failed"
STATUS_SKIPPED = "skipped"


def _money(cents: int | None) -> str:
    return f"{(cents or 0) / 100:.2f}"


def render_order_confirmation(email: str, customer_name: str, order_details: dict) -> str:
    customer_info = order_details.get("customer_info") or {}
    transaction_id = order_details.get("transaction_id") or order_details.get("report_id") or "N/A"
    order_date = order_details.get("date") or utcnow().strftime("%Y-%m-%d %H:%M")

    return render_template(
        "order_confirmation.html",
        customer_name=customer_name,
        order_id=order_details.get("invoice_number") or transaction_id,
        order_date=order_date,
        items=[
            {
                "name": item["name"],
                "quantity": item["quantity"],
                "price": _money(item["unit_price_cents"]),
                "item_total": _money(item["unit_price_cents"] * item["quantity"]),
            }
            for item in order_details.get("items", [])
        ],
        subtotal=_money(order_details.get("subtotal_cents")),
        discount=_money(order_details.get("discount_cents")),
        total=_money(order_details.get("total_cents")),
        customer_email=email,
        customer_phone=customer_info.get("phone") or "N/A",
        customer_address=customer_info.get("address") or "N/A",
        payment_method=order_details.get("payment_method") or "N/A",
        transaction_id=transaction_id,
        order_tracking_url=f"{current_app.config['WEBSITE_LINK']}/orders/{transaction_id}",
    )


def _deliver(message: EmailMessage) -> None:
    cfg = current_app.config
    smtp_cls = smtplib.SMTP_SSL if cfg["MAIL_USE_SSL"] else smtplib.SMTP
    with smtp_cls(cfg["MAIL_SERVER"], cfg["MAIL_PORT"], timeout=cfg["MAIL_TIMEOUT"]) as smtp:
        if not cfg["MAIL_USE_SSL"]:
            smtp.starttls()
        if cfg.get("MAIL_USERNAME"):
            smtp.login(cfg["MAIL_USERNAME"], cfg.get("MAIL_PASSWORD") or "")
        smtp.send_message(message)


def send_order_confirmation(email: str, customer_name: str, order_details: dict) -> dict:
    """
    Send the order confirmation mail.

    Raises NotificationError on any failure; callers on the checkout path
    catch it and carry on.
    """
    if not email or not customer_name or not order_details:
        raise NotificationError(
            "Email, customer name, and order details are required to send an order confirmation email."
        )

    try:
        html = render_order_confirmation(email, customer_name, order_details)

        message = EmailMessage()
        message["Subject"] = "Your Order Confirmation"
        message["From"] = current_app.config["MAIL_SENDER"]
        message["To"] = email
        message.set_content("Your order has been received. Please view this message in an HTML capable client.")
        message.add_alternative(html, subtype="html")

        _deliver(message)
    except (smtplib.SMTPException, OSError) as exc:
        raise NotificationError(
            "Failed to send the order confirmation email.",
            details={"reason": str(exc)},
        ) from exc

    return {"status": STATUS_SENT, "recipient": email}
