# Overview: Service-layer operations for reporting; read-only analytics over persisted reports.

from __future__ import annotations

import math
from datetime import datetime, timedelta

from flask import current_app
from sqlalchemy import func

from ..extensions import db
from ..models import Product, Report, ReportItem, Sale
from ..errors import NotFoundError, ValidationError
from retailpos.time_utils import parse_iso_datetime, parse_range_end, utcnow, to_utc_z


PERIOD_FORMATS = {
    "daily": "%Y-%m-%d",
    "weekly": "%G-W%V",
    "monthly": "%Y-%m",
    "yearly": "%Y",
}
DEFAULT_PERIOD = "daily"
LOW_MARGIN_THRESHOLD = 20.0


def profit_margin(profit_cents: int, revenue_cents: int) -> float:
    if not revenue_cents:
        return 0.0
    return round(profit_cents / revenue_cents * 100.0, 2)


def _parse_range(start: str | None, end: str | None) -> tuple[datetime, datetime]:
    """
    Inclusive [start, end]. A date-only end covers that whole day. With
    neither bound the range is the last REPORT_DEFAULT_DAYS days.
    """
    try:
        start_dt = parse_iso_datetime(start) if start else None
        end_dt = parse_range_end(end) if end else None
    except ValueError:
        raise ValidationError("start and end must be ISO-8601 dates")

    if end_dt is None:
        end_dt = utcnow()
    if start_dt is None:
        start_dt = end_dt - timedelta(days=current_app.config.get("REPORT_DEFAULT_DAYS", 30))
    if start_dt > end_dt:
        raise ValidationError("start must be before end")
    return start_dt, end_dt


def _range_payload(start_dt: datetime, end_dt: datetime) -> dict:
    return {"start": to_utc_z(start_dt), "end": to_utc_z(end_dt)}


def _reports_in_range(start_dt: datetime, end_dt: datetime):
    return db.session.query(Report).filter(
        Report.occurred_at >= start_dt,
        Report.occurred_at <= end_dt,
    )


def _category_totals(start_dt: datetime, end_dt: datetime, category: str) -> dict[int, tuple[int, int, int]]:
    """{report_id: (revenue, cost, profit)} over the lines of one category."""
    rows = (
        db.session.query(
            ReportItem.report_id,
            func.sum(ReportItem.revenue_cents),
            func.sum(ReportItem.cost_cents),
            func.sum(ReportItem.profit_cents),
        )
        .join(Report, Report.id == ReportItem.report_id)
        .filter(
            ReportItem.category == category,
            Report.occurred_at >= start_dt,
            Report.occurred_at <= end_dt,
        )
        .group_by(ReportItem.report_id)
        .all()
    )
    return {report_id: (int(rev or 0), int(cost or 0), int(profit or 0)) for report_id, rev, cost, profit in rows}


def sales_report(
    *,
    start: str | None = None,
    end: str | None = None,
    period: str | None = None,
    category: str | None = None,
) -> dict:
    """
    Revenue, cost, profit and order count per daily/weekly/monthly/yearly bucket.

    With a category only reports holding a line of that category count, and
    only those lines contribute money.
    """
    start_dt, end_dt = _parse_range(start, end)
    if period not in PERIOD_FORMATS:
        period = DEFAULT_PERIOD
    fmt = PERIOD_FORMATS[period]
    category = category.strip() if isinstance(category, str) and category.strip() else None

    query = _reports_in_range(start_dt, end_dt)
    per_report = None
    if category:
        per_report = _category_totals(start_dt, end_dt, category)
        query = query.filter(Report.id.in_(list(per_report)))
    reports = query.order_by(Report.occurred_at.asc()).all()

    buckets: dict[str, dict] = {}
    for report in reports:
        key = report.occurred_at.strftime(fmt)
        bucket = buckets.get(key)
        if bucket is None:
            bucket = buckets[key] = {
                "period": key,
                "revenue_cents": 0,
                "cost_cents": 0,
                "profit_cents": 0,
                "order_count": 0,
                "earliest": report.occurred_at,
                "latest": report.occurred_at,
            }
        if per_report is not None:
            revenue, cost, profit = per_report[report.id]
        else:
            revenue, cost, profit = report.total_revenue_cents, report.total_cost_cents, report.total_profit_cents
        bucket["revenue_cents"] += revenue
        bucket["cost_cents"] += cost
        bucket["profit_cents"] += profit
        bucket["order_count"] += 1
        bucket["latest"] = report.occurred_at

    rows = []
    for bucket in sorted(buckets.values(), key=lambda b: b["period"]):
        bucket["profit_margin"] = profit_margin(bucket["profit_cents"], bucket["revenue_cents"])
        bucket["earliest"] = to_utc_z(bucket["earliest"])
        bucket["latest"] = to_utc_z(bucket["latest"])
        rows.append(bucket)

    return {
        **_range_payload(start_dt, end_dt),
        "period": period,
        "category": category,
        "totals": {
            "revenue_cents": sum(r["revenue_cents"] for r in rows),
            "cost_cents": sum(r["cost_cents"] for r in rows),
            "profit_cents": sum(r["profit_cents"] for r in rows),
            "order_count": sum(r["order_count"] for r in rows),
        },
        "rows": rows,
    }


def list_reports(*, start: str | None = None, end: str | None = None, page: int = 1, limit: int = 10) -> dict:
    start_dt, end_dt = _parse_range(start, end)
    page = max(1, page)
    limit = max(1, min(limit, 100))

    query = _reports_in_range(start_dt, end_dt)
    total = query.count()
    reports = (
        query.order_by(Report.occurred_at.desc(), Report.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )

    rows = []
    for report in reports:
        row = report.to_dict(include_items=True)
        row["customer"] = report.sale.customer_info() if report.sale else None
        rows.append(row)

    return {
        **_range_payload(start_dt, end_dt),
        "count": len(rows),
        "total": total,
        "total_pages": math.ceil(total / limit) if total else 0,
        "current_page": page,
        "reports": rows,
    }


def category_report(*, start: str | None = None, end: str | None = None) -> dict:
    start_dt, end_dt = _parse_range(start, end)

    rows = (
        db.session.query(
            ReportItem.category.label("category"),
            func.coalesce(func.sum(ReportItem.revenue_cents), 0).label("revenue_cents"),
            func.coalesce(func.sum(ReportItem.cost_cents), 0).label("cost_cents"),
            func.coalesce(func.sum(ReportItem.profit_cents), 0).label("profit_cents"),
            func.coalesce(func.sum(ReportItem.quantity), 0).label("count"),
        )
        .join(Report, ReportItem.report_id == Report.id)
        .filter(Report.occurred_at >= start_dt, Report.occurred_at <= end_dt)
        .group_by(ReportItem.category)
        .all()
    )

    categories = [
        {
            "category": row.category,
            "revenue_cents": int(row.revenue_cents or 0),
            "cost_cents": int(row.cost_cents or 0),
            "profit_cents": int(row.profit_cents or 0),
            "count": int(row.count or 0),
            "profit_margin": profit_margin(int(row.profit_cents or 0), int(row.revenue_cents or 0)),
        }
        for row in rows
    ]
    categories.sort(key=lambda c: (-c["revenue_cents"], c["category"]))

    return {**_range_payload(start_dt, end_dt), "categories": categories}


def payment_method_report(*, start: str | None = None, end: str | None = None) -> dict:
    start_dt, end_dt = _parse_range(start, end)

    rows = (
        db.session.query(
            Report.payment_method.label("payment_method"),
            func.coalesce(func.sum(Report.total_revenue_cents), 0).label("revenue_cents"),
            func.coalesce(func.sum(Report.total_profit_cents), 0).label("profit_cents"),
            func.count(Report.id).label("count"),
        )
        .filter(Report.occurred_at >= start_dt, Report.occurred_at <= end_dt)
        .group_by(Report.payment_method)
        .all()
    )

    methods = []
    for row in rows:
        revenue = int(row.revenue_cents or 0)
        profit = int(row.profit_cents or 0)
        count = int(row.count or 0)
        methods.append({
            "payment_method": row.payment_method,
            "revenue_cents": revenue,
            "profit_cents": profit,
            "count": count,
            "average_order_value_cents": round(revenue / count) if count else 0,
            "profit_margin": profit_margin(profit, revenue),
        })
    methods.sort(key=lambda m: (-m["revenue_cents"], m["payment_method"]))

    return {**_range_payload(start_dt, end_dt), "payment_methods": methods}


def product_report(
    *,
    start: str | None = None,
    end: str | None = None,
    limit: int = 10,
    low_margin_threshold: float = LOW_MARGIN_THRESHOLD,
) -> dict:
    """
    Top sellers by revenue, highest-margin products and low-margin products.

    Products are keyed by product_id when known, else by name, so lines for
    a since-deleted product still group together.
    """
    start_dt, end_dt = _parse_range(start, end)
    limit = max(1, min(limit, 100))

    items = (
        db.session.query(ReportItem)
        .join(Report, ReportItem.report_id == Report.id)
        .filter(Report.occurred_at >= start_dt, Report.occurred_at <= end_dt)
        .all()
    )

    products: dict = {}
    for item in items:
        key = item.product_id if item.product_id is not None else item.product_name
        row = products.get(key)
        if row is None:
            row = products[key] = {
                "product_id": item.product_id,
                "product_name": item.product_name,
                "product_code": item.product_code,
                "category": item.category,
                "quantity": 0,
                "revenue_cents": 0,
                "cost_cents": 0,
                "profit_cents": 0,
            }
        row["quantity"] += item.quantity
        row["revenue_cents"] += item.revenue_cents
        row["cost_cents"] += item.cost_cents
        row["profit_cents"] += item.profit_cents

    for row in products.values():
        row["profit_margin"] = profit_margin(row["profit_cents"], row["revenue_cents"])

    rows = list(products.values())
    top_selling = sorted(rows, key=lambda r: (-r["revenue_cents"], r["product_name"]))[:limit]
    high_margin = sorted(rows, key=lambda r: (-r["profit_margin"], r["product_name"]))[:limit]
    low_margin = sorted(
        (r for r in rows if r["profit_margin"] < low_margin_threshold),
        key=lambda r: (r["profit_margin"], r["product_name"]),
    )[:limit]

    return {
        **_range_payload(start_dt, end_dt),
        "low_margin_threshold": low_margin_threshold,
        "top_selling": top_selling,
        "high_margin": high_margin,
        "low_margin": low_margin,
    }


def sale_report(sale_id: int) -> dict:
    report = db.session.query(Report).filter(Report.sale_id == sale_id).first()
    if not report:
        raise NotFoundError("Report not found for this sale")
    data = report.to_dict(include_items=True)
    sale = db.session.get(Sale, sale_id)
    data["sale"] = sale.to_dict() if sale else None
    return data


def inventory_valuation() -> dict:
    """Stock value at buying price, per product and per category. Reads products only."""
    products = (
        db.session.query(Product)
        .filter(Product.is_active.is_(True))
        .order_by(Product.category.asc(), Product.name.asc())
        .all()
    )

    rows = []
    categories: dict[str, dict] = {}
    totals = {
        "stock_value_cents": 0,
        "potential_revenue_cents": 0,
        "potential_profit_cents": 0,
        "low_stock_count": 0,
        "out_of_stock_count": 0,
        "product_count": 0,
    }

    for product in products:
        value = product.quantity * product.buying_price_cents
        revenue = product.quantity * product.selling_price_cents
        profit = revenue - value
        rows.append({
            "product_id": product.id,
            "name": product.name,
            "product_code": product.product_code,
            "category": product.category,
            "quantity": product.quantity,
            "reorder_level": product.reorder_level,
            "stock_value_cents": value,
            "potential_revenue_cents": revenue,
            "potential_profit_cents": profit,
            "is_low_stock": product.is_low_stock,
        })

        bucket = categories.setdefault(product.category, {
            "category": product.category,
            "product_count": 0,
            "quantity": 0,
            "stock_value_cents": 0,
            "potential_revenue_cents": 0,
            "potential_profit_cents": 0,
        })
        bucket["product_count"] += 1
        bucket["quantity"] += product.quantity
        bucket["stock_value_cents"] += value
        bucket["potential_revenue_cents"] += revenue
        bucket["potential_profit_cents"] += profit

        totals["product_count"] += 1
        totals["stock_value_cents"] += value
        totals["potential_revenue_cents"] += revenue
        totals["potential_profit_cents"] += profit
        if product.quantity == 0:
            totals["out_of_stock_count"] += 1
        elif product.is_low_stock:
            totals["low_stock_count"] += 1

    return {
        "as_of": to_utc_z(utcnow()),
        "totals": totals,
        "categories": list(categories.values()),
        "products": rows,
    }
