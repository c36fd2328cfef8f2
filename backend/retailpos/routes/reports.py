# Overview: Flask API routes for reports operations; parses input and returns JSON responses.

from flask import Blueprint, request, current_app

from ..decorators import require_auth, require_admin
from ..errors import ServiceError
from ..services import reporting_service
from . import success, error_response, internal_error


reports_bp = Blueprint("reports", __name__, url_prefix="/api/reports")


def _range_args() -> dict:
    return {
        "start": request.args.get("start") or request.args.get("startDate"),
        "end": request.args.get("end") or request.args.get("endDate"),
    }


@reports_bp.get("/sales")
@require_auth
def list_reports_route():
    try:
        data = reporting_service.list_reports(
            **_range_args(),
            page=request.args.get("page", 1, type=int),
            limit=request.args.get("limit", 10, type=int),
        )
        return success(data)
    except ServiceError as exc:
        return error_response(exc)
    except Exception:
        current_app.logger.exception("Failed to list reports")
        return internal_error("Failed to list reports")


@reports_bp.get("/sales/summary")
@require_auth
def sales_summary_route():
    try:
        data = reporting_service.sales_report(
            **_range_args(),
            period=request.args.get("period"),
            category=request.args.get("category"),
        )
        return success(data)
    except ServiceError as exc:
        return error_response(exc)
    except Exception:
        current_app.logger.exception("Failed to build sales summary")
        return internal_error("Failed to build sales summary")


@reports_bp.get("/categories")
@require_auth
@require_admin
def category_report_route():
    try:
        return success(reporting_service.category_report(**_range_args()))
    except ServiceError as exc:
        return error_response(exc)
    except Exception:
        current_app.logger.exception("Failed to build category report")
        return internal_error("Failed to build category report")


@reports_bp.get("/payment-methods")
@require_auth
@require_admin
def payment_method_report_route():
    try:
        return success(reporting_service.payment_method_report(**_range_args()))
    except ServiceError as exc:
        return error_response(exc)
    except Exception:
        current_app.logger.exception("Failed to build payment method report")
        return internal_error("Failed to build payment method report")


@reports_bp.get("/products")
@require_auth
@require_admin
def product_report_route():
    try:
        data = reporting_service.product_report(
            **_range_args(),
            limit=request.args.get("limit", 10, type=int),
            low_margin_threshold=request.args.get(
                "low_margin_threshold", reporting_service.LOW_MARGIN_THRESHOLD, type=float
            ),
        )
        return success(data)
    except ServiceError as exc:
        return error_response(exc)
    except Exception:
        current_app.logger.exception("Failed to build product report")
        return internal_error("Failed to build product report")


@reports_bp.get("/sales/<int:sale_id>")
@require_auth
@require_admin
def sale_report_route(sale_id: int):
    try:
        return success(reporting_service.sale_report(sale_id))
    except ServiceError as exc:
        return error_response(exc)
    except Exception:
        current_app.logger.exception("Failed to load report for sale %s", sale_id)
        return internal_error("Failed to load sale report")


@reports_bp.get("/inventory-valuation")
@require_auth
@require_admin
def inventory_valuation_route():
    try:
        return success(reporting_service.inventory_valuation())
    except Exception:
        current_app.logger.exception("Failed to build inventory valuation")
        return internal_error("Failed to build inventory valuation")
