# Overview: Flask API routes for products operations; parses input and returns JSON responses.

from flask import Blueprint, request, current_app

from ..decorators import require_auth, require_admin
from ..errors import ServiceError
from ..services import inventory_service
from . import success, error_response, internal_error


products_bp = Blueprint("products", __name__, url_prefix="/api/products")


@products_bp.get("")
@require_auth
def list_products_route():
    """
    Query params:
    - category: exact category match
    - low_stock: "true" to list only products at or below their reorder level
    - search: substring of name or product code
    """
    low_stock = request.args.get("low_stock", "false").lower() == "true"
    products = inventory_service.list_products(
        category=request.args.get("category"),
        low_stock=low_stock,
        search=request.args.get("search"),
    )
    return success([p.to_dict() for p in products])


@products_bp.post("")
@require_auth
@require_admin
def create_product_route():
    data = request.get_json(silent=True) or {}
    try:
        product = inventory_service.create_product(data)
        return success(product.to_dict(), message="Product created", status=201)
    except ServiceError as exc:
        return error_response(exc)
    except Exception:
        current_app.logger.exception("Failed to create product")
        return internal_error("Failed to create product")


@products_bp.get("/<int:product_id>")
@require_auth
def get_product_route(product_id: int):
    try:
        return success(inventory_service.require_product(product_id).to_dict())
    except ServiceError as exc:
        return error_response(exc)


@products_bp.post("/<int:product_id>/restock")
@require_auth
@require_admin
def restock_route(product_id: int):
    data = request.get_json(silent=True) or {}
    try:
        product = inventory_service.increment_stock(product_id, data.get("quantity"))
        current_app.logger.info("Restocked product %s by %s", product_id, data.get("quantity"))
        return success(product.to_dict(), message="Product restocked")
    except ServiceError as exc:
        return error_response(exc)
    except Exception:
        current_app.logger.exception("Failed to restock product %s", product_id)
        return internal_error("Failed to restock product")


@products_bp.get("/code/<string:product_code>")
@require_auth
def get_product_by_code_route(product_code: str):
    """Scanner lookup; `available` is the stock on hand right now."""
    try:
        product = inventory_service.require_product_by_code(product_code)
        payload = product.to_dict()
        payload["available"] = product.quantity
        return success(payload)
    except ServiceError as exc:
        return error_response(exc)


@products_bp.route("/<int:product_id>", methods=["PUT", "PATCH"])
@require_auth
@require_admin
def update_product_route(product_id: int):
    """
    Partial product edit (admin).

    Body may carry version_id; a mismatch answers 409. quantity is refused,
    stock only moves through restock and checkout.
    """
    data = request.get_json(silent=True) or {}
    try:
        product = inventory_service.update_product(product_id, data)
        current_app.logger.info("Updated product %s: %s", product_id, sorted(k for k in data if k != "version_id"))
        return success(product.to_dict(), message="Product updated")
    except ServiceError as exc:
        return error_response(exc)
    except Exception:
        current_app.logger.exception("Failed to update product %s", product_id)
        return internal_error("Failed to update product")
