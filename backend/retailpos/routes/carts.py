# Overview: Flask API routes for cart and checkout operations; parses input and returns JSON responses.

"""
Cart API routes.

Every route works on the caller's own active cart (g.current_user). Amounts
are integer cents.
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_auth, require_admin
from ..errors import ServiceError
from ..models import CART_ACTIVE, CART_CONVERTED
from ..services import cart_service, checkout_service
from . import success, error_response, internal_error


carts_bp = Blueprint("carts", __name__, url_prefix="/api/cart")


@carts_bp.get("")
@require_auth
def get_cart_route():
    try:
        cart = cart_service.get_cart(g.current_user.id)
        return success(cart.to_dict(), message="Cart retrieved successfully")
    except ServiceError as exc:
        return error_response(exc)
    except Exception:
        current_app.logger.exception("Failed to load cart")
        return internal_error("Failed to retrieve cart")


@carts_bp.post("/items")
@require_auth
def add_item_route():
    data = request.get_json(silent=True) or {}
    product_id = data.get("product_id", data.get("productId"))
    quantity = data.get("quantity", 1)

    try:
        cart = cart_service.add_item(g.current_user.id, product_id, quantity)
        return success(cart.to_dict(), message="Product added to cart", status=201)
    except ServiceError as exc:
        return error_response(exc)
    except Exception:
        current_app.logger.exception("Failed to add item to cart")
        return internal_error("Failed to add item to cart")


@carts_bp.post("/items/code/<string:product_code>")
@require_auth
def add_item_by_code_route(product_code: str):
    data = request.get_json(silent=True) or {}

    try:
        cart = cart_service.add_item_by_code(g.current_user.id, product_code, data.get("quantity", 1))
        return success(cart.to_dict(), message="Product added to cart", status=201)
    except ServiceError as exc:
        return error_response(exc)
    except Exception:
        current_app.logger.exception("Failed to add product %s to cart", product_code)
        return internal_error("Failed to add item to cart")


@carts_bp.put("/items/<int:item_id>")
@require_auth
def update_item_route(item_id: int):
    data = request.get_json(silent=True) or {}

    try:
        cart = cart_service.update_item_quantity(g.current_user.id, item_id, data.get("quantity"))
        return success(cart.to_dict(), message="Cart item updated")
    except ServiceError as exc:
        return error_response(exc)
    except Exception:
        current_app.logger.exception("Failed to update cart item %s", item_id)
        return internal_error("Failed to update cart item")


@carts_bp.delete("/items/<int:item_id>")
@require_auth
def remove_item_route(item_id: int):
    try:
        cart = cart_service.remove_item(g.current_user.id, item_id)
        return success(cart.to_dict(), message="Item removed from cart")
    except ServiceError as exc:
        return error_response(exc)
    except Exception:
        current_app.logger.exception("Failed to remove cart item %s", item_id)
        return internal_error("Failed to remove item from cart")


@carts_bp.delete("")
@require_auth
def clear_cart_route():
    try:
        cart = cart_service.clear(g.current_user.id)
        return success(cart.to_dict(), message="Cart cleared")
    except ServiceError as exc:
        return error_response(exc)
    except Exception:
        current_app.logger.exception("Failed to clear cart")
        return internal_error("Failed to clear cart")


@carts_bp.patch("")
@require_auth
def update_details_route():
    data = request.get_json(silent=True) or {}
    if "couponCode" in data and "coupon_code" not in data:
        data["coupon_code"] = data["couponCode"]

    try:
        cart = cart_service.update_details(g.current_user.id, data)
        return success(cart.to_dict(), message="Cart updated")
    except ServiceError as exc:
        return error_response(exc)
    except Exception:
        current_app.logger.exception("Failed to update cart details")
        return internal_error("Failed to update cart")


@carts_bp.post("/checkout")
@require_auth
def checkout_route():
    """
    Convert the active cart into a report (and sale).

    Body: {"paymentMethod": "cash", "customerInfo": {"name", "email", "phone", "address"}}
    snake_case keys are accepted too.
    """
    data = request.get_json(silent=True) or {}
    payment_method = data.get("paymentMethod", data.get("payment_method"))
    customer_info = data.get("customerInfo", data.get("customer_info"))

    try:
        result = checkout_service.checkout(g.current_user.id, payment_method, customer_info)
        return success(result.to_dict(), message=result.message, status=201)
    except ServiceError as exc:
        return error_response(exc)
    except Exception:
        current_app.logger.exception("Checkout failed for user %s", g.current_user.id)
        return internal_error("Checkout failed")


@carts_bp.get("/all")
@require_auth
@require_admin
def list_carts_route():
    status = request.args.get("status", CART_ACTIVE)
    if status not in (CART_ACTIVE, CART_CONVERTED):
        return jsonify({"success": False, "message": "status must be active or converted"}), 400

    page = request.args.get("page", 1, type=int)
    limit = request.args.get("limit", 10, type=int)

    try:
        return success(cart_service.list_carts(status=status, page=page, limit=limit))
    except Exception:
        current_app.logger.exception("Failed to list carts")
        return internal_error("Failed to list carts")
