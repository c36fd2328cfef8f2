# Overview: Flask API routes for auth operations; parses input and returns JSON responses.

from flask import Blueprint, request, jsonify, g, current_app

from ..services import auth_service
from ..services import session_service
from ..decorators import require_auth
from . import success, internal_error
from retailpos.time_utils import to_utc_z


auth_bp = Blueprint("auth", __name__, url_prefix="/api/auth")


@auth_bp.post("/login")
def login_route():
    """
    Authenticate user and create session token.

    The token must be sent as `Authorization: Bearer <token>` on protected
    routes.
    """
    try:
        data = request.get_json(silent=True) or {}
        username = data.get("username") or data.get("identifier")
        password = data.get("password")

        if not all([username, password]):
            return jsonify({"success": False, "message": "username and password required"}), 400

        user = auth_service.authenticate(username, password)
        if not user:
            current_app.logger.info("Failed login for %r from %s", username, request.remote_addr)
            return jsonify({"success": False, "message": "Invalid credentials"}), 401

        session, token = session_service.create_session(
            user,
            user_agent=request.headers.get("User-Agent"),
            ip_address=request.remote_addr,
        )

        return success(
            {"user": user.to_dict(), "token": token, "expires_at": to_utc_z(session.expires_at)},
            message="Login successful",
        )
    except Exception:
        current_app.logger.exception("Login failed")
        return internal_error("Login failed")


@auth_bp.post("/logout")
@require_auth
def logout_route():
    session_service.revoke_session(g.session_token, reason="User logout")
    return success(None, message="Logged out")


@auth_bp.get("/me")
@require_auth
def me_route():
    return success({"user": g.current_user.to_dict()})
