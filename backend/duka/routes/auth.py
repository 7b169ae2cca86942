# Overview: Flask API routes for login, logout and the current actor.

# backend/duka/routes/auth.py
"""
Authentication API routes

Accounts are created by administrators through the CLI; there is no
self-registration. Login names the kind of account (admin or cashier).
"""

from flask import Blueprint, request, jsonify, current_app, g

from ..decorators import require_auth
from ..services import auth_service
from ..services import session_service
from ..services.auth_service import ACTOR_TYPES


auth_bp = Blueprint("auth", __name__, url_prefix="/api/auth")


@auth_bp.post("/login")
def login_route():
    """
    Authenticate and create a session token.

    Body: {"role": "admin" | "cashier", "email": "...", "password": "..."}

    Token must be included in the Authorization header for protected routes.
    """
    data = request.get_json(silent=True) or {}
    role = (data.get("role") or "cashier").strip().lower()
    email = data.get("email")
    password = data.get("password")

    if role not in ACTOR_TYPES:
        return jsonify({"success": False, "error": "role must be admin or cashier"}), 400
    if not all([email, password]):
        return jsonify({"success": False, "error": "email and password required"}), 400

    try:
        account = auth_service.authenticate(role, email, password)
        if not account:
            current_app.logger.warning("Failed %s login for %s", role, email)
            return jsonify({"success": False, "error": "Invalid credentials"}), 401

        session, token = session_service.create_session(
            account,
            user_agent=request.headers.get("User-Agent"),
            ip_address=request.remote_addr,
        )
    except Exception:
        current_app.logger.exception("Failed to login")
        return jsonify({"success": False, "error": "Internal server error"}), 500

    return jsonify({
        "success": True,
        "message": "Login successful",
        "token": token,
        "user": account.to_dict(),
        "session": session.to_dict(),
    }), 200


@auth_bp.post("/logout")
def logout_route():
    """Revoke the bearer token."""
    auth_header = request.headers.get("Authorization")
    if not auth_header or not auth_header.startswith("Bearer "):
        return jsonify({"success": False, "error": "Authorization header required"}), 401

    token = auth_header.split(" ", 1)[1]
    if not session_service.revoke_session(token, reason="User logout"):
        return jsonify({"success": False, "error": "Invalid or expired token"}), 401

    return jsonify({"success": True, "message": "Logout successful"}), 200


@auth_bp.get("/me")
@require_auth
def me_route():
    actor = g.actor
    body = {
        "id": actor.id,
        "name": actor.name,
        "email": actor.email,
        "role": actor.role,
    }
    if actor.role == "cashier":
        body["shop_id"] = actor.shop_id
        body["shop_name"] = actor.shop_name
    return jsonify({"success": True, "data": body}), 200
