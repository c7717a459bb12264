# Overview: Flask API routes for login, logout and the current user.

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_auth
from ..permissions import capabilities_for
from ..services import auth_service, session_service
from stockflow.time_utils import to_utc_z


auth_bp = Blueprint("auth", __name__, url_prefix="/api/auth")


@auth_bp.post("/login")
def login_route():
    """
    Authenticate and issue a bearer token.

    Request body: {"username": "...", "password": "..."} (username may be an email)
    """
    try:
        data = request.get_json(silent=True) or {}
        username = data.get("username") or data.get("email")
        password = data.get("password")

        if not all([username, password]):
            return jsonify({"error": "username/email and password required", "code": "validation_error"}), 400

        user = auth_service.authenticate(username, password)
        if not user:
            current_app.logger.warning("Failed login for %s", username)
            return jsonify({"error": "Invalid credentials", "code": "authentication_required"}), 401

        session, token = session_service.create_session(user.id)

        return jsonify({
            "user": user.to_dict(),
            "capabilities": sorted(capabilities_for(user.role)),
            "token": token,
            "expires_at": to_utc_z(session.expires_at),
        }), 200

    except Exception:
        current_app.logger.exception("Failed to login user")
        return jsonify({"error": "Internal server error"}), 500


@auth_bp.post("/logout")
@require_auth
def logout_route():
    """Revoke the presented token."""
    session_service.revoke_session(g.session_token)
    return jsonify({"message": "Logout successful"}), 200


@auth_bp.get("/me")
@require_auth
def me_route():
    user = g.current_user
    return jsonify({
        "user": user.to_dict(),
        "capabilities": sorted(capabilities_for(user.role)),
    })
