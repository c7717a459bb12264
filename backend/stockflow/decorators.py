# Overview: Request and capability decorators for API routes, plus the shared error response.

from functools import wraps

from flask import current_app, g, jsonify, request

from .errors import StockFlowError
from .services import permission_service, session_service


def error_response(err: StockFlowError):
    """JSON body and status for a typed service failure."""
    current_app.logger.warning("Refused %s %s: %s", request.method, request.path, err.message)
    return jsonify(err.to_dict()), err.http_status


def require_auth(f):
    """
    Require a valid bearer token.

    Sets g.current_user to the authenticated User. Returns 401 when the
    header is missing, or the token is invalid, expired or revoked.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        auth_header = request.headers.get("Authorization")

        if not auth_header or not auth_header.startswith("Bearer "):
            return jsonify({"error": "Authentication required", "code": "authentication_required"}), 401

        token = auth_header.split(" ", 1)[1]
        user = session_service.validate_session(token)

        if not user:
            return jsonify({"error": "Invalid or expired token", "code": "authentication_required"}), 401

        g.current_user = user
        g.session_token = token

        return f(*args, **kwargs)

    return decorated_function


def require_capability(capability: str):
    """
    Require the authenticated user's role to hold ``capability``.

    Must be applied after @require_auth. Ownership rules are checked by the
    services themselves.
    """
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            user = getattr(g, "current_user", None)
            if user is None:
                return jsonify({"error": "Authentication required", "code": "authentication_required"}), 401

            if not permission_service.has_capability(user, capability):
                current_app.logger.warning(
                    "User %s (%s) denied %s on %s", user.id, user.role, capability, request.path
                )
                return jsonify({
                    "error": "Permission denied",
                    "code": "authorization_error",
                    "required_capability": capability,
                }), 403

            return f(*args, **kwargs)

        return decorated_function
    return decorator
