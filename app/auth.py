"""
Research Proposal Workflow Engine
Identity middleware.

The engine does not authenticate anyone; it consumes the caller's role and
user id from an identity provider.  This module is that seam:

    - Production: X-API-Key header (or ?api_key=) resolved through the
      API_KEYS env var.  Each entry binds a key to a role and a user id.
    - Development / testing (API_AUTH_ENABLED=false): the upstream proxy's
      X-User-Role / X-User-Id headers are trusted as-is.

The resolved identity is placed on flask.g (current_user_role,
current_user_id).  Endpoints that issue decisions or reports wrap
themselves in @require_identity; the role and id are never read from the
request body.

Configuration (env vars):
    API_KEYS          — comma-separated "<key>:<role>:<user_id>" entries
                        e.g. "k1:RDD:u-17,k2:CollegeCommittee:u-3"
    API_AUTH_ENABLED  — set to "false" to trust identity headers (dev only)
"""

import functools
import logging
import os
from typing import Optional

from flask import current_app, g, jsonify, request

logger = logging.getLogger(__name__)


def _parse_api_keys() -> dict[str, tuple[str, str]]:
    """
    Parse API_KEYS env var into {key: (role, user_id)} mapping.

    Entries without a user id use the key's role as the id; entries without
    a role are skipped with a warning.
    """
    raw = os.getenv("API_KEYS", "")
    if not raw.strip():
        return {}

    keys = {}
    for entry in raw.split(","):
        entry = entry.strip()
        if not entry:
            continue
        parts = [p.strip() for p in entry.split(":")]
        if len(parts) < 2 or not parts[1]:
            logger.warning("API key entry without a role ignored: %s...", parts[0][:8])
            continue
        key, role = parts[0], parts[1]
        user_id = parts[2] if len(parts) > 2 and parts[2] else role
        keys[key] = (role, user_id)
    return keys


def _is_auth_enabled() -> bool:
    """Check whether authentication is enabled (env var or app config)."""
    env_val = os.getenv("API_AUTH_ENABLED", "")
    if env_val:
        return env_val.lower() not in ("false", "0", "no", "off")
    try:
        return str(current_app.config.get("API_AUTH_ENABLED", "true")).lower() not in (
            "false", "0", "no", "off",
        )
    except RuntimeError:
        # Outside app context
        return True


def _get_api_key_from_request() -> Optional[str]:
    """Extract API key from request header or query parameter."""
    key = request.headers.get("X-API-Key", "").strip()
    if key:
        return key
    return request.args.get("api_key", "").strip() or None


def _check_content_type():
    """
    For state-changing requests, require Content-Type: application/json.
    HTML forms cannot send it, which doubles as lightweight CSRF protection.
    """
    if request.method in ("POST", "PUT", "PATCH", "DELETE"):
        ct = request.content_type or ""
        if "application/json" not in ct and request.content_length and request.content_length > 0:
            return jsonify({
                "error": "Content-Type must be application/json for state-changing requests"
            }), 415
    return None


def current_identity() -> tuple[Optional[str], Optional[str]]:
    """Return (role, user_id) for the current request; either may be None."""
    return getattr(g, "current_user_role", None), getattr(g, "current_user_id", None)


def require_identity(f):
    """
    Decorator: the endpoint needs both a role and a user id.

    Returns 401 when the identity provider supplied neither.
    """
    @functools.wraps(f)
    def decorated(*args, **kwargs):
        role, user_id = current_identity()
        if not role or not user_id:
            return jsonify({
                "error": "Caller identity required (role and user id).",
                "code": "ERR_UNAUTHENTICATED",
            }), 401
        return f(*args, **kwargs)

    return decorated


def init_auth(app):
    """
    Install the identity middleware on the Flask app.

    Skips non-API routes and the health check.
    """
    @app.before_request
    def _before_request_auth():
        if not request.path.startswith("/api/v1/"):
            return None
        if request.path == "/api/v1/health" or request.path.startswith("/api/v1/health/"):
            return None
        if request.method == "OPTIONS":
            return None

        csrf_error = _check_content_type()
        if csrf_error:
            return csrf_error

        if not _is_auth_enabled():
            g.current_user_role = request.headers.get("X-User-Role", "").strip() or None
            g.current_user_id = request.headers.get("X-User-Id", "").strip() or None
            return None

        api_key = _get_api_key_from_request()
        if not api_key:
            return jsonify({"error": "Authentication required. Provide X-API-Key header."}), 401

        api_keys = _parse_api_keys()
        if not api_keys:
            logger.error("API_KEYS env var is not configured but API_AUTH_ENABLED=true")
            return jsonify({"error": "Server authentication not configured"}), 500

        identity = api_keys.get(api_key)
        if identity is None:
            logger.warning("Invalid API key attempt: %s...", api_key[:8])
            return jsonify({"error": "Invalid API key"}), 401

        g.current_user_role, g.current_user_id = identity
        return None

    logger.info("Identity middleware installed (enabled=%s)", _is_auth_enabled())
