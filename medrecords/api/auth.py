"""
Bearer-token helpers and route decorators for the Flask API.
"""

from functools import wraps
from typing import Optional

from flask import current_app, jsonify, redirect, request

from medrecords.models import AccessContext, View
from medrecords.rbac import guard, load_access_context

EXTENSION_KEY = "medrecords"


def resources():
    """The engine, identity provider and storage attached by create_app."""
    return current_app.extensions[EXTENSION_KEY]


def extract_token() -> Optional[str]:
    """Read the session token from the Authorization header, JSON body or query string."""
    token = None

    if "Authorization" in request.headers:
        parts = request.headers["Authorization"].split(" ")
        if len(parts) == 2 and parts[0].lower() == "bearer":
            token = parts[1]

    if not token and request.is_json:
        body = request.get_json(silent=True) or {}
        token = body.get("token") if isinstance(body, dict) else None
    if not token:
        token = request.args.get("token")

    return token or None


def current_context() -> AccessContext:
    res = resources()
    return load_access_context(res["identity"], res["engine"], extract_token())


def token_required(f):
    """Reject the request with 401 unless it carries a live session."""
    @wraps(f)
    def decorated(*args, **kwargs):
        ctx = current_context()
        if not ctx.is_authenticated:
            return jsonify({"error": "Invalid or expired session. Please sign in again."}), 401

        request.access_ctx = ctx
        return f(*args, **kwargs)

    return decorated


def view_required(view: View):
    """Redirect to the caller's own view instead of rendering someone else's."""
    def decorator(f):
        @wraps(f)
        def decorated(*args, **kwargs):
            ctx = current_context()
            target = guard(ctx, view)
            if target is not None:
                return redirect(target.path)

            request.access_ctx = ctx
            return f(*args, **kwargs)

        return decorated
    return decorator
