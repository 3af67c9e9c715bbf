from __future__ import annotations

import secrets

from flask import Flask, Response, g, jsonify, request

ACCOUNT_HEADER = "X-Account-Id"


def install_identity(app: Flask) -> None:
    """Expose the caller's account id as ``g.account_id``.

    The id arrives already authenticated in ``X-Account-Id``; without it the
    request is anonymous and only sees public items.
    """

    @app.before_request
    def _load_account() -> None:
        raw = request.headers.get(ACCOUNT_HEADER, "").strip()
        g.account_id = raw or None


def current_account() -> str | None:
    return g.get("account_id")


def install_api_key_auth(app: Flask, api_key: str | None) -> None:
    if not api_key:
        return

    # Routes that stay accessible for health checks even when an API key is set.
    allow_paths = {"/health"}

    @app.before_request
    def _require_api_key() -> Response | None:
        if request.path in allow_paths:
            return None

        provided = request.headers.get("X-API-Key")
        if not provided:
            auth = request.headers.get("Authorization", "")
            if auth.lower().startswith("bearer "):
                provided = auth[7:].strip()

        if not provided or not secrets.compare_digest(provided, api_key):
            response = jsonify({"error": "Unauthorized", "kind": "Unauthorized"})
            response.status_code = 401
            response.headers["WWW-Authenticate"] = "Bearer"
            return response

        return None
