from __future__ import annotations

import atexit
import logging
import os
from typing import Any

from flask import Flask, jsonify
from werkzeug.exceptions import RequestEntityTooLarge

from .api import register_routes
from .auth import install_api_key_auth, install_identity
from .config import api_key, log_level, max_request_bytes
from .db import init_db
from .events import EventSink, LoggingEventSink
from .rescale import RescaleQueue


def configure_logging() -> None:
    logging.basicConfig(
        level=log_level(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def create_app(
    *, events: EventSink | None = None, rescale: RescaleQueue | None = None
) -> Flask:
    app = Flask(__name__)
    app.config["MAX_CONTENT_LENGTH"] = max_request_bytes()

    @app.errorhandler(RequestEntityTooLarge)
    def handle_request_too_large(exc: RequestEntityTooLarge) -> tuple[Any, int]:
        return (
            jsonify(
                {
                    "error": "Request entity too large",
                    "hint": "Raise ITEMTREE_MAX_REQUEST_BYTES or send fewer ids per batch.",
                }
            ),
            413,
        )

    init_db()
    if rescale is None:
        # A queue passed in stays owned by the caller.
        rescale = RescaleQueue()
        atexit.register(rescale.shutdown)
    app.extensions["itemtree"] = {
        "events": events or LoggingEventSink(),
        "rescale": rescale,
    }
    install_api_key_auth(app, api_key())
    install_identity(app)
    register_routes(app)
    return app


if __name__ == "__main__":
    configure_logging()
    debug = os.environ.get("ITEMTREE_DEBUG", "").strip().lower() in {"1", "true", "yes", "on"}
    host = os.environ.get("ITEMTREE_HOST", "0.0.0.0")
    port_raw = os.environ.get("ITEMTREE_PORT") or os.environ.get("PORT") or "8000"
    try:
        port = int(port_raw)
    except ValueError:
        port = 8000

    create_app().run(host=host, port=port, debug=debug)
