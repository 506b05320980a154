"""

    Web server for Guess The Link

    Copyright © 2025 Miðeind ehf.

    The Creative Commons Attribution-NonCommercial 4.0
    International Public License (CC-BY-NC 4.0) applies to this software.
    For further information, see https://github.com/mideind/Netskrafl


    This module uses the Flask framework to serve the JSON API of the
    Guess The Link game engine.

    Players are identified by an authenticating gateway in front of this
    service, which passes the user id in a trusted request header
    (USER_ID_HEADER). The JSON API entrypoints are defined in api.py.

"""

from __future__ import annotations

from typing import Any, Optional, Union

import os
import logging

from logging.config import dictConfig

from flask import Flask, g, request
from flask.wrappers import Response
from flask_cors import CORS

from api import EXTENSION_KEY, EngineDependencies, api
from basics import jsonify
from cache import RedisWrapper
from config import (
    DEFAULT_SETTINGS,
    GameSettings,
    ResponseType,
    USER_ID_HEADER,
    running_local,
)
from db.session import SessionManager


def configure_logging() -> None:
    dictConfig(
        {
            "version": 1,
            "formatters": {
                "default": {
                    "format": "[%(asctime)s] %(levelname)s in %(module)s: %(message)s",
                }
            },
            "handlers": {
                "wsgi": {
                    "class": "logging.StreamHandler",
                    "stream": "ext://flask.logging.wsgi_errors_stream",
                    "formatter": "default",
                }
            },
            "root": {"level": "INFO", "handlers": ["wsgi"]},
        }
    )


def create_app(
    sessions: Optional[SessionManager] = None,
    cache: Optional[RedisWrapper] = None,
    settings: GameSettings = DEFAULT_SETTINGS,
    *,
    use_cache: bool = True,
) -> Flask:
    """Create the Flask application. The dependencies are created from
    the environment unless given; use_cache=False runs without Redis."""
    if sessions is None:
        sessions = SessionManager()
    if cache is None and use_cache:
        cache = RedisWrapper()

    app = Flask(__name__)
    app.config.update(DEBUG=running_local, JSON_AS_ASCII=False)
    app.extensions[EXTENSION_KEY] = EngineDependencies(sessions, cache, settings)

    # Initialize Cross-Origin Resource Sharing (CORS) Flask plug-in
    if running_local:
        CORS(app, origins=["http://127.0.0.1:3000", "http://localhost:3000"])

    @app.before_request
    def identify_user() -> None:
        """Store the id of the requesting player, if any, in g"""
        user_id = request.headers.get(USER_ID_HEADER, "").strip()
        g.user_id = user_id or None

    @app.after_request
    def add_headers(response: Response) -> Response:
        """Replies are per-player and must not be cached"""
        response.headers["Cache-Control"] = "no-store"
        return response

    @app.errorhandler(500)
    def server_error(e: Union[int, Exception]) -> ResponseType:
        """Return a JSON 500 error"""
        logging.error(f"Server error: {e}")
        return jsonify(ok=False, error="Server error", kind="internal"), 500

    # Register the Flask blueprint for the api routes
    app.register_blueprint(api)

    return app


# Run a default Flask web server for testing if invoked directly as a main program
if __name__ == "__main__":
    configure_logging()
    if running_local:
        logging.info("Guess The Link running with DEBUG set to True")
    app: Any = create_app()
    app.run(
        debug=True,
        port=int(os.environ.get("PORT", "8080")),
        use_debugger=True,
        threaded=False,
        processes=1,
        host=os.environ.get("HOST", "127.0.0.1"),
    )
