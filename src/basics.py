"""

    Basic utility functions and classes

    Copyright © 2025 Miðeind ehf.

    The Creative Commons Attribution-NonCommercial 4.0
    International Public License (CC-BY-NC 4.0) applies to this software.
    For further information, see https://github.com/mideind/Netskrafl


    This module defines a number of basic entities that are shared
    by the main.py and api.py modules: request parsing, JSON replies
    and access to the identity of the requesting player.

"""

from __future__ import annotations

from typing import Optional, Dict, Any, Callable, cast

from functools import wraps

from flask import jsonify as flask_jsonify, g
from flask.wrappers import Request, Response

from config import RouteType, ResponseType


RouteFunc = Callable[[RouteType], RouteType]


def jsonify(*args: Any, **kwargs: Any) -> Response:
    response = flask_jsonify(*args, **kwargs)
    response.headers["Content-Type"] = "application/json; charset=UTF-8"
    return response


def current_user_id() -> Optional[str]:
    """Return the id of the requesting player, as established by the
    authenticating gateway in front of this service, or None"""
    return g.get("user_id") or None


def auth_required(**error_kwargs: Any) -> RouteFunc:
    """Decorator for routes that require an identified player.
    Unidentified requests get a JSON reply containing error_kwargs
    and an HTTP status of 401 - Unauthorized."""

    def wrap(func: RouteType) -> RouteType:
        @wraps(func)
        def route(*args: Any, **kwargs: Any) -> ResponseType:
            if current_user_id() is None:
                return jsonify(ok=False, **error_kwargs), 401
            return func(*args, **kwargs)

        return route

    return wrap


class RequestData:
    """Error-checked access to request parameters, taken from a JSON
    body, from form data or (if permitted) from the URL query string"""

    def __init__(self, rq: Request, *, use_args: bool = False) -> None:
        q: Optional[Dict[str, Any]] = cast(Any, rq).get_json(silent=True)
        if not isinstance(q, dict):
            q = None
        self.using_json = q is not None
        if not q:
            q = cast(Dict[str, Any], rq.form)
        if not q and use_args:
            q = cast(Dict[str, Any], rq.args)
        self.q: Dict[str, Any] = q or {}

    def __repr__(self) -> str:
        return f"<RequestData {self.q!r}>"

    def get(self, key: str, default: Any = None) -> Any:
        return self.q.get(key, default)

    def get_str(self, key: str, default: str = "") -> str:
        """A string parameter, trimmed; the default if missing or not a string"""
        val = self.q.get(key, default)
        return val.strip() if isinstance(val, str) else default

    def get_int(self, key: str, default: int = 0) -> int:
        """An integer parameter; the default if missing or malformed.
        Booleans are not accepted as integers."""
        val = self.q.get(key, default)
        if isinstance(val, bool):
            return default
        try:
            return int(val)
        except (TypeError, ValueError):
            return default
