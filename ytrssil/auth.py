"""Request guards that check the static auth token."""

from __future__ import annotations

import json
from typing import Callable, Optional

from flask import Response, redirect, request

Guard = Callable[[], Optional[Response]]


def _json_error(status: int, message: str) -> Response:
    body = json.dumps({"error": message}, separators=(",", ":"))
    return Response(body, status=status, mimetype="application/json")


def page_auth_guard(auth_token: str) -> Guard:
    """Return a guard that redirects to the login page unless the token cookie matches."""

    def guard() -> Optional[Response]:
        if request.cookies.get("token") != auth_token:
            return redirect("/auth", 302)
        return None

    return guard


def api_auth_guard(auth_token: str) -> Guard:
    """Return a guard that rejects requests without the exact Authorization token."""

    def guard() -> Optional[Response]:
        values = request.headers.getlist("Authorization")
        if len(values) != 1:
            return _json_error(401, "missing Authorization header")
        if values[0] != auth_token:
            return _json_error(401, "invalid auth token")
        return None

    return guard