"""The web application: JSON API, health check, access log and error handling."""

from __future__ import annotations

import json
import logging
import os
import time
from datetime import datetime, timedelta, timezone
from typing import Any

from flask import Blueprint, Flask, Response, g, request

from ytrssil.auth import api_auth_guard
from ytrssil.feedparser import InvalidChannelIDError
from ytrssil.handler import Handler
from ytrssil.models import AlreadySubscribedError, ChannelNotFoundError, Settings
from ytrssil.pages import create_pages_blueprint

_access_log = logging.getLogger("ytrssil.access")

_NANOS_PER_SECOND = 1_000_000_000


def _json(status: int, payload: Any) -> Response:
    body = json.dumps(payload, separators=(",", ":"))
    return Response(body, status=status, mimetype="application/json")


def _fraction(value: int, unit: int) -> str:
    whole, rest = divmod(value, unit)
    if not rest:
        return str(whole)
    digits = len(str(unit)) - 1
    return f"{whole}." + str(rest).zfill(digits).rstrip("0")


def _format_duration(duration: timedelta) -> str:
    nanos = (
        (duration.days * 86400 + duration.seconds) * _NANOS_PER_SECOND
        + duration.microseconds * 1000
    )
    if nanos == 0:
        return "0s"
    sign = "-" if nanos < 0 else ""
    nanos = abs(nanos)
    if nanos < 1_000:
        return f"{sign}{nanos}ns"
    if nanos < 1_000_000:
        return f"{sign}{_fraction(nanos, 1_000)}\u00b5s"
    if nanos < _NANOS_PER_SECOND:
        return f"{sign}{_fraction(nanos, 1_000_000)}ms"

    hours, rest = divmod(nanos, 3600 * _NANOS_PER_SECOND)
    minutes, rest = divmod(rest, 60 * _NANOS_PER_SECOND)
    text = f"{_fraction(rest, _NANOS_PER_SECOND)}s"
    if hours or minutes:
        text = f"{minutes}m" + text
    if hours:
        text = f"{hours}h" + text
    return sign + text


def _format_timestamp(moment: datetime) -> str:
    moment = moment.astimezone(timezone.utc)
    text = moment.strftime("%Y-%m-%dT%H:%M:%S")
    if moment.microsecond:
        text += "." + f"{moment.microsecond:06d}".rstrip("0")
    return text + "Z"


def format_access_log(
    method: str, path: str, status: int, ip: str, size: int, duration: timedelta
) -> str:
    """Format one access log line for a handled request."""
    return (
        f"time={_format_timestamp(datetime.now(timezone.utc))} "
        f"method={method} path={json.dumps(path)} status={status} "
        f"ip={ip} size={size} duration={_format_duration(duration)}\n"
    )


def _api_blueprint(handler: Handler, settings: Settings) -> Blueprint:
    api = Blueprint("api", __name__, url_prefix="/api")
    api.before_request(api_auth_guard(settings.auth_token))

    @api.post("/fetch")
    def fetch_videos() -> Response:
        try:
            handler.fetch_videos()
        except Exception as err:
            return _json(500, {"error": str(err)})
        return _json(200, {"msg": "videos fetched successfully"})

    @api.post("/channels/<channel_id>/subscribe")
    def subscribe(channel_id: str) -> Response:
        try:
            channel = handler.subscribe_to_channel(channel_id)
        except AlreadySubscribedError as err:
            return _json(409, {"error": str(err)})
        except InvalidChannelIDError as err:
            return _json(400, {"error": str(err)})
        except Exception as err:
            return _json(500, {"error": str(err)})
        return _json(200, channel.to_dict())

    @api.post("/channels/<channel_id>/unsubscribe")
    def unsubscribe(channel_id: str) -> Response:
        try:
            handler.unsubscribe_from_channel(channel_id)
        except ChannelNotFoundError as err:
            return _json(404, {"error": str(err)})
        except Exception as err:
            return _json(500, {"error": str(err)})
        return _json(200, {"msg": "unsubscribed from channel successfully"})

    @api.get("/videos/new")
    def new_videos() -> Response:
        try:
            videos = handler.get_new_videos(False)
        except Exception as err:
            return _json(500, {"error": str(err)})
        return _json(200, {"videos": [video.to_dict() for video in videos]})

    @api.get("/videos/watched")
    def watched_videos() -> Response:
        try:
            videos = handler.get_watched_videos(False, 1)
        except Exception as err:
            return _json(500, {"error": str(err)})
        return _json(200, {"videos": [video.to_dict() for video in videos]})

    @api.post("/videos/<video_id>/watch")
    def mark_watched(video_id: str) -> Response:
        try:
            handler.mark_video_as_watched(video_id)
        except Exception as err:
            return _json(500, {"error": str(err)})
        return _json(200, {"msg": "marked video as watched"})

    @api.post("/videos/<video_id>/unwatch")
    def mark_unwatched(video_id: str) -> Response:
        try:
            handler.mark_video_as_unwatched(video_id)
        except Exception as err:
            return _json(500, {"error": str(err)})
        return _json(200, {"msg": "cleared video from watch history"})

    @api.post("/videos/<video_id>/download")
    def download(video_id: str) -> Response:
        resolution = request.form.get("format", "")
        try:
            handler.download_video(video_id, resolution)
        except Exception as err:
            return _json(500, {"error": str(err)})
        return _json(200, {"msg": "download started"})

    return api


def create_app(handler: Handler, settings: Settings) -> Flask:
    """Build the Flask application with all pages and API routes."""
    app = Flask(
        __name__,
        static_folder=os.path.join(os.getcwd(), "assets"),
        static_url_path="/assets",
    )

    @app.before_request
    def _start_timer() -> None:
        g.request_started = time.monotonic()

    @app.after_request
    def _log_request(response: Response) -> Response:
        started = g.get("request_started", time.monotonic())
        elapsed = timedelta(seconds=time.monotonic() - started)
        line = format_access_log(
            request.method,
            request.path,
            response.status_code,
            request.remote_addr or "",
            response.content_length or 0,
            elapsed,
        )
        _access_log.info(line.rstrip("\n"))
        return response

    @app.errorhandler(404)
    def _not_found(_err: Exception) -> Response:
        return _json(404, {"error": "URL not found"})

    @app.errorhandler(405)
    def _method_not_allowed(_err: Exception) -> Response:
        return _json(405, {"error": "HTTP method not allowed"})

    @app.get("/healthz")
    def healthz() -> Response:
        return Response("healthy", status=200, mimetype="text/plain")

    app.register_blueprint(create_pages_blueprint(handler, settings))
    app.register_blueprint(_api_blueprint(handler, settings))
    return app