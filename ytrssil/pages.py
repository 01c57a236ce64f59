"""HTML pages, fragments and server-sent events for the browser interface."""

from __future__ import annotations

import json
import os
import re
from datetime import datetime
from html import escape as _escape
from typing import Any, Iterable, Optional

from flask import Blueprint, Request, Response, redirect, request, send_file

from ytrssil.auth import page_auth_guard
from ytrssil.handler import WATCHED_VIDEOS_PAGE_SIZE, Handler
from ytrssil.models import Channel, ChannelNotFoundError, Settings, Video

_COOKIE_MAX_AGE = 60 * 60 * 24 * 30
_INTEGER = re.compile(r"[+-]?[0-9]+")
_SSE_EVENT = "datastar-patch-elements"


def _e(value: object) -> str:
    return _escape(str(value), quote=True)


def _js_action(verb: str, url: str) -> str:
    return _e(f"@{verb}({json.dumps(url)})")


def _format_seconds(total: int) -> str:
    hours, rest = divmod(max(total, 0), 3600)
    minutes, seconds = divmod(rest, 60)
    if hours:
        return f"{hours}:{minutes:02d}:{seconds:02d}"
    return f"{minutes}:{seconds:02d}"


def _format_time(value: Optional[datetime]) -> str:
    return value.strftime("%Y-%m-%d %H:%M") if value is not None else ""


def _head(title: str) -> str:
    return (
        "<!DOCTYPE html>\n"
        '<html lang="en">\n'
        "<head>\n"
        '<meta charset="utf-8">\n'
        '<meta name="viewport" content="width=device-width, initial-scale=1">\n'
        f"<title>{_e(title)} - ytrssil</title>\n"
        '<link rel="stylesheet" href="/assets/css/bootstrap.min.css">\n'
        '<script src="/assets/js/bootstrap.bundle.min.js"></script>\n'
        '<script type="module" src="/assets/js/datastar.js"></script>\n'
        '<script src="/assets/js/app.js"></script>\n'
        "</head>\n"
    )


def _layout(title: str, body: str) -> str:
    nav = (
        '<nav class="navbar navbar-expand bg-body-tertiary mb-3">\n'
        '<div class="container-fluid">\n'
        '<a class="navbar-brand" href="/">ytrssil</a>\n'
        '<ul class="navbar-nav me-auto">\n'
        '<li class="nav-item"><a class="nav-link" href="/">New</a></li>\n'
        '<li class="nav-item"><a class="nav-link" href="/watched">Watched</a></li>\n'
        '<li class="nav-item"><a class="nav-link" href="/channels">Channels</a></li>\n'
        "</ul>\n"
        f'<button class="btn btn-outline-primary" data-on:click="{_js_action("post", "/fetch")}">'
        "Fetch</button>\n"
        "</div>\n"
        "</nav>\n"
    )
    return (
        _head(title)
        + "<body>\n"
        + nav
        + '<main class="container">\n'
        + f"<h1>{_e(title)}</h1>\n"
        + body
        + "</main>\n</body>\n</html>\n"
    )


def _modal(modal_id: str, title: str, signal: str, label: str, action: str) -> str:
    return (
        f'<div class="modal fade" id="{_e(modal_id)}" tabindex="-1">\n'
        '<div class="modal-dialog"><div class="modal-content">\n'
        f'<form data-on:submit__prevent="{_js_action("post", action)}">\n'
        f'<div class="modal-header"><h5 class="modal-title">{_e(title)}</h5></div>\n'
        '<div class="modal-body">\n'
        f'<label class="form-label">{_e(label)}</label>\n'
        f'<input class="form-control" type="text" data-bind="{_e(signal)}">\n'
        '<div class="form-error text-danger"></div>\n'
        "</div>\n"
        '<div class="modal-footer">'
        '<button type="button" class="btn btn-secondary" data-bs-dismiss="modal">Cancel</button>'
        '<button type="submit" class="btn btn-primary">Save</button>'
        "</div>\n"
        "</form>\n"
        "</div></div>\n"
        "</div>\n"
    )


def _modal_button(modal_id: str, label: str) -> str:
    return (
        f'<button class="btn btn-primary mb-3" data-bs-toggle="modal" '
        f'data-bs-target="#{_e(modal_id)}">{_e(label)}</button>\n'
    )


def render_auth_page(error: str) -> str:
    """Render the login page, with an optional error message."""
    alert = f'<div class="alert alert-danger">{_e(error)}</div>\n' if error else ""
    return (
        _head("Authentication")
        + "<body>\n"
        + '<main class="container" style="max-width: 28rem">\n'
        + '<h1 class="my-4">Authentication</h1>\n'
        + alert
        + '<form method="post" action="/auth">\n'
        + '<label class="form-label" for="token">Token</label>\n'
        + '<input class="form-control mb-3" type="password" id="token" name="token">\n'
        + '<button class="btn btn-primary" type="submit">Log in</button>\n'
        + "</form>\n"
        + "</main>\n</body>\n</html>\n"
    )


def render_channel_card(channel: Channel) -> str:
    """Render the card of one channel."""
    toggle_url = f"/channels/{channel.id}/toggle-shorts"
    unsubscribe_url = f"/channels/{channel.id}/unsubscribe"
    image = (
        f'<img class="card-img-top" src="{_e(channel.image_url)}" alt="{_e(channel.name)}">\n'
        if channel.image_url
        else ""
    )
    checked = " checked" if channel.enable_shorts else ""
    toggle_action = _e(f"$enable = el.checked; @post({json.dumps(toggle_url)})")
    return (
        f'<div class="col" id="channel-card-{_e(channel.id)}">\n'
        '<div class="card h-100">\n'
        + image
        + '<div class="card-body">\n'
        f'<h5 class="card-title">{_e(channel.name)}</h5>\n'
        f'<p class="card-text">{channel.unwatched_count} unwatched</p>\n'
        '<div class="form-check form-switch">\n'
        f'<input class="form-check-input" type="checkbox" id="shorts-{_e(channel.id)}"'
        f'{checked} data-on:change="{toggle_action}">\n'
        f'<label class="form-check-label" for="shorts-{_e(channel.id)}">Shorts</label>\n'
        "</div>\n"
        "</div>\n"
        '<div class="card-footer">\n'
        f'<button class="btn btn-sm btn-outline-danger" '
        f'data-on:click="{_js_action("post", unsubscribe_url)}">Unsubscribe</button>\n'
        "</div>\n"
        "</div>\n"
        "</div>\n"
    )


def render_channels_page(channels: Iterable[Channel]) -> str:
    """Render the list of subscribed channels."""
    cards = "".join(render_channel_card(channel) for channel in channels)
    content = (
        f'<div class="row row-cols-1 row-cols-md-4 g-3">\n{cards}</div>\n'
        if cards
        else "<p>No subscribed channels.</p>\n"
    )
    body = (
        _modal_button("subscription-modal", "Subscribe")
        + _modal("subscription-modal", "Subscribe to channel", "channelID",
                 "Channel ID or handle", "/subscribe")
        + content
    )
    return _layout("Channels", body)


def _download_section(video: Video) -> str:
    status = video.download_status
    if status == "completed" and video.file_path:
        return (
            f'<a class="btn btn-sm btn-success" href="/videos/{_e(video.id)}/file">'
            "Download file</a>\n"
        )
    if status in ("pending", "downloading"):
        return f'<span class="badge text-bg-info">{_e(status)}</span>\n'
    error = ""
    if status == "failed":
        error = f'<div class="text-danger small">{_e(video.download_error or "failed")}</div>\n'
    download_url = f"/videos/{video.id}/download"
    action = _e(f"@post({json.dumps(download_url)}, {{contentType: 'form'}})")
    return (
        error
        + f'<form class="d-flex gap-1" data-on:submit__prevent="{action}">\n'
        '<select class="form-select form-select-sm" name="format">\n'
        '<option value="1080">1080p</option>\n'
        '<option value="720">720p</option>\n'
        '<option value="480">480p</option>\n'
        "</select>\n"
        '<button class="btn btn-sm btn-outline-secondary" type="submit">Download</button>\n'
        "</form>\n"
    )


def render_video_card(video: Video) -> str:
    """Render the card of one video."""
    if video.is_live:
        duration = '<span class="badge text-bg-danger">LIVE</span>'
    else:
        duration = _e(_format_seconds(video.duration_seconds))
    badges = ' <span class="badge text-bg-warning">Short</span>' if video.is_short else ""
    progress = (
        f'<p class="card-text small">Progress: {_e(_format_seconds(video.progress_seconds))}</p>\n'
        if video.progress_seconds > 0
        else ""
    )
    if video.watch_time is None:
        watch_button = (
            f'<button class="btn btn-sm btn-primary" '
            f'data-on:click="{_js_action("patch", f"/videos/{video.id}/watch")}">Watched</button>\n'
        )
    else:
        watch_button = (
            f'<button class="btn btn-sm btn-outline-primary" '
            f'data-on:click="{_js_action("patch", f"/videos/{video.id}/unwatch")}">Unwatch</button>\n'
        )
    watch_url = "https://www.youtube.com/watch?v=" + video.id
    if video.progress_seconds > 0:
        watch_url += f"&t={video.progress_seconds}"
    return (
        f'<div class="col" id="video-card-{_e(video.id)}">\n'
        '<div class="card h-100">\n'
        '<div class="card-body">\n'
        f'<h5 class="card-title"><a href="{_e(watch_url)}" target="_blank">'
        f"{_e(video.title)}</a>{badges}</h5>\n"
        f'<p class="card-text">{_e(video.channel_name)}</p>\n'
        f'<p class="card-text small">{_e(_format_time(video.published_time))} &middot; {duration}</p>\n'
        + progress
        + f'<form class="d-flex gap-1 mb-2" '
        f'data-on:submit__prevent="{_js_action("patch", f"/videos/{video.id}/progress")}">\n'
        '<input class="form-control form-control-sm" type="text" '
        'placeholder="mm:ss" data-bind="progress">\n'
        '<button class="btn btn-sm btn-outline-secondary" type="submit">Set</button>\n'
        "</form>\n"
        + _download_section(video)
        + "</div>\n"
        '<div class="card-footer">\n'
        + watch_button
        + "</div>\n"
        "</div>\n"
        "</div>\n"
    )


def _video_grid(videos: Iterable[Video], empty: str) -> str:
    cards = "".join(render_video_card(video) for video in videos)
    if not cards:
        return f"<p>{_e(empty)}</p>\n"
    return f'<div class="row row-cols-1 row-cols-md-3 g-3">\n{cards}</div>\n'


def render_new_videos_page(videos: list[Video]) -> str:
    """Render the list of unwatched videos."""
    body = (
        _modal_button("add-video-modal", "Add video")
        + _modal("add-video-modal", "Add video", "videoID", "Video ID or URL", "/videos")
        + _video_grid(videos, "No new videos.")
    )
    return _layout("New videos", body)


def render_watched_videos_page(videos: list[Video], page: int) -> str:
    """Render one page of watched videos with pagination links."""
    links = []
    if page > 1:
        links.append(f'<a class="btn btn-outline-secondary" href="/watched?page={page - 1}">Previous</a>')
    if len(videos) >= WATCHED_VIDEOS_PAGE_SIZE:
        links.append(f'<a class="btn btn-outline-secondary" href="/watched?page={page + 1}">Next</a>')
    pagination = (
        f'<div class="d-flex gap-2 my-3">{"".join(links)}<span>Page {page}</span></div>\n'
    )
    return _layout("Watched videos", _video_grid(videos, "No watched videos.") + pagination)


def _patch_event(
    fragment: str, selector: Optional[str] = None, mode: Optional[str] = None
) -> str:
    lines = [f"event: {_SSE_EVENT}"]
    if selector:
        lines.append(f"data: selector {selector}")
    if mode:
        lines.append(f"data: mode {mode}")
    lines.extend(f"data: elements {line}" for line in fragment.split("\n"))
    return "\n".join(lines) + "\n\n"


def sse_patch_elements(html: str) -> str:
    """Return a server-sent event that patches the given HTML into the page."""
    return _patch_event(html)


def sse_execute_script(script: str) -> str:
    """Return a server-sent event that runs the script once in the browser."""
    element = f'<script data-effect="el.remove()">{script}</script>'
    return _patch_event(element, selector="body", mode="append")


def _sse_response(*events: str) -> Response:
    return Response(
        "".join(events),
        status=200,
        mimetype="text/event-stream",
        headers={"Cache-Control": "no-cache"},
    )


def _html_error(status: int, message: str) -> Response:
    return Response(message, status=status, content_type="text/html")


def read_signals(request: Request) -> dict[str, Any]:
    """Read the client signals sent with a request."""
    if request.method == "GET":
        raw = request.args.get("datastar", "")
        if not raw:
            return {}
    else:
        raw = request.get_data(as_text=True)
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as err:
        raise ValueError(f"failed to parse signals: {err}") from err
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError("signals must be a JSON object")
    return data


def _signal(signals: dict[str, Any], key: str, kind: type, default: Any) -> Any:
    value = signals.get(key)
    if value is None:
        return default
    if kind is bool:
        valid = isinstance(value, bool)
    else:
        valid = isinstance(value, kind) and not isinstance(value, bool)
    if not valid:
        raise ValueError(f"signal {key!r} must be of type {kind.__name__}")
    return value


def _form_error(modal_id: str, message: str) -> Response:
    return _sse_response(
        sse_execute_script(f"showFormError({json.dumps(modal_id)}, {json.dumps(message)})")
    )


def _find_video(videos: Iterable[Video], video_id: str) -> Optional[Video]:
    return next((video for video in videos if video.id == video_id), None)


def create_pages_blueprint(handler: Handler, settings: Settings) -> Blueprint:
    """Create the blueprint serving the browser interface."""
    pages = Blueprint("pages", __name__)
    protected = Blueprint("protected", __name__)
    protected.before_request(page_auth_guard(settings.auth_token))

    @pages.get("/auth")
    def auth_page() -> Response:
        return Response(render_auth_page(""), status=200, mimetype="text/html")

    @pages.post("/auth")
    def handle_auth() -> Response:
        token = request.form.get("token", "")
        if token != settings.auth_token:
            return Response(render_auth_page("Invalid token"), status=400, mimetype="text/html")
        response = redirect("/", 302)
        response.set_cookie(
            "token",
            token,
            max_age=_COOKIE_MAX_AGE,
            path="/",
            secure=not settings.dev,
            httponly=True,
        )
        return response

    @protected.post("/fetch")
    def fetch_videos() -> Response:
        try:
            handler.fetch_videos()
        except Exception as err:
            return _html_error(500, str(err))
        return _sse_response(sse_execute_script("window.location.reload()"))

    @protected.get("/")
    def new_videos() -> Response:
        try:
            videos = handler.get_new_videos(True)
        except Exception as err:
            return _html_error(500, str(err))
        return Response(render_new_videos_page(videos), status=200, mimetype="text/html")

    @protected.get("/watched")
    def watched_videos() -> Response:
        page = 1
        raw_page = request.args.get("page", "")
        if _INTEGER.fullmatch(raw_page) and int(raw_page) > 0:
            page = int(raw_page)
        try:
            videos = handler.get_watched_videos(True, page)
        except Exception as err:
            return _html_error(500, str(err))
        return Response(
            render_watched_videos_page(videos, page), status=200, mimetype="text/html"
        )

    @protected.get("/channels")
    def channels() -> Response:
        try:
            found = handler.list_channels()
        except Exception as err:
            return _html_error(500, str(err))
        return Response(render_channels_page(found), status=200, mimetype="text/html")

    @protected.post("/subscribe")
    def subscribe() -> Response:
        try:
            channel_id = _signal(read_signals(request), "channelID", str, "")
        except ValueError as err:
            return _form_error("subscription-modal", str(err))
        try:
            handler.subscribe_to_channel(channel_id)
        except Exception as err:
            return _form_error("subscription-modal", str(err))
        return _sse_response(
            sse_execute_script(
                'bootstrap.Modal.getInstance(document.getElementById("subscription-modal")).hide();\n'
                "location.reload()"
            )
        )

    @protected.post("/channels/<channel_id>/unsubscribe")
    def unsubscribe(channel_id: str) -> Response:
        try:
            handler.unsubscribe_from_channel(channel_id)
        except ChannelNotFoundError as err:
            return _html_error(404, str(err))
        except Exception as err:
            return _html_error(500, str(err))
        return _sse_response(sse_execute_script(f'animateRemove("#channel-card-{channel_id}")'))

    @protected.post("/channels/<channel_id>/toggle-shorts")
    def toggle_shorts(channel_id: str) -> Response:
        try:
            enable = _signal(read_signals(request), "enable", bool, False)
        except ValueError as err:
            return _html_error(400, str(err))
        try:
            handler.toggle_channel_shorts(channel_id, enable)
        except ChannelNotFoundError as err:
            return _html_error(404, str(err))
        except Exception as err:
            return _html_error(500, str(err))
        try:
            channel = handler.get_channel_by_id(channel_id)
        except Exception as err:
            return _html_error(500, str(err))
        return _sse_response(sse_patch_elements(render_channel_card(channel)))

    @protected.post("/videos")
    def add_video() -> Response:
        try:
            video_id = _signal(read_signals(request), "videoID", str, "")
        except ValueError as err:
            return _form_error("add-video-modal", str(err))
        if not video_id:
            return _form_error("add-video-modal", "missing video ID")
        try:
            handler.add_custom_video(video_id)
        except Exception as err:
            return _form_error("add-video-modal", str(err))
        return _sse_response(
            sse_execute_script(
                'bootstrap.Modal.getInstance(document.getElementById("add-video-modal")).hide(); '
                "location.reload()"
            )
        )

    @protected.patch("/videos/<video_id>/watch")
    def mark_watched(video_id: str) -> Response:
        try:
            handler.mark_video_as_watched(video_id)
        except Exception as err:
            return _html_error(500, str(err))
        return _sse_response(sse_execute_script(f'animateRemove("#video-card-{video_id}")'))

    @protected.patch("/videos/<video_id>/unwatch")
    def mark_unwatched(video_id: str) -> Response:
        try:
            handler.mark_video_as_unwatched(video_id)
        except Exception as err:
            return _html_error(500, str(err))
        return _sse_response(sse_execute_script(f'animateRemove("#video-card-{video_id}")'))

    @protected.patch("/videos/<video_id>/progress")
    def set_progress(video_id: str) -> Response:
        try:
            progress = _signal(read_signals(request), "progress", str, "")
        except ValueError as err:
            return _html_error(400, str(err))
        if not progress:
            return _html_error(400, "missing progress")
        try:
            video = handler.set_video_progress(video_id, progress)
        except Exception as err:
            return _html_error(500, str(err))
        return _sse_response(sse_patch_elements(render_video_card(video)))

    @protected.post("/videos/<video_id>/download")
    def download(video_id: str) -> Response:
        resolution = request.form.get("format", "")
        try:
            handler.download_video(video_id, resolution)
            videos = handler.get_new_videos(True)
        except Exception as err:
            return _html_error(500, str(err))
        video = _find_video(videos, video_id)
        if video is None:
            return _html_error(404, "video not found")
        return Response(render_video_card(video), status=200, mimetype="text/html")

    @protected.get("/videos/<video_id>/card")
    def video_card(video_id: str) -> Response:
        try:
            videos = handler.get_new_videos(True)
        except Exception as err:
            return _html_error(500, str(err))
        video = _find_video(videos, video_id)
        if video is None:
            return _html_error(404, "video not found")
        return _sse_response(sse_patch_elements(render_video_card(video)))

    @protected.get("/videos/<video_id>/file")
    def video_file(video_id: str) -> Response:
        try:
            file_path, filename = handler.serve_video_file(video_id)
        except Exception as err:
            return _html_error(404, str(err))
        response = send_file(os.path.abspath(file_path))
        response.headers["Content-Disposition"] = f"attachment; filename={json.dumps(filename)}"
        return response

    pages.register_blueprint(protected)
    return pages