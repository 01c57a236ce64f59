"""Command line entry point that runs the web service and background routines."""

from __future__ import annotations

import argparse
import logging
import os
import signal
import sqlite3
import sys
import threading
import time
from datetime import timedelta
from socketserver import ThreadingMixIn
from typing import Optional, Sequence
from wsgiref.simple_server import WSGIRequestHandler, WSGIServer, make_server

from ytrssil.feedparser import FeedParser
from ytrssil.handler import Handler, parse_time_progress
from ytrssil.models import Settings, Video
from ytrssil.store import Store
from ytrssil.web import create_app

_log = logging.getLogger("ytrssil")

_FEED_TIMEOUT = 30.0


class _ThreadingWSGIServer(ThreadingMixIn, WSGIServer):
    daemon_threads = True


class _QuietRequestHandler(WSGIRequestHandler):
    def log_message(self, format: str, *args: object) -> None:  # noqa: A002
        pass


class _FeedOnlyYouTubeClient:
    """Stand-in used when no YouTube API client is available.

    Feeds still work; durations stay unknown and metadata lookups fail.
    """

    def resolve_channel_id(self, handle: str) -> str:
        raise RuntimeError(f"cannot resolve channel handle {handle}: YouTube API unavailable")

    def get_channel_image_url(self, channel_id: str) -> str:
        return ""

    def get_video_durations(self, videos: dict[str, Video]) -> None:
        return None

    def get_video_metadata(self, video_id: str) -> Video:
        raise RuntimeError(f"cannot get metadata of video {video_id}: YouTube API unavailable")


def _duration(text: str) -> timedelta:
    try:
        value = parse_time_progress(text)
    except ValueError as err:
        raise argparse.ArgumentTypeError(str(err)) from err
    if value <= timedelta(0):
        raise argparse.ArgumentTypeError(f"duration must be positive: {text!r}")
    return value


def _env_flag(name: str) -> bool:
    return os.environ.get(name, "").strip().lower() in ("1", "true", "yes", "on")


def parse_settings(argv: Optional[Sequence[str]] = None) -> Settings:
    """Build settings from command line arguments and YTRSSIL_* environment variables."""
    defaults = Settings()
    env = os.environ.get
    parser = argparse.ArgumentParser(prog="ytrssil", description="YouTube subscription tracker")
    parser.add_argument("--db-path", default=env("YTRSSIL_DB_PATH", defaults.db_path))
    parser.add_argument(
        "--youtube-api-key", default=env("YTRSSIL_YOUTUBE_API_KEY", defaults.youtube_api_key)
    )
    parser.add_argument("--auth-token", default=env("YTRSSIL_AUTH_TOKEN", defaults.auth_token))
    parser.add_argument("--port", type=int, default=env("YTRSSIL_PORT", str(defaults.port)))
    parser.add_argument("--dev", action="store_true", default=_env_flag("YTRSSIL_DEV"))
    parser.add_argument(
        "--fetch-interval", type=_duration, default=env("YTRSSIL_FETCH_INTERVAL"),
    )
    parser.add_argument(
        "--cleanup-interval", type=_duration, default=env("YTRSSIL_CLEANUP_INTERVAL"),
    )
    parser.add_argument("--cleanup-age", type=_duration, default=env("YTRSSIL_CLEANUP_AGE"))
    parser.add_argument(
        "--downloads-dir", default=env("YTRSSIL_DOWNLOADS_DIR", defaults.downloads_dir)
    )
    args = parser.parse_args(argv)

    return Settings(
        db_path=args.db_path,
        youtube_api_key=args.youtube_api_key,
        auth_token=args.auth_token,
        port=args.port,
        dev=args.dev,
        fetch_interval=args.fetch_interval or defaults.fetch_interval,
        cleanup_interval=args.cleanup_interval or defaults.cleanup_interval,
        cleanup_age=args.cleanup_age or defaults.cleanup_age,
        downloads_dir=args.downloads_dir,
    )


def fetcher_routine(handler: Handler, interval: timedelta, stop_event: threading.Event) -> None:
    """Fetch new videos every interval until the stop event is set."""
    seconds = interval.total_seconds()
    while not stop_event.wait(seconds):
        try:
            handler.fetch_videos()
        except Exception as err:
            _log.error("Failed to fetch videos: %s", err)
    _log.info("Fetcher stopped")


def _configure_logging() -> None:
    formatter = logging.Formatter("time=%(asctime)s level=%(levelname)s msg=%(message)s")
    formatter.converter = time.gmtime
    stream = logging.StreamHandler(sys.stdout)
    stream.setFormatter(formatter)
    root = logging.getLogger()
    root.handlers[:] = [stream]
    root.setLevel(logging.INFO)


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Run the service until a termination signal arrives."""
    _configure_logging()
    settings = parse_settings(argv)

    _log.info("Running migrations")
    try:
        store = Store(settings.db_path)
    except sqlite3.Error as err:
        _log.error("Failed to open database: %s", err)
        return 1
    try:
        store.migrate()
    except sqlite3.Error as err:
        _log.error("Failed to run migrations: %s", err)
        store.close()
        return 1

    with store:
        parser = FeedParser(timeout=_FEED_TIMEOUT)
        handler = Handler(store, parser, _FeedOnlyYouTubeClient(), None, settings)
        app = create_app(handler, settings)
        app.debug = settings.dev

        try:
            server = make_server(
                "",
                settings.port,
                app,
                server_class=_ThreadingWSGIServer,
                handler_class=_QuietRequestHandler,
            )
        except OSError as err:
            _log.error("Failed to start server: %s", err)
            return 1

        shutdown = threading.Event()

        def on_signal(signum: int, _frame: object) -> None:
            _log.info("Received signal %s, shutting down", signal.Signals(signum).name)
            shutdown.set()

        for name in ("SIGINT", "SIGTERM", "SIGHUP"):
            sig = getattr(signal, name, None)
            if sig is not None:
                signal.signal(sig, on_signal)

        stop_workers = threading.Event()
        workers = []
        if not settings.dev:
            workers.append(threading.Thread(
                target=fetcher_routine,
                args=(handler, settings.fetch_interval, stop_workers),
                daemon=True,
            ))
            workers.append(threading.Thread(
                target=handler.cleanup_routine, args=(stop_workers,), daemon=True
            ))
        server_thread = threading.Thread(target=server.serve_forever, daemon=True)

        _log.info("ytrssil API is starting up on port %d", settings.port)
        for worker in (*workers, server_thread):
            worker.start()

        while not shutdown.wait(1.0):
            pass

        server.shutdown()
        server.server_close()
        stop_workers.set()
        for worker in (*workers, server_thread):
            worker.join()

    _log.info("exit complete")
    return 0


if __name__ == "__main__":
    sys.exit(main())