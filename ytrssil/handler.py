"""Application logic tying the store, feed parser, YouTube client and downloader together."""

from __future__ import annotations

import contextlib
import logging
import os
import re
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional, Protocol
from urllib.parse import parse_qs, unquote, urlsplit

from ytrssil.feedparser import FeedChannel, FeedParser, parse_date
from ytrssil.models import (
    Channel,
    ChannelExistsError,
    Settings,
    Video,
    VideoExistsError,
    VideoNotFoundError,
)
from ytrssil.store import Store

WATCHED_VIDEOS_PAGE_SIZE = 100

_log = logging.getLogger(__name__)

_FILENAME_DISALLOWED = re.compile(r"[^a-zA-Z0-9_\-.]")
_INTEGER = re.compile(r"[+-]?[0-9]+")
_DURATION_PART = re.compile(r"([0-9]*)(?:\.([0-9]*))?([^0-9.]*)")
_DURATION_UNITS = {
    "ns": 1,
    "us": 1_000,
    "\u00b5s": 1_000,
    "\u03bcs": 1_000,
    "ms": 1_000_000,
    "s": 1_000_000_000,
    "m": 60 * 1_000_000_000,
    "h": 3600 * 1_000_000_000,
}


class InvalidProgressError(ValueError):
    """Raised when a watch progress value cannot be applied."""


class YouTubeClient(Protocol):
    """Access to YouTube metadata."""

    def resolve_channel_id(self, handle: str) -> str: ...

    def get_channel_image_url(self, channel_id: str) -> str: ...

    def get_video_durations(self, videos: dict[str, Video]) -> None: ...

    def get_video_metadata(self, video_id: str) -> Video: ...


class Downloader(Protocol):
    """Downloads video files to disk."""

    def validate_installation(self) -> None: ...

    def download(self, video_id: str, title: str, downloads_dir: str, resolution: str) -> str: ...


@dataclass(frozen=True)
class VideoInput:
    """A video ID with an optional starting position taken from user input."""

    id: str
    progress_seconds: int = 0


def is_channel_id(value: str) -> bool:
    """Report whether the value looks like a raw YouTube channel ID."""
    return value.startswith("UC") and len(value.encode()) == 24


def sanitize_filename(title: str) -> str:
    """Turn a video title into a safe file name of at most 200 characters."""
    title = _FILENAME_DISALLOWED.sub("", title.replace(" ", "_"))
    return title[:200]


def _atoi(value: str, message: str) -> int:
    if not _INTEGER.fullmatch(value):
        raise ValueError(message)
    return int(value)


def _parse_duration(value: str) -> timedelta:
    text = value
    negative = False
    if text and text[0] in "+-":
        negative = text[0] == "-"
        text = text[1:]
    if text == "0":
        return timedelta(0)
    if not text:
        raise ValueError(f"invalid duration {value!r}")

    total_ns = 0
    pos = 0
    while pos < len(text):
        match = _DURATION_PART.match(text, pos)
        whole, fraction, unit = match.groups()
        if not whole and not fraction:
            raise ValueError(f"invalid duration {value!r}")
        if not unit:
            raise ValueError(f"missing unit in duration {value!r}")
        if unit not in _DURATION_UNITS:
            raise ValueError(f"unknown unit {unit!r} in duration {value!r}")
        scale = _DURATION_UNITS[unit]
        total_ns += int(whole or 0) * scale
        if fraction:
            total_ns += int(fraction) * scale // 10 ** len(fraction)
        pos = match.end()

    micros = total_ns // 1000
    return timedelta(microseconds=-micros if negative else micros)


def parse_time_progress(progress_time: str) -> timedelta:
    """Parse a duration written as a Go-style duration, hh:mm:ss or mm:ss."""
    with contextlib.suppress(ValueError):
        return _parse_duration(progress_time)

    parts = progress_time.split(":")
    if len(parts) == 2:
        message = "invalid mm:ss format"
        minutes, seconds = (_atoi(part, message) for part in parts)
        return timedelta(minutes=minutes, seconds=seconds)
    if len(parts) == 3:
        message = "invalid hh:mm:ss format"
        hours, minutes, seconds = (_atoi(part, message) for part in parts)
        return timedelta(hours=hours, minutes=minutes, seconds=seconds)

    raise ValueError("unsupported time format: expected Go duration, hh:mm:ss, or mm:ss")


def parse_video_input(value: str) -> VideoInput:
    """Extract a video ID and optional start time from an ID or a YouTube URL."""
    if "/" not in value:
        return VideoInput(id=value)

    try:
        parts = urlsplit(value)
    except ValueError as err:
        raise ValueError(f"invalid URL: {err}") from err

    host = parts.netloc.rpartition("@")[2]
    path = unquote(parts.path)
    query = parse_qs(parts.query, keep_blank_values=True)

    if host == "youtu.be":
        video_id = path.removeprefix("/")
    elif path.startswith("/live/"):
        video_id = path.removeprefix("/live/")
    else:
        video_id = query.get("v", [""])[0]

    if not video_id:
        raise ValueError("could not extract video ID from URL")

    progress = 0
    start = query.get("t", [""])[0]
    if start:
        progress = _atoi(start, f"invalid t parameter: {start!r}")

    return VideoInput(id=video_id, progress_seconds=progress)


def _file_extension(path: str) -> str:
    base = re.split(r"[/\\]", path)[-1] if os.sep == "\\" else path.rsplit("/", 1)[-1]
    index = base.rfind(".")
    return base[index:] if index >= 0 else ""


class Handler:
    """Operations on channels and videos used by the web layer."""

    def __init__(
        self,
        store: Store,
        parser: FeedParser,
        youtube: YouTubeClient,
        downloader: Optional[Downloader],
        settings: Settings,
    ) -> None:
        self.store = store
        self.parser = parser
        self.youtube = youtube
        self.downloader = downloader
        self.settings = settings

    # Channels

    def subscribe_to_channel(self, channel_id: str) -> Channel:
        """Subscribe to a channel given by ID or handle."""
        if not is_channel_id(channel_id):
            handle = channel_id if channel_id.startswith("@") else "@" + channel_id
            channel_id = self.youtube.resolve_channel_id(handle)

        parsed = self.parser.parse(channel_id)

        try:
            image_url = self.youtube.get_channel_image_url(channel_id)
        except Exception as err:
            _log.warning("Failed to fetch channel image URL for %s: %s", channel_id, err)
            image_url = ""

        channel = Channel(
            id=channel_id,
            name=parsed.name,
            subscribed=True,
            image_url=image_url,
            enable_shorts=True,
        )
        with contextlib.suppress(ChannelExistsError):
            self.store.subscribe_to_channel(channel)
        return channel

    def unsubscribe_from_channel(self, channel_id: str) -> None:
        """Stop following a channel."""
        self.store.unsubscribe_from_channel(channel_id)

    def list_channels(self) -> list[Channel]:
        """List subscribed channels."""
        return self.store.list_channels()

    def get_channel_by_id(self, channel_id: str) -> Channel:
        """Return a channel by its ID."""
        return self.store.get_channel_by_id(channel_id)

    def toggle_channel_shorts(self, channel_id: str, enable_shorts: bool) -> None:
        """Enable or disable shorts for a channel."""
        self.store.toggle_channel_shorts(channel_id, enable_shorts)

    # Videos

    def get_new_videos(self, sort_desc: bool) -> list[Video]:
        """Return unwatched videos."""
        return self.store.get_new_videos(sort_desc)

    def get_watched_videos(self, sort_desc: bool, page: int) -> list[Video]:
        """Return one page of watched videos; pages start at 1."""
        page = max(page, 1)
        offset = (page - 1) * WATCHED_VIDEOS_PAGE_SIZE
        return self.store.get_watched_videos(sort_desc, WATCHED_VIDEOS_PAGE_SIZE, offset)

    def _add_videos_for_channel(self, parsed: FeedChannel, enable_shorts: bool) -> None:
        videos: dict[str, Video] = {}
        for entry in parsed.videos:
            try:
                published = parse_date(entry.published)
                video_id = entry.id.split(":")[2]
            except (ValueError, IndexError) as err:
                _log.error("Failed to parse video information: %s", err)
                continue

            try:
                exists = self.store.has_video(video_id)
            except Exception as err:
                _log.error("Failed to check if video already exists: %s", err)
                continue
            if exists:
                continue

            videos[video_id] = Video(
                id=video_id,
                title=entry.title,
                published_time=published,
                is_short=entry.is_short,
            )

        if not videos:
            return

        try:
            self.youtube.get_video_durations(videos)
        except Exception as err:
            _log.error("Failed to get video durations: %s", err)
            return

        for video in videos.values():
            is_discarded = video.is_short and not enable_shorts
            try:
                self.store.add_video(video, parsed.id, is_discarded)
            except VideoExistsError:
                continue
            except Exception as err:
                _log.error("Failed to save video to db: %s", err)

    def fetch_videos(self) -> None:
        """Fetch feeds of all subscribed channels and store new videos."""
        _log.info("Fetching new videos for all channels")
        channels = self.store.list_channels()

        if channels:
            with ThreadPoolExecutor(max_workers=min(len(channels), 32)) as pool:
                futures = {
                    pool.submit(self.parser.parse, channel.id): channel.enable_shorts
                    for channel in channels
                }
                for future in as_completed(futures):
                    try:
                        parsed = future.result()
                    except Exception as err:
                        _log.error("failed to parse channel feed: %s", err)
                        continue
                    self._add_videos_for_channel(parsed, futures[future])

        self._recheck_live_videos()

    def _recheck_live_videos(self) -> None:
        try:
            live_videos = self.store.get_live_videos()
        except Exception as err:
            _log.error("Failed to get live videos: %s", err)
            return
        if not live_videos:
            return

        videos = {video.id: video for video in live_videos}
        try:
            self.youtube.get_video_durations(videos)
        except Exception as err:
            _log.error("Failed to recheck live video durations: %s", err)
            return

        for video in videos.values():
            if video.is_live:
                continue
            try:
                self.store.update_video_live_status(video.id, False, video.duration_seconds)
            except Exception as err:
                _log.error("Failed to update video live status for %s: %s", video.id, err)

    def mark_video_as_watched(self, video_id: str) -> None:
        """Record that a video was watched now."""
        self.store.set_video_watch_time(video_id, datetime.now(timezone.utc))

    def mark_video_as_unwatched(self, video_id: str) -> None:
        """Clear the watch time of a video."""
        self.store.set_video_watch_time(video_id, None)

    def set_video_progress(self, video_id: str, progress_time: str) -> Video:
        """Set the watch progress of a video from a textual duration."""
        try:
            progress = parse_time_progress(progress_time)
        except ValueError as err:
            raise InvalidProgressError(f"invalid progress time: {err}") from err

        try:
            return self.store.set_video_progress(video_id, int(progress.total_seconds()))
        except Exception as err:
            raise InvalidProgressError(f"invalid progress time: {err}") from err

    def add_custom_video(self, raw_video_id: str) -> None:
        """Add a single video, given by ID or URL, from any channel."""
        video_input = parse_video_input(raw_video_id)

        if self.store.has_video(video_input.id):
            _log.warning("Video already in db")
            return

        video = self.youtube.get_video_metadata(video_input.id)
        channel = Channel(
            id=video.channel_id,
            name=video.channel_name,
            subscribed=False,
            enable_shorts=True,
        )
        self.store.subscribe_to_channel(channel)

        with contextlib.suppress(VideoExistsError):
            self.store.add_video(video, video.channel_id, False)

        if video_input.progress_seconds > 0:
            self.store.set_video_progress(video_input.id, video_input.progress_seconds)

    # Downloads

    def download_video(self, video_id: str, resolution: str) -> threading.Thread:
        """Queue a download of a video; returns the thread doing the work."""
        try:
            exists = self.store.has_video(video_id)
        except Exception as err:
            raise RuntimeError(f"failed to check video existence: {err}") from err
        if not exists:
            raise VideoNotFoundError("video not found")

        try:
            self.store.set_video_download_status(video_id, "pending")
        except Exception as err:
            raise RuntimeError(f"failed to set download status: {err}") from err

        worker = threading.Thread(
            target=self._perform_download, args=(video_id, resolution), daemon=True
        )
        worker.start()
        return worker

    def _mark_failed(self, video_id: str, message: str) -> None:
        try:
            self.store.set_video_download_failed(video_id, message)
        except Exception as err:
            _log.error("Failed to update download status to failed for %s: %s", video_id, err)

    def _perform_download(self, video_id: str, resolution: str) -> None:
        try:
            video = self.store.get_video(video_id)
        except Exception as err:
            _log.error("Failed to get video %s for download: %s", video_id, err)
            self._mark_failed(video_id, "Failed to get video info")
            return

        try:
            self.store.set_video_download_status(video_id, "downloading")
        except Exception as err:
            _log.error("Failed to update download status to downloading for %s: %s", video_id, err)
            return

        _log.info("Starting video download of %s (%s) at %s", video_id, video.title, resolution)

        if self.downloader is None:
            self._mark_failed(video_id, "no downloader configured")
            return
        try:
            file_path = self.downloader.download(
                video_id, video.title, self.settings.downloads_dir, resolution
            )
        except Exception as err:
            _log.error("Video download failed for %s: %s", video_id, err)
            self._mark_failed(video_id, str(err))
            return

        try:
            self.store.set_video_download_completed(video_id, file_path)
        except Exception as err:
            _log.error("Failed to mark video %s as downloaded: %s", video_id, err)
            with contextlib.suppress(OSError):
                os.remove(file_path)
            self._mark_failed(video_id, "Failed to update database")
            return

        _log.info("Video %s downloaded successfully to %s", video_id, file_path)

    def serve_video_file(self, video_id: str) -> tuple[str, str]:
        """Return the path of a downloaded video and the file name to offer it as."""
        try:
            video = self.store.get_video(video_id)
        except Exception as err:
            raise VideoNotFoundError(f"video not found: {err}") from err

        if video.file_path is None:
            raise FileNotFoundError("video not downloaded")

        try:
            os.stat(video.file_path)
        except FileNotFoundError:
            with contextlib.suppress(Exception):
                self.store.delete_video_file(video_id)
            raise FileNotFoundError("file not found on disk") from None

        title = sanitize_filename(video.title) or video_id
        return video.file_path, title + _file_extension(video.file_path)

    # Cleanup

    def perform_cleanup(self) -> None:
        """Delete downloaded files of videos watched longer ago than the cleanup age."""
        try:
            videos = self.store.get_videos_for_cleanup(self.settings.cleanup_age)
        except Exception as err:
            _log.error("Failed to get videos for cleanup: %s", err)
            return

        for video in videos:
            if video.file_path is None:
                continue
            _log.info("Cleaning up file %s of video %s", video.file_path, video.id)
            try:
                os.remove(video.file_path)
            except FileNotFoundError:
                _log.warning("File %s already deleted, cleaning DB entry", video.file_path)
            except OSError as err:
                _log.error("Failed to delete file %s: %s", video.file_path, err)
                continue

            try:
                self.store.delete_video_file(video.id)
            except Exception as err:
                _log.error("Failed to update DB after cleanup of %s: %s", video.id, err)

        if videos:
            _log.info("Cleanup completed, %d files deleted", len(videos))

    def cleanup_routine(self, stop_event: threading.Event) -> None:
        """Run cleanup periodically until the stop event is set."""
        interval = self.settings.cleanup_interval.total_seconds()
        _log.info(
            "Starting cleanup routine, interval %s, age %s",
            self.settings.cleanup_interval,
            self.settings.cleanup_age,
        )
        while not stop_event.wait(interval):
            self.perform_cleanup()
        _log.info("Cleanup stopped")