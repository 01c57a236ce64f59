"""Core data types and errors shared across the application."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Optional


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


class ChannelExistsError(Exception):
    """Raised when a channel is already stored."""

    def __init__(self, message: str = "channel already exists") -> None:
        super().__init__(message)


class ChannelNotFoundError(LookupError):
    """Raised when no channel matches the requested ID."""

    def __init__(self, message: str = "no channel with that ID found") -> None:
        super().__init__(message)


class AlreadySubscribedError(Exception):
    """Raised when subscribing to a channel that is already subscribed."""

    def __init__(self, message: str = "already subscribed to channel") -> None:
        super().__init__(message)


class VideoExistsError(Exception):
    """Raised when adding a video that is already stored."""

    def __init__(self, message: str = "video already exists") -> None:
        super().__init__(message)


class VideoNotFoundError(LookupError):
    """Raised when no video matches the requested ID."""

    def __init__(self, message: str = "video not found") -> None:
        super().__init__(message)


@dataclass
class Channel:
    """A YouTube channel that may be subscribed to."""

    id: str
    name: str = ""
    subscribed: bool = False
    image_url: str = ""
    enable_shorts: bool = False
    unwatched_count: int = 0

    def to_dict(self) -> dict[str, Any]:
        """Return a JSON-serialisable representation."""
        return {
            "id": self.id,
            "name": self.name,
            "subscribed": self.subscribed,
            "image_url": self.image_url,
            "enable_shorts": self.enable_shorts,
            "unwatched_count": self.unwatched_count,
        }


@dataclass
class Video:
    """A single video with its watch and download state."""

    id: str
    title: str = ""
    published_time: Optional[datetime] = None
    channel_id: str = ""
    channel_name: str = ""
    watch_time: Optional[datetime] = None
    is_short: bool = False
    is_live: bool = False
    duration_seconds: int = 0
    progress_seconds: int = 0
    is_discarded: bool = False
    downloaded_at: Optional[datetime] = None
    file_path: Optional[str] = None
    download_status: Optional[str] = None
    download_error: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        """Return a JSON-serialisable representation."""
        return {
            "id": self.id,
            "title": self.title,
            "published_timestamp": _iso(self.published_time),
            "watch_timestamp": _iso(self.watch_time),
            "channel_id": self.channel_id,
            "channel_name": self.channel_name,
            "is_short": self.is_short,
            "is_live": self.is_live,
            "duration": self.duration_seconds,
            "progress": self.progress_seconds,
            "is_discarded": self.is_discarded,
            "downloaded_at": _iso(self.downloaded_at),
            "file_path": self.file_path,
            "download_status": self.download_status,
            "download_error": self.download_error,
        }


@dataclass
class Settings:
    """Runtime configuration of the service."""

    db_path: str = "ytrssil.db"
    youtube_api_key: str = ""
    auth_token: str = ""
    port: int = 8080
    dev: bool = False
    fetch_interval: timedelta = field(default_factory=lambda: timedelta(minutes=5))
    cleanup_interval: timedelta = field(default_factory=lambda: timedelta(hours=1))
    cleanup_age: timedelta = field(default_factory=lambda: timedelta(days=7))
    downloads_dir: str = "downloads"