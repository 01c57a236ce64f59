"""SQLite-backed persistence for channels and videos."""

from __future__ import annotations

import sqlite3
import threading
from datetime import datetime, timedelta, timezone
from typing import Iterable, Optional

from ytrssil.models import (
    Channel,
    ChannelNotFoundError,
    Video,
    VideoExistsError,
    VideoNotFoundError,
)

_SCHEMA_VERSION = 1

_SCHEMA = """
CREATE TABLE IF NOT EXISTS channels (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    subscribed INTEGER NOT NULL DEFAULT 1,
    image_url TEXT,
    enable_shorts INTEGER DEFAULT 1
);

CREATE TABLE IF NOT EXISTS videos (
    id TEXT PRIMARY KEY,
    title TEXT NOT NULL,
    published_timestamp TEXT NOT NULL,
    watch_timestamp TEXT,
    channel_id TEXT NOT NULL,
    is_short INTEGER NOT NULL DEFAULT 0,
    is_live INTEGER NOT NULL DEFAULT 0,
    duration INTEGER NOT NULL DEFAULT 0,
    progress INTEGER NOT NULL DEFAULT 0,
    is_discarded INTEGER NOT NULL DEFAULT 0,
    downloaded_at TEXT,
    file_path TEXT,
    download_status TEXT,
    download_error TEXT
);

CREATE INDEX IF NOT EXISTS videos_channel_id_idx ON videos (channel_id);
CREATE INDEX IF NOT EXISTS videos_watch_timestamp_idx ON videos (watch_timestamp);
"""

_VIDEO_COLUMNS = """
    videos.id AS id,
    videos.title AS title,
    videos.published_timestamp AS published_timestamp,
    videos.watch_timestamp AS watch_timestamp,
    videos.is_short AS is_short,
    videos.is_live AS is_live,
    videos.duration AS duration,
    videos.progress AS progress,
    videos.is_discarded AS is_discarded,
    videos.downloaded_at AS downloaded_at,
    videos.file_path AS file_path,
    videos.download_status AS download_status,
    videos.download_error AS download_error,
    COALESCE(channels.name, '') AS channel_name,
    COALESCE(channels.id, '') AS channel_id
"""

# Fixed-width UTC form so that timestamps compare correctly as text.
_TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%S.%f+00:00"


def _to_db(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).strftime(_TIMESTAMP_FORMAT)


def _from_db(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value is not None else None


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _video_from_row(row: sqlite3.Row) -> Video:
    return Video(
        id=row["id"],
        title=row["title"],
        published_time=_from_db(row["published_timestamp"]),
        watch_time=_from_db(row["watch_timestamp"]),
        is_short=bool(row["is_short"]),
        is_live=bool(row["is_live"]),
        duration_seconds=row["duration"],
        progress_seconds=row["progress"],
        is_discarded=bool(row["is_discarded"]),
        downloaded_at=_from_db(row["downloaded_at"]),
        file_path=row["file_path"],
        download_status=row["download_status"],
        download_error=row["download_error"],
        channel_name=row["channel_name"],
        channel_id=row["channel_id"],
    )


class Store:
    """Database layer holding channel and video state."""

    def __init__(self, path: str) -> None:
        self.path = path
        self._lock = threading.RLock()
        self._conn = sqlite3.connect(path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row

    def migrate(self) -> None:
        """Create or upgrade the schema; safe to call repeatedly."""
        with self._lock:
            (version,) = self._conn.execute("PRAGMA user_version").fetchone()
            if version >= _SCHEMA_VERSION:
                return
            self._conn.executescript(_SCHEMA)
            self._conn.execute(f"PRAGMA user_version = {_SCHEMA_VERSION}")
            self._conn.commit()

    def close(self) -> None:
        """Close the underlying connection."""
        with self._lock:
            self._conn.close()

    def __enter__(self) -> "Store":
        return self

    def __exit__(self, *args: object) -> None:
        self.close()

    def _execute(self, query: str, params: Iterable[object] = ()) -> sqlite3.Cursor:
        with self._lock, self._conn:
            return self._conn.execute(query, tuple(params))

    def _fetchall(self, query: str, params: Iterable[object] = ()) -> list[sqlite3.Row]:
        with self._lock:
            return self._conn.execute(query, tuple(params)).fetchall()

    def _fetchone(self, query: str, params: Iterable[object] = ()) -> Optional[sqlite3.Row]:
        with self._lock:
            return self._conn.execute(query, tuple(params)).fetchone()

    # Channels

    def subscribe_to_channel(self, channel: Channel) -> None:
        """Insert a channel, or update its subscription state if it exists."""
        cursor = self._execute(
            """
            INSERT INTO channels (id, name, subscribed, image_url, enable_shorts)
            VALUES (?, ?, ?, ?, ?)
            ON CONFLICT (id) DO UPDATE SET
                subscribed = excluded.subscribed,
                image_url = excluded.image_url,
                enable_shorts = excluded.enable_shorts
            """,
            (channel.id, channel.name, channel.subscribed, channel.image_url,
             channel.enable_shorts),
        )
        if cursor.rowcount == 0:
            raise RuntimeError("failed to subscribe to channel")

    def list_channels(self) -> list[Channel]:
        """List subscribed channels by name, with their unwatched video counts."""
        rows = self._fetchall(
            """
            SELECT
                channels.id AS id,
                channels.name AS name,
                channels.subscribed AS subscribed,
                COALESCE(channels.image_url, '') AS image_url,
                COALESCE(channels.enable_shorts, 1) AS enable_shorts,
                COUNT(videos.id) FILTER (
                    WHERE videos.watch_timestamp IS NULL AND videos.is_discarded = 0
                ) AS unwatched_count
            FROM channels
            LEFT JOIN videos ON channels.id = videos.channel_id
            WHERE channels.subscribed = 1
            GROUP BY channels.id, channels.name, channels.subscribed,
                     channels.image_url, channels.enable_shorts
            ORDER BY channels.name
            """
        )
        return [
            Channel(
                id=row["id"],
                name=row["name"],
                subscribed=bool(row["subscribed"]),
                image_url=row["image_url"],
                enable_shorts=bool(row["enable_shorts"]),
                unwatched_count=row["unwatched_count"],
            )
            for row in rows
        ]

    def unsubscribe_from_channel(self, channel_id: str) -> None:
        """Stop following a channel."""
        cursor = self._execute(
            "UPDATE channels SET subscribed = 0 WHERE id = ?", (channel_id,)
        )
        if cursor.rowcount != 1:
            raise ChannelNotFoundError()

    def toggle_channel_shorts(self, channel_id: str, enable_shorts: bool) -> None:
        """Enable or disable shorts for a channel."""
        cursor = self._execute(
            "UPDATE channels SET enable_shorts = ? WHERE id = ?",
            (enable_shorts, channel_id),
        )
        if cursor.rowcount != 1:
            raise ChannelNotFoundError()

    def get_channel_by_id(self, channel_id: str) -> Channel:
        """Return the channel with the given ID."""
        row = self._fetchone(
            """
            SELECT
                id,
                name,
                subscribed,
                COALESCE(image_url, '') AS image_url,
                COALESCE(enable_shorts, 1) AS enable_shorts
            FROM channels
            WHERE id = ?
            """,
            (channel_id,),
        )
        if row is None:
            raise ChannelNotFoundError()
        return Channel(
            id=row["id"],
            name=row["name"],
            subscribed=bool(row["subscribed"]),
            image_url=row["image_url"],
            enable_shorts=bool(row["enable_shorts"]),
        )

    # Videos

    def get_new_videos(self, sort_desc: bool) -> list[Video]:
        """Return unwatched, non-discarded videos ordered by publish time."""
        query = f"""
            SELECT {_VIDEO_COLUMNS}
            FROM videos
            LEFT JOIN channels ON videos.channel_id = channels.id
            WHERE videos.watch_timestamp IS NULL
                AND videos.is_discarded = 0
            ORDER BY videos.published_timestamp
        """
        if sort_desc:
            query += " DESC"
        return [_video_from_row(row) for row in self._fetchall(query)]

    def get_watched_videos(self, sort_desc: bool, limit: int, offset: int) -> list[Video]:
        """Return a page of watched videos ordered by watch time."""
        query = f"""
            SELECT {_VIDEO_COLUMNS}
            FROM videos
            LEFT JOIN channels ON channels.id = videos.channel_id
            WHERE videos.watch_timestamp IS NOT NULL
                AND videos.is_discarded = 0
            ORDER BY videos.watch_timestamp
        """
        if sort_desc:
            query += " DESC"
        query += " LIMIT ? OFFSET ?"
        return [_video_from_row(row) for row in self._fetchall(query, (limit, offset))]

    def has_video(self, video_id: str) -> bool:
        """Report whether a video with this ID is stored."""
        (count,) = self._fetchone(
            "SELECT COUNT(1) FROM videos WHERE id = ?", (video_id,)
        )
        return count == 1

    def add_video(self, video: Video, channel_id: str, is_discarded: bool) -> None:
        """Store a newly published video."""
        cursor = self._execute(
            """
            INSERT INTO videos (
                id, title, published_timestamp, duration,
                is_short, is_live, channel_id, is_discarded
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT DO NOTHING
            """,
            (
                video.id,
                video.title,
                _to_db(video.published_time or _now()),
                video.duration_seconds,
                video.is_short,
                video.is_live,
                channel_id,
                is_discarded,
            ),
        )
        if cursor.rowcount == 0:
            raise VideoExistsError()

    def discard_video(self, video_id: str) -> None:
        """Mark a video as discarded."""
        self._execute("UPDATE videos SET is_discarded = 1 WHERE id = ?", (video_id,))

    def set_video_watch_time(self, video_id: str, watch_time: Optional[datetime]) -> None:
        """Set or clear the time a video was watched."""
        self._execute(
            "UPDATE videos SET watch_timestamp = ? WHERE id = ?",
            (_to_db(watch_time), video_id),
        )

    def set_video_progress(self, video_id: str, progress: int) -> Video:
        """Set the watch progress of a video and return the updated video."""
        with self._lock:
            cursor = self._execute(
                "UPDATE videos SET progress = ? WHERE id = ?", (progress, video_id)
            )
            if cursor.rowcount == 0:
                raise VideoNotFoundError()
            return self.get_video(video_id)

    def get_video(self, video_id: str) -> Video:
        """Return a single video by ID."""
        row = self._fetchone(
            f"""
            SELECT {_VIDEO_COLUMNS}
            FROM videos
            LEFT JOIN channels ON videos.channel_id = channels.id
            WHERE videos.id = ?
            """,
            (video_id,),
        )
        if row is None:
            raise VideoNotFoundError()
        return _video_from_row(row)

    def set_video_download_status(self, video_id: str, status: str) -> None:
        """Set the download status of a video."""
        self._execute(
            "UPDATE videos SET download_status = ? WHERE id = ?", (status, video_id)
        )

    def set_video_download_completed(self, video_id: str, file_path: str) -> None:
        """Record a finished download and its file location."""
        self._execute(
            """
            UPDATE videos
            SET downloaded_at = ?, file_path = ?, download_status = ?,
                download_error = NULL
            WHERE id = ?
            """,
            (_to_db(_now()), file_path, "completed", video_id),
        )

    def set_video_download_failed(self, video_id: str, error_message: str) -> None:
        """Record a failed download with its error message."""
        self._execute(
            "UPDATE videos SET download_status = ?, download_error = ? WHERE id = ?",
            ("failed", error_message, video_id),
        )

    def get_videos_for_cleanup(self, older_than: timedelta) -> list[Video]:
        """Return downloaded videos watched longer ago than the given age."""
        cutoff = _to_db(_now() - older_than)
        rows = self._fetchall(
            """
            SELECT id, file_path, downloaded_at, watch_timestamp
            FROM videos
            WHERE downloaded_at IS NOT NULL
                AND file_path IS NOT NULL
                AND download_status = 'completed'
                AND watch_timestamp IS NOT NULL
                AND watch_timestamp < ?
                AND is_discarded = 0
            """,
            (cutoff,),
        )
        return [
            Video(
                id=row["id"],
                file_path=row["file_path"],
                downloaded_at=_from_db(row["downloaded_at"]),
                watch_time=_from_db(row["watch_timestamp"]),
            )
            for row in rows
        ]

    def get_live_videos(self) -> list[Video]:
        """Return unwatched videos that are marked live."""
        rows = self._fetchall(
            "SELECT id FROM videos WHERE is_live = 1 AND watch_timestamp IS NULL"
        )
        return [Video(id=row["id"]) for row in rows]

    def update_video_live_status(self, video_id: str, is_live: bool, duration: int) -> None:
        """Update the live flag and duration of a video."""
        self._execute(
            "UPDATE videos SET is_live = ?, duration = ? WHERE id = ?",
            (is_live, duration, video_id),
        )

    def delete_video_file(self, video_id: str) -> None:
        """Clear all download fields of a video."""
        self._execute(
            """
            UPDATE videos
            SET downloaded_at = NULL, file_path = NULL,
                download_status = NULL, download_error = NULL
            WHERE id = ?
            """,
            (video_id,),
        )