import sqlite3
from datetime import datetime, timedelta, timezone

import pytest

from ytrssil.models import (
    Channel,
    ChannelNotFoundError,
    Video,
    VideoExistsError,
    VideoNotFoundError,
)
from ytrssil.store import Store


@pytest.fixture
def store(tmp_path):
    with Store(str(tmp_path / "test.db")) as s:
        s.migrate()
        yield s


def _now():
    return datetime.now(timezone.utc)


def _subscribe(store, channel_id, name="Test Channel"):
    store.subscribe_to_channel(
        Channel(id=channel_id, name=name, subscribed=True, enable_shorts=True)
    )


def _add(store, video_id, channel_id, published=None, **kwargs):
    video = Video(
        id=video_id,
        title=kwargs.pop("title", "Test Video"),
        published_time=published or _now() - timedelta(hours=1),
        duration_seconds=300,
        **kwargs,
    )
    store.add_video(video, channel_id, False)


def test_migrate_is_idempotent(store):
    store.migrate()
    assert store.list_channels() == []


def test_subscribe_and_list(store):
    _subscribe(store, "test-channel-789")
    channels = store.list_channels()
    assert [c.id for c in channels] == ["test-channel-789"]
    assert channels[0].name == "Test Channel"
    assert channels[0].subscribed is True
    assert channels[0].unwatched_count == 0


def test_list_channels_sorted_by_name_and_only_subscribed(store):
    _subscribe(store, "b", name="Beta")
    _subscribe(store, "a", name="Alpha")
    _subscribe(store, "c", name="Gamma")
    store.unsubscribe_from_channel("c")
    assert [c.name for c in store.list_channels()] == ["Alpha", "Beta"]


def test_resubscribe_updates_state_but_keeps_name(store):
    _subscribe(store, "chan", name="Original")
    store.unsubscribe_from_channel("chan")
    store.subscribe_to_channel(
        Channel(id="chan", name="Other", subscribed=True, image_url="img", enable_shorts=False)
    )
    channel = store.get_channel_by_id("chan")
    assert channel.name == "Original"
    assert channel.subscribed is True
    assert channel.image_url == "img"
    assert channel.enable_shorts is False


def test_unwatched_count_excludes_watched_and_discarded(store):
    _subscribe(store, "chan")
    _add(store, "v1", "chan")
    _add(store, "v2", "chan")
    _add(store, "v3", "chan")
    store.set_video_watch_time("v2", _now())
    store.discard_video("v3")
    assert store.list_channels()[0].unwatched_count == 1


def test_unsubscribe_missing_channel(store):
    with pytest.raises(ChannelNotFoundError):
        store.unsubscribe_from_channel("missing")


def test_toggle_shorts(store):
    _subscribe(store, "chan")
    store.toggle_channel_shorts("chan", False)
    assert store.get_channel_by_id("chan").enable_shorts is False
    store.toggle_channel_shorts("chan", True)
    assert store.get_channel_by_id("chan").enable_shorts is True


def test_toggle_shorts_missing_channel(store):
    with pytest.raises(ChannelNotFoundError):
        store.toggle_channel_shorts("missing", True)


def test_get_channel_by_id_missing(store):
    with pytest.raises(ChannelNotFoundError):
        store.get_channel_by_id("missing")


def test_add_video_and_has_video(store):
    _subscribe(store, "chan")
    assert store.has_video("video123") is False
    _add(store, "video123", "chan")
    assert store.has_video("video123") is True


def test_add_duplicate_video_raises(store):
    _subscribe(store, "chan")
    _add(store, "video123", "chan", title="First")
    duplicate = Video(id="video123", title="Second", published_time=_now(), duration_seconds=10)
    with pytest.raises(VideoExistsError):
        store.add_video(duplicate, "chan", False)
    videos = store.get_new_videos(False)
    assert [v.id for v in videos] == ["video123"]
    assert videos[0].title == "First"


def test_get_new_videos_ordering_and_filtering(store):
    _subscribe(store, "chan")
    base = _now()
    _add(store, "old", "chan", published=base - timedelta(days=2))
    _add(store, "new", "chan", published=base - timedelta(days=1))
    _add(store, "watched", "chan", published=base - timedelta(days=3))
    store.add_video(Video(id="discarded", title="d", published_time=base), "chan", True)
    store.set_video_watch_time("watched", base)

    assert [v.id for v in store.get_new_videos(False)] == ["old", "new"]
    assert [v.id for v in store.get_new_videos(True)] == ["new", "old"]
    first = store.get_new_videos(False)[0]
    assert first.channel_name == "Test Channel"
    assert first.channel_id == "chan"
    assert first.duration_seconds == 300


def test_get_watched_videos_paging(store):
    _subscribe(store, "chan")
    base = _now()
    for offset, video_id in enumerate(["a", "b", "c"]):
        _add(store, video_id, "chan")
        store.set_video_watch_time(video_id, base + timedelta(minutes=offset))
    _add(store, "unwatched", "chan")

    assert [v.id for v in store.get_watched_videos(False, 100, 0)] == ["a", "b", "c"]
    assert [v.id for v in store.get_watched_videos(True, 100, 0)] == ["c", "b", "a"]
    assert [v.id for v in store.get_watched_videos(False, 1, 1)] == ["b"]


def test_watch_time_round_trip_and_clear(store):
    _subscribe(store, "chan")
    _add(store, "vid", "chan")
    watched = datetime(2024, 5, 1, 12, 30, 0)
    store.set_video_watch_time("vid", watched)
    assert store.get_video("vid").watch_time == watched.replace(tzinfo=timezone.utc)
    store.set_video_watch_time("vid", None)
    assert store.get_video("vid").watch_time is None


def test_published_time_round_trip(store):
    _subscribe(store, "chan")
    published = datetime(2024, 1, 2, 3, 4, 5, 678, tzinfo=timezone.utc)
    _add(store, "vid", "chan", published=published)
    assert store.get_video("vid").published_time == published


def test_set_video_progress(store):
    _subscribe(store, "chan")
    _add(store, "video606", "chan")
    video = store.set_video_progress("video606", 150)
    assert video.id == "video606"
    assert video.progress_seconds == 150
    assert store.get_video("video606").progress_seconds == 150


def test_set_video_progress_missing(store):
    with pytest.raises(VideoNotFoundError):
        store.set_video_progress("missing", 10)


def test_get_video_missing(store):
    with pytest.raises(VideoNotFoundError):
        store.get_video("missing")


def test_download_lifecycle(store):
    _subscribe(store, "chan")
    _add(store, "vid", "chan")
    store.set_video_download_status("vid", "pending")
    assert store.get_video("vid").download_status == "pending"

    store.set_video_download_failed("vid", "boom")
    video = store.get_video("vid")
    assert video.download_status == "failed"
    assert video.download_error == "boom"

    store.set_video_download_completed("vid", "/tmp/vid.mp4")
    video = store.get_video("vid")
    assert video.download_status == "completed"
    assert video.file_path == "/tmp/vid.mp4"
    assert video.download_error is None
    assert video.downloaded_at is not None and video.downloaded_at <= _now()

    store.delete_video_file("vid")
    video = store.get_video("vid")
    assert (video.download_status, video.file_path, video.downloaded_at) == (None, None, None)


def test_get_videos_for_cleanup(store):
    _subscribe(store, "chan")
    for video_id in ["old", "recent", "not_downloaded"]:
        _add(store, video_id, "chan")
    store.set_video_download_completed("old", "/tmp/old.mp4")
    store.set_video_download_completed("recent", "/tmp/recent.mp4")
    store.set_video_watch_time("old", _now() - timedelta(days=10))
    store.set_video_watch_time("recent", _now())
    store.set_video_watch_time("not_downloaded", _now() - timedelta(days=10))

    videos = store.get_videos_for_cleanup(timedelta(days=7))
    assert [v.id for v in videos] == ["old"]
    assert videos[0].file_path == "/tmp/old.mp4"


def test_live_videos(store):
    _subscribe(store, "chan")
    _add(store, "live", "chan", is_live=True)
    _add(store, "normal", "chan")
    assert [v.id for v in store.get_live_videos()] == ["live"]

    store.update_video_live_status("live", False, 1200)
    assert store.get_live_videos() == []
    video = store.get_video("live")
    assert video.is_live is False
    assert video.duration_seconds == 1200


def test_closed_store_rejects_queries(tmp_path):
    with Store(str(tmp_path / "closed.db")) as s:
        s.migrate()
    with pytest.raises(sqlite3.ProgrammingError):
        s.list_channels()


def test_data_persists_across_connections(tmp_path):
    path = str(tmp_path / "persist.db")
    with Store(path) as s:
        s.migrate()
        _subscribe(s, "chan")
        _add(s, "vid", "chan")
    with Store(path) as s:
        s.migrate()
        assert s.has_video("vid") is True
        assert [c.id for c in s.list_channels()] == ["chan"]