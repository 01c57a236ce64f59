from datetime import datetime, timezone

import pytest

from ytrssil.models import (
    AlreadySubscribedError,
    Channel,
    ChannelExistsError,
    ChannelNotFoundError,
    Settings,
    Video,
    VideoExistsError,
    VideoNotFoundError,
)


def test_channel_to_dict_round_trips_fields():
    channel = Channel(
        id="UCabc",
        name="Test Channel",
        subscribed=True,
        image_url="https://example.com/image.jpg",
        enable_shorts=True,
        unwatched_count=3,
    )
    data = channel.to_dict()
    assert Channel(**{k: data[k] for k in data}) == channel


def test_video_to_dict_serialises_timestamps():
    published = datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone.utc)
    video = Video(id="video123", title="Test Video", published_time=published)
    data = video.to_dict()
    assert data["id"] == "video123"
    assert data["title"] == "Test Video"
    assert datetime.fromisoformat(data["published_timestamp"]) == published
    assert data["watch_timestamp"] is None
    assert data["downloaded_at"] is None


def test_video_to_dict_carries_progress_and_duration():
    video = Video(id="v", duration_seconds=300, progress_seconds=150, file_path="/tmp/v.mp4")
    data = video.to_dict()
    assert (data["duration"], data["progress"]) == (300, 150)
    assert data["file_path"] == "/tmp/v.mp4"


def test_video_defaults_are_unwatched_and_not_downloaded():
    video = Video(id="v")
    assert video.watch_time is None
    assert video.file_path is None
    assert video.download_status is None
    assert video.is_discarded is False


@pytest.mark.parametrize(
    "error_type, message",
    [
        (ChannelExistsError, "channel already exists"),
        (ChannelNotFoundError, "no channel with that ID found"),
        (AlreadySubscribedError, "already subscribed to channel"),
        (VideoExistsError, "video already exists"),
        (VideoNotFoundError, "video not found"),
    ],
)
def test_error_default_messages(error_type, message):
    with pytest.raises(error_type) as info:
        raise error_type()
    assert str(info.value) == message


@pytest.mark.parametrize(
    "error_type, message",
    [
        (ChannelNotFoundError, "no channel with that ID found"),
        (VideoNotFoundError, "video not found"),
    ],
)
def test_not_found_errors_are_lookup_errors(error_type, message):
    error = error_type()
    assert issubclass(error_type, LookupError) is True
    assert str(error) == message


def test_settings_instances_do_not_share_intervals():
    first = Settings(auth_token="token")
    second = Settings()
    assert first.auth_token == "token"
    assert second.auth_token == ""
    assert first.fetch_interval == second.fetch_interval
    assert first.cleanup_age > first.cleanup_interval