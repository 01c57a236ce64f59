import urllib.error
from datetime import datetime, timedelta, timezone
from unittest import mock

import pytest

from ytrssil.feedparser import (
    FeedChannel,
    FeedParseError,
    FeedParser,
    FeedVideo,
    InvalidChannelIDError,
    parse_date,
    parse_feed,
)

SAMPLE_FEED = b"""<?xml version="1.0" encoding="UTF-8"?>
<feed xmlns:yt="http://www.youtube.com/xml/schemas/2015" xmlns="http://www.w3.org/2005/Atom">
  <id>yt:channel:chan</id>
  <title>Test Channel</title>
  <entry>
    <id>yt:video:abc123</id>
    <yt:videoId>abc123</yt:videoId>
    <title>First Video</title>
    <link rel="alternate" href="https://www.youtube.com/watch?v=abc123"/>
    <published>2024-03-01T12:30:00+00:00</published>
  </entry>
  <entry>
    <id>yt:video:def456</id>
    <title>A Short</title>
    <link rel="alternate" href="https://www.youtube.com/shorts/def456"/>
    <published>2024-03-02T08:00:00+00:00</published>
  </entry>
</feed>
"""


class _FakeResponse:
    def __init__(self, body, status=200):
        self._body = body
        self.status = status

    def read(self):
        return self._body

    def __enter__(self):
        return self

    def __exit__(self, *args):
        return False


def test_parse_date_with_offset():
    parsed = parse_date("2024-03-01T12:30:00+02:00")
    assert parsed == datetime(2024, 3, 1, 10, 30, tzinfo=timezone.utc)
    assert parsed.utcoffset() == timedelta(hours=2)


def test_parse_date_zulu_and_fraction():
    parsed = parse_date("2024-03-01T12:30:00.5Z")
    assert parsed.tzinfo == timezone.utc
    assert parsed.microsecond == 500000


@pytest.mark.parametrize(
    "value", ["2024-03-01", "2024-03-01T12:30:00", "2024-03-01 12:30:00Z", "yesterday"]
)
def test_parse_date_rejects_non_rfc3339(value):
    with pytest.raises(ValueError):
        parse_date(value)


def test_parse_feed_reads_channel_and_entries():
    channel = parse_feed(SAMPLE_FEED, "chan")
    assert channel.id == "chan"
    assert channel.name == "Test Channel"
    assert [v.id for v in channel.videos] == ["yt:video:abc123", "yt:video:def456"]
    assert [v.title for v in channel.videos] == ["First Video", "A Short"]
    assert channel.videos[0].published == "2024-03-01T12:30:00+00:00"


def test_parse_feed_marks_shorts_by_link():
    channel = parse_feed(SAMPLE_FEED, "chan")
    assert [v.is_short for v in channel.videos] == [False, True]


def test_parse_feed_dates_parse():
    channel = parse_feed(SAMPLE_FEED, "chan")
    dates = [parse_date(v.published) for v in channel.videos]
    assert dates[0] < dates[1]


def test_parse_feed_without_entries():
    channel = parse_feed(b"<feed><title>Empty</title></feed>", "x")
    assert channel == FeedChannel(id="x", name="Empty", videos=[])


def test_parse_feed_invalid_xml():
    with pytest.raises(FeedParseError) as info:
        parse_feed(b"<feed><title>", "x")
    assert str(info.value).startswith("failed to parse feed")


def test_feed_parser_sets_channel_id():
    with mock.patch("urllib.request.urlopen", return_value=_FakeResponse(SAMPLE_FEED)) as opener:
        channel = FeedParser(timeout=5).parse("chan")
    assert channel.id == "chan"
    assert channel.videos[1] == FeedVideo(
        id="yt:video:def456",
        title="A Short",
        published="2024-03-02T08:00:00+00:00",
        link="https://www.youtube.com/shorts/def456",
        is_short=True,
    )
    request = opener.call_args.args[0]
    assert request.full_url.endswith("channel_id=chan")


def test_feed_parser_not_found_is_invalid_channel():
    error = urllib.error.HTTPError("https://example.com", 404, "Not Found", {}, None)
    with mock.patch("urllib.request.urlopen", side_effect=error):
        with pytest.raises(InvalidChannelIDError) as info:
            FeedParser(timeout=5).parse("missing")
    assert "channel_id=missing" in str(info.value)


def test_feed_parser_other_status_fails():
    error = urllib.error.HTTPError("https://example.com", 500, "Server Error", {}, None)
    with mock.patch("urllib.request.urlopen", side_effect=error):
        with pytest.raises(ConnectionError) as info:
            FeedParser(timeout=5).parse("chan")
    assert "500" in str(info.value)


def test_feed_parser_bad_body_raises_parse_error():
    with mock.patch("urllib.request.urlopen", return_value=_FakeResponse(b"not xml")):
        with pytest.raises(FeedParseError):
            FeedParser(timeout=5).parse("chan")