"""Fetching and parsing of YouTube channel Atom feeds."""

from __future__ import annotations

import logging
import re
import urllib.error
import urllib.request
import xml.etree.ElementTree as ElementTree
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Optional

FEED_URL_FORMAT = "https://www.youtube.com/feeds/videos.xml?channel_id={}"

_log = logging.getLogger(__name__)

_RFC3339 = re.compile(
    r"(\d{4})-(\d{2})-(\d{2})T(\d{2}):(\d{2}):(\d{2})(\.\d+)?(Z|[+-]\d{2}:\d{2})\Z"
)


class InvalidChannelIDError(ValueError):
    """Raised when the feed for a channel ID does not exist."""


class FeedParseError(ValueError):
    """Raised when a feed document cannot be decoded."""


@dataclass
class FeedVideo:
    """One entry of a channel feed."""

    id: str = ""
    title: str = ""
    published: str = ""
    link: str = ""
    is_short: bool = False


@dataclass
class FeedChannel:
    """A parsed channel feed."""

    id: str = ""
    name: str = ""
    videos: list[FeedVideo] = field(default_factory=list)


def parse_date(value: str) -> datetime:
    """Parse an RFC 3339 timestamp into an aware datetime."""
    match = _RFC3339.match(value)
    if match is None:
        raise ValueError(f"invalid RFC 3339 timestamp: {value!r}")
    year, month, day, hour, minute, second, fraction, zone = match.groups()
    microsecond = int((fraction[1:] + "000000")[:6]) if fraction else 0
    if zone == "Z":
        tz = timezone.utc
    else:
        sign = -1 if zone[0] == "-" else 1
        hours, minutes = int(zone[1:3]), int(zone[4:6])
        if hours > 23 or minutes > 59:
            raise ValueError(f"invalid time zone offset: {zone!r}")
        tz = timezone(sign * timedelta(hours=hours, minutes=minutes))
    return datetime(
        int(year), int(month), int(day),
        int(hour), int(minute), int(second), microsecond, tzinfo=tz,
    )


def _local(tag: str) -> str:
    return tag.rsplit("}", 1)[-1]


def _child(element: ElementTree.Element, name: str) -> Optional[ElementTree.Element]:
    return next((c for c in element if _local(c.tag) == name), None)


def _child_text(element: ElementTree.Element, name: str) -> str:
    found = _child(element, name)
    return (found.text or "") if found is not None else ""


def parse_feed(data: bytes, channel_id: str) -> FeedChannel:
    """Decode an Atom feed document into a FeedChannel."""
    try:
        root = ElementTree.fromstring(data)
    except ElementTree.ParseError as err:
        raise FeedParseError(f"failed to parse feed: {err}") from err

    videos = []
    for entry in (c for c in root if _local(c.tag) == "entry"):
        link = _child(entry, "link")
        href = link.get("href", "") if link is not None else ""
        videos.append(
            FeedVideo(
                id=_child_text(entry, "id"),
                title=_child_text(entry, "title"),
                published=_child_text(entry, "published"),
                link=href,
                is_short="/shorts/" in href,
            )
        )
    return FeedChannel(id=channel_id, name=_child_text(root, "title"), videos=videos)


class FeedParser:
    """Downloads and parses channel feeds over HTTP."""

    def __init__(self, timeout: float = 30.0) -> None:
        self.timeout = timeout

    def _fetch(self, url: str) -> bytes:
        request = urllib.request.Request(url, method="GET")
        try:
            with urllib.request.urlopen(request, timeout=self.timeout) as response:
                status = response.status
                if status != 200:
                    raise ConnectionError(f"failed to get feed with status {status}")
                return response.read()
        except urllib.error.HTTPError as err:
            if err.code == 404:
                raise InvalidChannelIDError(f"invalid channel ID: {url}") from err
            raise ConnectionError(f"failed to get feed with status {err.code}") from err

    def parse(self, channel_id: str) -> FeedChannel:
        """Fetch and parse the feed of the given channel."""
        url = FEED_URL_FORMAT.format(channel_id)
        data = self._fetch(url)
        try:
            return parse_feed(data, channel_id)
        except FeedParseError:
            _log.error("Failed to decode XML for RSS feed", exc_info=True)
            raise