# ytrssil

ytrssil keeps track of the YouTube channels you follow without a YouTube
account. It reads each channel's public Atom feed, stores new videos in a
local SQLite database and offers a small browser interface and a JSON API
for working through them.

## Features

- Subscribe to channels by channel ID (`UC` followed by 22 characters).
- Fetch new videos from every subscribed channel, in parallel. Shorts are
  recognised by their `/shorts/` link; when shorts are switched off for a
  channel they are stored as discarded and never shown.
- Mark videos as watched or unwatched and browse the watch history, 100
  videos per page, newest first.
- Record how far into a video you are. Progress accepts durations such as
  `1h2m3s` or `90s`, as well as `hh:mm:ss` and `mm:ss`.
- Serve a downloaded video file back to the browser under a file name made
  from the video title, and periodically delete the files of videos that
  were watched longer ago than the cleanup age.

## Installing

```
pip install .
```

## Running

```
ytrssil --help
```

lists the settings. Each can also be given as an environment variable:

| Option               | Environment variable        | Default       |
|----------------------|-----------------------------|---------------|
| `--db-path`          | `YTRSSIL_DB_PATH`           | `ytrssil.db`  |
| `--auth-token`       | `YTRSSIL_AUTH_TOKEN`        | empty         |
| `--port`             | `YTRSSIL_PORT`              | `8080`        |
| `--dev`              | `YTRSSIL_DEV` (`1`, `true`, `yes`, `on`) | off |
| `--fetch-interval`   | `YTRSSIL_FETCH_INTERVAL`    | `5m`          |
| `--cleanup-interval` | `YTRSSIL_CLEANUP_INTERVAL`  | `1h`          |
| `--cleanup-age`      | `YTRSSIL_CLEANUP_AGE`       | `168h` (7 days) |
| `--downloads-dir`    | `YTRSSIL_DOWNLOADS_DIR`     | `downloads`   |
| `--youtube-api-key`  | `YTRSSIL_YOUTUBE_API_KEY`   | empty         |

Intervals and ages take the same formats as video progress and must be
positive. Start the server with:

```
ytrssil
```

On start the database schema is created if needed. The server then listens
on all interfaces, fetches feeds every fetch interval and runs the cleanup
every cleanup interval. With `--dev` the fetcher and cleanup are not started.
The server stops cleanly on `SIGINT`, `SIGTERM` or `SIGHUP`. Each request is
logged on the `ytrssil.access` logger.

## Authentication

Everything except `/healthz`, `/auth` and `/assets` needs the configured
auth token.

- In the browser, open `/auth` and enter the token. It is kept in an
  HTTP-only cookie named `token` for 30 days (marked secure unless `--dev`
  is given). Pages without a valid cookie redirect to `/auth`.
- API clients send the token as the whole value of the `Authorization`
  header, for example `Authorization: token`. A missing or wrong header gets
  a 401 response.

## Browser interface

| Path        | Shows                                          |
|-------------|------------------------------------------------|
| `/`         | unwatched videos, newest first                 |
| `/watched`  | watch history, `?page=N` for older pages       |
| `/channels` | subscribed channels with their unwatched count |

The pages load Bootstrap, a Datastar client script and an `app.js` from
`/assets/...`, which is served from an `assets` directory in the current
working directory. Those files are not part of this package; put them there
yourself for the interactive buttons and dialogs to work.

## JSON API

| Method | Path                                     | Purpose                                |
|--------|------------------------------------------|----------------------------------------|
| POST   | `/api/fetch`                             | fetch new videos now                   |
| POST   | `/api/channels/<channel_id>/subscribe`   | subscribe; returns the channel         |
| POST   | `/api/channels/<channel_id>/unsubscribe` | unsubscribe (404 if unknown)           |
| GET    | `/api/videos/new`                        | unwatched videos, oldest first         |
| GET    | `/api/videos/watched`                    | first page of watch history            |
| POST   | `/api/videos/<video_id>/watch`           | mark as watched                        |
| POST   | `/api/videos/<video_id>/unwatch`         | clear from watch history               |
| POST   | `/api/videos/<video_id>/download`        | queue a download (`format` form field) |

`GET /healthz` answers `healthy`. Errors come back as `{"error": "..."}`
with a matching status code; an unknown channel feed on subscribe gives 400.

## Using it as a library

The parts can be put together by hand:

```python
from ytrssil.feedparser import FeedParser
from ytrssil.handler import Handler
from ytrssil.models import Settings
from ytrssil.store import Store
from ytrssil.web import create_app

settings = Settings(db_path="ytrssil.db", auth_token="token")
store = Store(settings.db_path)
store.migrate()
handler = Handler(store, FeedParser(), my_youtube_client, my_downloader, settings)
app = create_app(handler, settings)
```

- `Store` keeps channels and videos in SQLite.
- `FeedParser.parse(channel_id)` fetches and parses a channel feed;
  `parse_feed(data, channel_id)` parses a feed document you already have.
- `Handler` implements the operations above. `my_youtube_client` must
  provide the methods of `ytrssil.handler.YouTubeClient`
  (`resolve_channel_id`, `get_channel_image_url`, `get_video_durations`,
  `get_video_metadata`); `my_downloader` provides those of
  `ytrssil.handler.Downloader` (`validate_installation` and
  `download(video_id, title, downloads_dir, resolution)`, returning the file
  path), or is `None`.
- `parse_video_input`, `parse_time_progress` and `sanitize_filename` in
  `ytrssil.handler` are usable on their own.

## What it does not do

- It has no YouTube Data API client. The `ytrssil` command uses a stand-in
  that only works from feeds: channel handles (`@name`) cannot be resolved,
  so subscribe with channel IDs; adding a single video by ID or URL fails;
  video durations and live status are not looked up; channel images are
  left empty. `--youtube-api-key` is accepted but not used by the command.
  Supply your own client through `Handler` to get these.
- It has no video downloader. The `ytrssil` command runs without one, so a
  queued download is marked as failed with "no downloader configured".
  Supply a `Downloader` through `Handler` to download files; serving and
  cleaning up downloaded files work either way.