"""Track YouTube channel feeds in SQLite, with a browser interface and JSON API."""

__version__ = "0.1.0"