"""Doujin fetcher + Telegraph publisher.

This package contains:
- ExHentai source adapter (random search, gallery scraping)
- Telegraph publisher (multi-page articles, view counts)
- Zip archive builder for stored galleries
- SQLite record / stats / settings store
- FastAPI app and CLI exposing the same pipeline
"""

__all__ = [
    "settings",
    "logging_conf",
]
