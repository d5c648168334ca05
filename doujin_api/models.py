from __future__ import annotations

from collections import Counter
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List


@dataclass
class Doujin:
    """One scraped gallery.

    `url` and `doujin_id` never change once the record exists; `telegraph_url`
    is empty until the gallery has been published.
    """

    doujin_id: str
    title: str
    url: str
    images: List[str] = field(default_factory=list)
    tags: List[str] = field(default_factory=list)
    telegraph_url: str = ""
    id: str = ""
    created_at: str = ""

    @property
    def is_published(self) -> bool:
        return bool(self.telegraph_url)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


STAT_KINDS = ("fetch", "random", "zip")


@dataclass
class UsageStats:
    total_use: int = 0
    fetch_use: int = 0
    random_use: int = 0
    zip_use: int = 0
    positive_tags: Counter = field(default_factory=Counter)
    negative_tags: Counter = field(default_factory=Counter)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_use": self.total_use,
            "fetch_use": self.fetch_use,
            "random_use": self.random_use,
            "zip_use": self.zip_use,
            "tags": {
                "positive": dict(self.positive_tags),
                "negative": dict(self.negative_tags),
            },
        }
