from __future__ import annotations

from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from doujin_api.models import Doujin, UsageStats


class DoujinIn(BaseModel):
    doujin_id: str = Field(..., min_length=1, description="Source-site gallery id")
    title: str = ""
    url: str = Field(..., min_length=1, description="Origin gallery URL")
    images: List[str] = Field(default_factory=list)
    tags: List[str] = Field(default_factory=list)
    telegraph_url: str = ""

    def to_doujin(self, record_id: str = "") -> Doujin:
        return Doujin(
            id=record_id,
            doujin_id=self.doujin_id,
            title=self.title,
            url=self.url,
            images=list(self.images),
            tags=list(self.tags),
            telegraph_url=self.telegraph_url,
        )


class DoujinOut(BaseModel):
    id: str
    doujin_id: str
    title: str
    url: str
    images: List[str] = Field(default_factory=list)
    tags: List[str] = Field(default_factory=list)
    telegraph_url: str = ""
    created_at: Optional[str] = None

    @classmethod
    def from_doujin(cls, doujin: Doujin) -> "DoujinOut":
        return cls(**doujin.to_dict())


class TagStats(BaseModel):
    positive: Dict[str, int] = Field(default_factory=dict)
    negative: Dict[str, int] = Field(default_factory=dict)


class StatsOut(BaseModel):
    total_use: int
    fetch_use: int
    random_use: int
    zip_use: int
    tags: TagStats

    @classmethod
    def from_stats(cls, stats: UsageStats) -> "StatsOut":
        return cls(**stats.to_dict())
