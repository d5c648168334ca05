"""The acquisition-and-publishing pipeline.

fetch / random: resolve a gallery URL, skip it if it was already published,
otherwise scrape, store, publish to Telegraph and count the operation.
zip: package a stored gallery's images into an archive.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterable, Optional

from doujin_api.db.repo import Repo
from doujin_api.errors import NotFoundError, StatsUpdateError
from doujin_api.jobs import zip_doujin
from doujin_api.jobs.dedup import KeyedLocks, check_existing
from doujin_api.jobs.publish import ensure_access_token, publish_doujin
from doujin_api.jobs.stats import StatsStore, record_operation
from doujin_api.models import Doujin
from doujin_api.settings import Settings
from doujin_api.sources.exhentai import ExhentaiSource
from doujin_api.sources.tags import parse_tags
from doujin_api.telegraph.client import TelegraphAPI

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class FetchResult:
    doujin: Doujin
    created: bool


@dataclass(frozen=True)
class ArchiveResult:
    filename: str
    data: bytes


@dataclass
class DoujinPipeline:
    repo: Repo
    source: ExhentaiSource
    telegraph: TelegraphAPI
    settings: Settings
    stats: Optional[StatsStore] = None
    locks: KeyedLocks = field(default_factory=KeyedLocks)
    download: Optional[zip_doujin.Downloader] = None

    def __post_init__(self) -> None:
        if self.stats is None:
            self.stats = self.repo

    def _record_stats(self, kind: str, positive: Iterable[str] = (), negative: Iterable[str] = ()) -> None:
        try:
            record_operation(self.stats, kind, positive, negative)
        except StatsUpdateError:
            log.exception("Stats update failed for %s operation; result is still returned", kind)

    async def _publish(self, record: Doujin) -> FetchResult:
        telegraph = await ensure_access_token(self.telegraph, settings=self.settings, repo=self.repo)
        published = await publish_doujin(
            telegraph,
            record,
            page_size=self.settings.telegraph_page_size,
            author_name=self.settings.telegraph_author_name,
            author_url=self.settings.telegraph_author_url,
        )
        if self.repo.set_telegraph_url(record.id, published.telegraph_url):
            return FetchResult(published, created=True)

        # someone else published this record in the meantime; keep their pages
        stored = self.repo.find_by_record_id(record.id)
        if stored is None:
            raise NotFoundError(f"Doujin {record.id} was deleted while publishing")
        log.warning(
            "Doujin doujin_id=%s was published concurrently; dropping our pages starting at %s",
            record.doujin_id,
            published.telegraph_url,
        )
        return FetchResult(stored, created=False)

    async def _get_or_publish(self, url: str) -> FetchResult:
        doujin_id = self.source.source_id(url)
        async with self.locks.hold(doujin_id):
            existing = check_existing(self.repo, doujin_id)
            if existing is not None and existing.is_published:
                return FetchResult(existing, created=False)

            if existing is None:
                scraped = await self.source.scrape(url)
                record, _ = self.repo.get_or_create(scraped)
                if record.is_published:
                    return FetchResult(record, created=False)
            else:
                log.info("Resuming unpublished doujin doujin_id=%s id=%s", existing.doujin_id, existing.id)
                record = existing

            return await self._publish(record)

    async def fetch_or_reuse(self, url: str) -> FetchResult:
        result = await self._get_or_publish(url.strip())
        if result.created:
            self._record_stats("fetch")
        return result

    async def random_or_reuse(self, tags: Optional[str] = None) -> FetchResult:
        query, positive, negative = parse_tags(tags or "")
        url = await self.source.resolve_random(query)
        result = await self._get_or_publish(url)
        if result.created:
            self._record_stats("random", positive, negative)
        return result

    async def build_archive(self, record_id: str) -> ArchiveResult:
        doujin = self.repo.find_by_record_id(record_id)
        if doujin is None:
            raise NotFoundError(f"Doujin not found: id={record_id}")

        data = await zip_doujin.build_archive(
            doujin,
            work_dir=self.settings.work_dir,
            download=self.download,
            concurrency=self.settings.image_concurrency,
            attempts=self.settings.image_attempts,
            user_agent=self.settings.user_agent,
        )
        self._record_stats("zip")
        return ArchiveResult(filename=zip_doujin.archive_name(doujin), data=data)

    async def get_view_count(self, url: str) -> int:
        return await self.telegraph.get_views(url.strip())
