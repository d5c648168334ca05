"""ExHentai gallery source: random search and gallery scraping."""

from __future__ import annotations

import asyncio
import logging
import random
import re
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Tuple
from urllib.parse import urlparse

import aiohttp
from bs4 import BeautifulSoup

from doujin_api.errors import NoMatchError, NotFoundError, ParseError, SourceUnavailableError
from doujin_api.models import Doujin
from doujin_api.settings import Settings

log = logging.getLogger(__name__)

_GALLERY_RE = re.compile(r"/g/(?P<gid>\d+)/(?P<token>[0-9a-f]+)")
_IMAGE_PAGE_RE = re.compile(r"/s/[0-9a-f]+/\d+-\d+")

_NOT_FOUND_MARKERS = (
    "Gallery not found",
    "Key missing, or incorrect key provided",
    "This gallery has been removed or is unavailable",
)
_NO_HITS_MARKERS = ("No hits found", "No unfiltered results")
_BANNED_MARKERS = (
    "Your IP address has been temporarily banned",
    "This IP address has been temporarily banned",
)


@dataclass(slots=True)
class ParsedGallery:
    title: str
    tags: List[str]
    image_pages: List[str]
    page_count: int = 1


def parse_gallery_url(url: str) -> Tuple[str, str]:
    """Return (gid, token) for a gallery URL or raise NotFoundError."""
    m = _GALLERY_RE.search(urlparse((url or "").strip()).path)
    if not m:
        raise NotFoundError(f"Not a gallery URL: {url!r}")
    return m.group("gid"), m.group("token")


def source_id_from_url(url: str) -> str:
    gid, _ = parse_gallery_url(url)
    return gid


def canonical_gallery_url(url: str, base_url: str) -> str:
    gid, token = parse_gallery_url(url)
    parsed = urlparse(url.strip())
    if parsed.scheme and parsed.netloc:
        base = f"{parsed.scheme}://{parsed.netloc}"
    else:
        base = base_url.rstrip("/")
    return f"{base}/g/{gid}/{token}/"


def _tag_name(anchor) -> Optional[str]:
    # ids look like "ta_female:big_breasts"
    anchor_id = anchor.get("id") or ""
    if anchor_id.startswith("ta_"):
        return anchor_id[3:].replace("_", " ").strip().lower() or None
    text = anchor.get_text(" ", strip=True)
    return text.lower() or None


def parse_gallery(url: str, html: str) -> ParsedGallery:
    for marker in _NOT_FOUND_MARKERS:
        if marker in html:
            raise NotFoundError(f"Gallery not found: {url}")

    soup = BeautifulSoup(html, "html.parser")

    title_el = soup.select_one("h1#gn") or soup.select_one("h1#gj")
    title = title_el.get_text(strip=True) if title_el else ""
    if not title:
        raise ParseError(f"Gallery title not found: {url}")

    tags: List[str] = []
    for a in soup.select("#taglist a"):
        name = _tag_name(a)
        if name and name not in tags:
            tags.append(name)

    image_pages: List[str] = []
    for a in soup.select("#gdt a[href]"):
        href = a["href"]
        if _IMAGE_PAGE_RE.search(href) and href not in image_pages:
            image_pages.append(href)

    page_count = 1
    for a in soup.select("table.ptt a[href]"):
        query = urlparse(a["href"]).query
        m = re.search(r"(?:^|&)p=(\d+)", query)
        if m:
            page_count = max(page_count, int(m.group(1)) + 1)

    return ParsedGallery(title=title, tags=sorted(tags), image_pages=image_pages, page_count=page_count)


def parse_image_page(url: str, html: str) -> str:
    soup = BeautifulSoup(html, "html.parser")
    img = soup.select_one("img#img")
    src = img.get("src") if img is not None else None
    if not src:
        raise ParseError(f"Image not found on page: {url}")
    return str(src)


def _raise_if_banned(html: str) -> None:
    for marker in _BANNED_MARKERS:
        if marker in html:
            raise SourceUnavailableError(f"Source refused the request: {marker}")


def parse_search_results(html: str) -> List[str]:
    """Gallery URLs on a search result page, in page order.

    Returns [] only when the site reports no hits or the result table is
    empty. A ban notice raises SourceUnavailableError; any other page raises
    ParseError.
    """
    if any(marker in html for marker in _NO_HITS_MARKERS):
        return []
    _raise_if_banned(html)

    soup = BeautifulSoup(html, "html.parser")
    container = soup.select_one(".itg")
    if container is None:
        raise ParseError("Search result table not found")
    out: List[str] = []
    for a in container.select("a[href]"):
        href = a["href"]
        if not _GALLERY_RE.search(urlparse(href).path):
            continue
        gid, token = parse_gallery_url(href)
        parsed = urlparse(href)
        normalized = f"{parsed.scheme}://{parsed.netloc}/g/{gid}/{token}/" if parsed.netloc else href
        if normalized not in out:
            out.append(normalized)
    return out


@dataclass
class ExhentaiSource:
    settings: Settings
    session_factory: Optional[Callable[[], aiohttp.ClientSession]] = field(default=None)

    def _session(self) -> aiohttp.ClientSession:
        if self.session_factory is not None:
            return self.session_factory()
        if not self.settings.has_exh_credentials:
            log.warning("EXH_MEMBER_ID / EXH_PASS_HASH are not set; exhentai will return an empty page.")
        return aiohttp.ClientSession(
            headers={"User-Agent": self.settings.user_agent},
            cookies=self.settings.exh_cookies(),
            timeout=aiohttp.ClientTimeout(total=self.settings.request_timeout),
        )

    async def _get_text(self, session: aiohttp.ClientSession, url: str, *, params: Optional[dict] = None) -> str:
        try:
            async with session.get(url, params=params) as resp:
                if resp.status == 404:
                    raise NotFoundError(f"Not found: {url}")
                if resp.status >= 400:
                    raise SourceUnavailableError(f"Source returned HTTP {resp.status} for {url}")
                text = await resp.text(errors="replace")
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise SourceUnavailableError(f"Source request failed for {url}: {e!r}") from e

        if not text.strip():
            # exhentai serves a blank page to clients without valid cookies
            raise SourceUnavailableError(f"Empty response from {url} (check EXH_* cookies)")
        _raise_if_banned(text)
        return text

    def source_id(self, url: str) -> str:
        return source_id_from_url(url)

    async def resolve_random(self, query: str) -> str:
        """Pick one gallery URL matching `query`. No fallback to an unfiltered pick."""
        params = {"f_search": query} if query else None
        async with self._session() as session:
            html = await self._get_text(session, self.settings.exh_base_url + "/", params=params)

        try:
            urls = parse_search_results(html)
        except ParseError:
            log.warning("Unrecognized search page for query=%r (source format drift?)", query)
            raise
        if not urls:
            raise NoMatchError(query)
        choice = random.choice(urls)
        log.info("Random pick query=%r candidates=%s -> %s", query, len(urls), choice)
        return choice

    async def _resolve_images(self, session: aiohttp.ClientSession, image_pages: List[str]) -> List[str]:
        sem = asyncio.Semaphore(self.settings.image_concurrency)

        async def worker(page_url: str) -> str:
            async with sem:
                html = await self._get_text(session, page_url)
                return parse_image_page(page_url, html)

        tasks = [asyncio.create_task(worker(p)) for p in image_pages]
        try:
            return list(await asyncio.gather(*tasks))
        finally:
            for t in tasks:
                t.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)

    async def scrape(self, url: str) -> Doujin:
        gid, _ = parse_gallery_url(url)
        gallery_url = canonical_gallery_url(url, self.settings.exh_base_url)

        try:
            async with self._session() as session:
                html = await self._get_text(session, gallery_url)
                gallery = parse_gallery(gallery_url, html)
                image_pages = list(gallery.image_pages)

                for p in range(1, gallery.page_count):
                    html = await self._get_text(session, gallery_url, params={"p": str(p)})
                    for page in parse_gallery(gallery_url, html).image_pages:
                        if page not in image_pages:
                            image_pages.append(page)

                if not image_pages:
                    raise ParseError(f"No image pages found: {gallery_url}")

                images = await self._resolve_images(session, image_pages)
        except ParseError:
            log.warning("Unrecognized page structure while scraping %s (source format drift?)", gallery_url)
            raise

        log.info("Scraped gallery gid=%s title=%r images=%s tags=%s", gid, gallery.title, len(images), len(gallery.tags))
        return Doujin(
            doujin_id=gid,
            title=gallery.title,
            url=gallery_url,
            images=images,
            tags=gallery.tags,
        )
