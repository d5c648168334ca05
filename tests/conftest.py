"""
Shared pytest fixtures for the doujin pipeline tests.

Everything network-facing is replaced by in-memory fakes:
- FakeSource stands in for the ExHentai adapter
- FakeTelegraph records created/edited pages
- fake_download writes deterministic bytes instead of fetching images

The real HTTP clients are exercised against a local aiohttp TestServer via
the run_with_server fixture.
"""

import asyncio
import dataclasses
from pathlib import Path

import pytest
from aiohttp.test_utils import TestServer

from doujin_api.db.repo import Repo
from doujin_api.errors import NoMatchError, NotFoundError, PublishError
from doujin_api.models import Doujin
from doujin_api.settings import Settings
from doujin_api.telegraph.client import TelegraphPage, telegraph_path


GALLERY_URL = "https://example/gallery/123"


def make_doujin(doujin_id="123", n_images=60, url=None, **kwargs):
    return Doujin(
        doujin_id=doujin_id,
        title=kwargs.pop("title", f"Gallery {doujin_id}"),
        url=url or f"https://example/gallery/{doujin_id}",
        images=[f"https://img.example/{doujin_id}/{i}.jpg" for i in range(1, n_images + 1)],
        tags=kwargs.pop("tags", ["female:fox", "parody:original"]),
        **kwargs,
    )


class FakeSource:
    def __init__(self):
        self.galleries = {}
        self.search = {}
        self.scraped = []
        self.queries = []

    def add(self, doujin):
        self.galleries[doujin.url] = doujin
        return doujin

    def source_id(self, url):
        return url.rstrip("/").rsplit("/", 1)[-1]

    async def scrape(self, url):
        await asyncio.sleep(0)
        self.scraped.append(url)
        if url not in self.galleries:
            raise NotFoundError(f"Not found: {url}")
        return dataclasses.replace(self.galleries[url])

    async def resolve_random(self, query):
        self.queries.append(query)
        urls = self.search.get(query, [])
        if not urls:
            raise NoMatchError(query)
        return urls[0]


class FakeTelegraph:
    def __init__(self, fail_on_create=None):
        self.access_token = "test-token"
        self.created = []
        self.edited = []
        self.views = {}
        self.fail_on_create = fail_on_create

    async def create_page(self, title, content, *, author_name="", author_url=""):
        await asyncio.sleep(0)
        if self.fail_on_create is not None and len(self.created) + 1 == self.fail_on_create:
            raise PublishError("PAGE_SAVE_FAILED")
        n = len(self.created) + 1
        page = TelegraphPage(path=f"page-{n}", url=f"https://telegra.ph/page-{n}")
        self.created.append((page, title, content))
        return page

    async def edit_page(self, path, title, content, *, author_name="", author_url=""):
        self.edited.append((path, title, content))
        return TelegraphPage(path=path, url=f"https://telegra.ph/{path}")

    async def get_views(self, url):
        path = telegraph_path(url)
        if path not in self.views:
            raise PublishError("PAGE_NOT_FOUND")
        return self.views[path]


async def fake_download(url, dst):
    dst.parent.mkdir(parents=True, exist_ok=True)
    dst.write_bytes(f"image:{url}".encode("utf-8"))
    return dst


@pytest.fixture
def settings(tmp_path):
    base = Settings.from_env(data_dir=tmp_path / "data")
    return dataclasses.replace(
        base,
        db_url=f"sqlite:///{tmp_path / 'data' / 'test.db'}",
        work_dir=tmp_path / "data" / "work",
        telegraph_access_token="test-token",
        telegraph_page_size=30,
        image_concurrency=4,
        image_attempts=1,
    )


@pytest.fixture
def repo(settings):
    r = Repo(settings=settings)
    r.ensure_schema()
    yield r
    r.close()


@pytest.fixture
def source():
    return FakeSource()


@pytest.fixture
def telegraph():
    return FakeTelegraph()


@pytest.fixture
def failing_telegraph():
    """Fails on the second createPage call."""
    return FakeTelegraph(fail_on_create=2)


@pytest.fixture
def download():
    return fake_download


@pytest.fixture
def gallery(source):
    return source.add(make_doujin("123", n_images=60, url=GALLERY_URL))


@pytest.fixture
def doujin_factory():
    return make_doujin


@pytest.fixture
def work_dir_entries(settings):
    def _entries():
        work_dir = Path(settings.work_dir)
        if not work_dir.exists():
            return []
        return sorted(p.name for p in work_dir.iterdir())
    return _entries


@pytest.fixture
def run_with_server():
    """Run `scenario(base_url)` while `app` is served on a local port."""
    def _run(app, scenario):
        async def main():
            async with TestServer(app) as server:
                return await scenario(str(server.make_url("/")).rstrip("/"))
        return asyncio.run(main())
    return _run
