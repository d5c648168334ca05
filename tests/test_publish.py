"""Tests for Telegraph page splitting and publishing."""

import asyncio
import dataclasses
import math

import pytest

from doujin_api.errors import PublishError, SourceUnavailableError
from doujin_api.jobs.publish import (
    ACCESS_TOKEN_KEY,
    build_page_nodes,
    chunk_images,
    ensure_access_token,
    page_title,
    publish_doujin,
)
from doujin_api.telegraph.client import TelegraphAPI, telegraph_path


def _img_srcs(nodes):
    return [n["attrs"]["src"] for n in nodes if n["tag"] == "img"]


def _links(nodes):
    return [n["children"][0]["attrs"]["href"] for n in nodes if n["tag"] == "p" and isinstance(n["children"][0], dict)]


class TestChunking:
    @pytest.mark.parametrize("count,size", [(1, 30), (30, 30), (31, 30), (60, 30), (61, 30), (100, 7)])
    def test_chunk_count_is_ceiling(self, count, size):
        images = [f"u{i}" for i in range(count)]
        chunks = chunk_images(images, size)

        assert len(chunks) == math.ceil(count / size)
        assert [u for c in chunks for u in c] == images
        assert all(len(c) <= size for c in chunks)

    def test_empty_gallery_is_one_page(self):
        assert chunk_images([], 30) == [[]]

    def test_invalid_page_size(self):
        with pytest.raises(ValueError):
            chunk_images(["a"], 0)

    def test_page_title(self):
        assert page_title("T", 1, 1) == "T"
        assert page_title("T", 2, 3) == "T (2/3)"

    def test_nodes_for_middle_page(self):
        nodes = build_page_nodes(["a", "b"], part=2, previous_url="https://telegra.ph/p1", next_url="https://telegra.ph/p3")

        assert _links(nodes[:1]) == ["https://telegra.ph/p1"]
        assert _img_srcs(nodes) == ["a", "b"]
        assert _links(nodes[-1:]) == ["https://telegra.ph/p3"]

    def test_nodes_never_empty(self):
        assert build_page_nodes([], title="Nothing") == [{"tag": "p", "children": ["Nothing"]}]


class TestPublishDoujin:
    def test_sixty_images_make_two_linked_pages(self, telegraph, doujin_factory):
        doujin = doujin_factory(n_images=60)

        published = asyncio.run(publish_doujin(telegraph, doujin, page_size=30))

        assert len(telegraph.created) == 2
        assert published.telegraph_url == "https://telegra.ph/page-1"
        assert doujin.telegraph_url == ""

        (page1, title1, content1), (page2, title2, content2) = telegraph.created
        assert title1.endswith("(1/2)") and title2.endswith("(2/2)")
        assert _img_srcs(content1) == doujin.images[:30]
        assert _img_srcs(content2) == doujin.images[30:]
        # page 2 starts with a link back to page 1
        assert content2[0]["tag"] == "p"
        assert _links(content2[:1]) == [page1.url]

        # page 1 is edited to link forward once page 2 exists
        assert len(telegraph.edited) == 1
        path, _, edited = telegraph.edited[0]
        assert path == page1.path
        assert _img_srcs(edited) == doujin.images[:30]
        assert _links(edited[-1:]) == [page2.url]

    @pytest.mark.parametrize("n_images,size", [(1, 30), (30, 30), (31, 30), (95, 30), (10, 3)])
    def test_page_count_and_first_url(self, telegraph, doujin_factory, n_images, size):
        doujin = doujin_factory(n_images=n_images)

        published = asyncio.run(publish_doujin(telegraph, doujin, page_size=size))

        assert len(telegraph.created) == math.ceil(n_images / size)
        assert len(telegraph.edited) == len(telegraph.created) - 1
        assert published.telegraph_url == telegraph.created[0][0].url
        all_images = [src for _, _, content in telegraph.created for src in _img_srcs(content)]
        assert all_images == doujin.images

    def test_failure_mid_sequence_raises_publish_error(self, failing_telegraph, doujin_factory):
        telegraph = failing_telegraph
        doujin = doujin_factory(n_images=60)

        with pytest.raises(PublishError):
            asyncio.run(publish_doujin(telegraph, doujin, page_size=30))

        assert len(telegraph.created) == 1
        assert doujin.telegraph_url == ""

    def test_transport_failure_becomes_publish_error(self, doujin_factory):
        class Down:
            access_token = "t"

            async def create_page(self, *args, **kwargs):
                raise SourceUnavailableError("connection reset")

        with pytest.raises(PublishError) as exc_info:
            asyncio.run(publish_doujin(Down(), doujin_factory(n_images=3), page_size=30))
        assert isinstance(exc_info.value.__cause__, SourceUnavailableError)


class TestAccessToken:
    def test_configured_token_wins(self, settings, repo):
        api = TelegraphAPI(access_token="abc")
        assert asyncio.run(ensure_access_token(api, settings=settings, repo=repo)) is api

    def test_stored_token_is_used(self, settings, repo):
        repo.set_setting(ACCESS_TOKEN_KEY, "stored")
        no_env_token = dataclasses.replace(settings, telegraph_access_token="")

        api = asyncio.run(ensure_access_token(TelegraphAPI(), settings=no_env_token, repo=repo))

        assert api.access_token == "stored"

    def test_account_created_and_stored(self, settings, repo, monkeypatch):
        async def fake_create_account(self, short_name, author_name="", author_url=""):
            return f"new-token-for-{short_name}"

        monkeypatch.setattr(TelegraphAPI, "create_account", fake_create_account)
        no_env_token = dataclasses.replace(settings, telegraph_access_token="", telegraph_short_name="bot")

        api = asyncio.run(ensure_access_token(TelegraphAPI(), settings=no_env_token, repo=repo))

        assert api.access_token == "new-token-for-bot"
        assert repo.get_setting(ACCESS_TOKEN_KEY) == "new-token-for-bot"


class TestTelegraphPath:
    def test_valid_urls(self):
        assert telegraph_path("https://telegra.ph/My-Gallery-10-18") == "My-Gallery-10-18"
        assert telegraph_path("https://graph.org/My-Gallery-10-18-2/") == "My-Gallery-10-18-2"

    @pytest.mark.parametrize("url", ["", "https://example.com/page", "https://telegra.ph/", "https://telegra.ph/a/b"])
    def test_unrecognized_urls(self, url):
        with pytest.raises(PublishError):
            telegraph_path(url)
