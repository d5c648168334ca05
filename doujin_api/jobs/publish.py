from __future__ import annotations

import dataclasses
import logging
from typing import List, Optional

from doujin_api.db.repo import Repo
from doujin_api.errors import DoujinApiError, PublishError
from doujin_api.models import Doujin
from doujin_api.settings import Settings
from doujin_api.telegraph.client import Node, TelegraphAPI, TelegraphPage

log = logging.getLogger(__name__)

ACCESS_TOKEN_KEY = "telegraph_access_token"

def chunk_images(images: List[str], page_size: int) -> List[List[str]]:
    if page_size < 1:
        raise ValueError("page_size must be >= 1")
    if not images:
        return [[]]
    return [images[i:i + page_size] for i in range(0, len(images), page_size)]

def page_title(title: str, part: int, parts: int) -> str:
    if parts <= 1:
        return title
    return f"{title} ({part}/{parts})"

def _link(href: str, text: str) -> Node:
    return {"tag": "p", "children": [{"tag": "a", "attrs": {"href": href}, "children": [text]}]}

def build_page_nodes(
    images: List[str],
    *,
    title: str = "",
    part: int = 1,
    previous_url: Optional[str] = None,
    next_url: Optional[str] = None,
) -> List[Node]:
    nodes: List[Node] = []
    if previous_url:
        nodes.append(_link(previous_url, f"« Continued from part {part - 1}"))
    nodes.extend({"tag": "img", "attrs": {"src": src}} for src in images)
    if next_url:
        nodes.append(_link(next_url, f"Continued in part {part + 1} »"))
    if not nodes:
        # telegraph rejects empty content
        nodes.append({"tag": "p", "children": [title or "(empty)"]})
    return nodes

async def publish_doujin(
    telegraph: TelegraphAPI,
    doujin: Doujin,
    *,
    page_size: int,
    author_name: str = "",
    author_url: str = "",
) -> Doujin:
    """Publish the doujin's images as one or more Telegraph pages.

    Pages are created in reading order. Every page after the first opens with
    a link back to the previous part, and each page is edited to end with a
    link forward once the next part exists. Returns a copy of the doujin with
    telegraph_url pointing at part 1; persisting it is the caller's job.

    Any failure raises PublishError. Pages created before the failure stay on
    Telegraph (there is no delete call); they are logged so they can be found.
    """
    chunks = chunk_images(doujin.images, page_size)
    parts = len(chunks)
    pages: List[TelegraphPage] = []

    try:
        for part, chunk in enumerate(chunks, start=1):
            previous = pages[-1] if pages else None
            page = await telegraph.create_page(
                page_title(doujin.title, part, parts),
                build_page_nodes(
                    chunk,
                    title=doujin.title,
                    part=part,
                    previous_url=previous.url if previous else None,
                ),
                author_name=author_name,
                author_url=author_url,
            )
            log.info("Created Telegraph page %s/%s for doujin_id=%s: %s", part, parts, doujin.doujin_id, page.url)

            if previous is not None:
                await telegraph.edit_page(
                    previous.path,
                    page_title(doujin.title, part - 1, parts),
                    build_page_nodes(
                        chunks[part - 2],
                        title=doujin.title,
                        part=part - 1,
                        previous_url=pages[-2].url if len(pages) > 1 else None,
                        next_url=page.url,
                    ),
                    author_name=author_name,
                    author_url=author_url,
                )
            pages.append(page)
    except DoujinApiError as e:
        if pages:
            log.warning(
                "Publishing doujin_id=%s failed after %s/%s pages; orphaned pages: %s",
                doujin.doujin_id,
                len(pages),
                parts,
                ", ".join(p.url for p in pages),
            )
        if isinstance(e, PublishError):
            raise
        raise PublishError(f"Publishing doujin_id={doujin.doujin_id} failed: {e}") from e

    return dataclasses.replace(doujin, telegraph_url=pages[0].url)

async def ensure_access_token(telegraph: TelegraphAPI, *, settings: Settings, repo: Repo) -> TelegraphAPI:
    """Return a client carrying an access token.

    Order: TELEGRAPH_ACCESS_TOKEN, then the token stored in the settings table,
    then a freshly created account whose token gets stored.
    """
    if telegraph.access_token:
        return telegraph

    token = settings.telegraph_access_token or repo.get_setting(ACCESS_TOKEN_KEY)
    if not token:
        token = await telegraph.create_account(
            settings.telegraph_short_name,
            author_name=settings.telegraph_author_name,
            author_url=settings.telegraph_author_url,
        )
        repo.set_setting(ACCESS_TOKEN_KEY, token)
    return dataclasses.replace(telegraph, access_token=token)
