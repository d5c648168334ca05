from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional
from urllib.parse import urlparse

import aiohttp

from doujin_api.errors import PublishError, SourceUnavailableError

log = logging.getLogger(__name__)

TELEGRAPH_HOSTS = {"telegra.ph", "www.telegra.ph", "graph.org"}

Node = Dict[str, Any]


@dataclass(frozen=True)
class TelegraphPage:
    path: str
    url: str


def telegraph_path(url: str) -> str:
    """Page path of a telegra.ph URL, e.g. "My-Title-01-01"."""
    parsed = urlparse((url or "").strip())
    host = (parsed.netloc or "").lower()
    path = parsed.path.strip("/")
    if host not in TELEGRAPH_HOSTS or not path or "/" in path:
        raise PublishError(f"Not a Telegraph page URL: {url!r}")
    return path


@dataclass(frozen=True)
class TelegraphAPI:
    api_url: str = "https://api.telegra.ph"
    access_token: str = ""
    timeout: float = 30.0
    session_factory: Optional[Callable[[], aiohttp.ClientSession]] = field(default=None, compare=False)

    def _session(self) -> aiohttp.ClientSession:
        if self.session_factory is not None:
            return self.session_factory()
        return aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=self.timeout))

    async def _call(self, method: str, data: Optional[Dict[str, str]] = None) -> Any:
        url = f"{self.api_url}/{method}"
        try:
            async with self._session() as session:
                async with session.post(url, data=data or {}) as resp:
                    if resp.status >= 500:
                        raise SourceUnavailableError(f"Telegraph returned HTTP {resp.status} for {method}")
                    payload = await resp.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise SourceUnavailableError(f"Telegraph request failed ({method}): {e!r}") from e
        except ValueError as e:
            raise PublishError(f"Telegraph returned a non-JSON response for {method}") from e

        if not isinstance(payload, dict) or not payload.get("ok"):
            error = payload.get("error") if isinstance(payload, dict) else payload
            raise PublishError(f"Telegraph {method} failed: {error}")
        return payload.get("result")

    def _require_token(self) -> str:
        if not self.access_token:
            raise PublishError("Telegraph access token is not configured")
        return self.access_token

    async def create_account(self, short_name: str, author_name: str = "", author_url: str = "") -> str:
        result = await self._call(
            "createAccount",
            {"short_name": short_name, "author_name": author_name, "author_url": author_url},
        )
        token = (result or {}).get("access_token")
        if not token:
            raise PublishError("Telegraph createAccount returned no access token")
        log.info("Created Telegraph account short_name=%s", short_name)
        return str(token)

    def _page_data(self, title: str, content: List[Node], author_name: str, author_url: str) -> Dict[str, str]:
        return {
            "access_token": self._require_token(),
            "title": title[:256],
            "author_name": author_name[:128],
            "author_url": author_url[:512],
            "content": json.dumps(content, ensure_ascii=False),
            "return_content": "false",
        }

    @staticmethod
    def _to_page(result: Any, method: str) -> TelegraphPage:
        if not isinstance(result, dict) or not result.get("url") or not result.get("path"):
            raise PublishError(f"Telegraph {method} returned no page: {result!r}")
        return TelegraphPage(path=str(result["path"]), url=str(result["url"]))

    async def create_page(
        self, title: str, content: List[Node], *, author_name: str = "", author_url: str = ""
    ) -> TelegraphPage:
        result = await self._call("createPage", self._page_data(title, content, author_name, author_url))
        return self._to_page(result, "createPage")

    async def edit_page(
        self, path: str, title: str, content: List[Node], *, author_name: str = "", author_url: str = ""
    ) -> TelegraphPage:
        result = await self._call(f"editPage/{path}", self._page_data(title, content, author_name, author_url))
        return self._to_page(result, "editPage")

    async def get_views(self, url: str) -> int:
        path = telegraph_path(url)
        result = await self._call(f"getViews/{path}")
        try:
            return int((result or {})["views"])
        except (KeyError, TypeError, ValueError) as e:
            raise PublishError(f"Telegraph getViews returned no view count for {url}") from e
