from __future__ import annotations
import asyncio
import logging
from typing import List

import aiohttp

from app.config import Settings
from app.errors import ConfigurationError, SearchUnavailable
from app.schema import SearchResult
from app.tools.http import HttpClient

log = logging.getLogger("search")

SERPER_URL = "https://google.serper.dev"


class SearchClient(HttpClient):
    """query(text, page, locale) -> ordered results; [] means zero results, never an outage."""

    async def query(self, text: str, page: int = 1, locale: str = "fr-FR") -> List[SearchResult]:
        raise NotImplementedError

    async def health(self) -> bool:
        try:
            await self.query("ping", 1)
            return True
        except SearchUnavailable as e:
            log.warning("search not ready: %s", e)
            return False


class SearxngSearch(SearchClient):
    """Self-hosted SearXNG instance (format=json must be enabled)"""

    async def query(self, text: str, page: int = 1, locale: str = "fr-FR") -> List[SearchResult]:
        if not text or not text.strip():
            return []
        await self.connect()
        params = {"q": text, "format": "json", "pageno": str(page), "language": locale}
        try:
            async with self.session.get(self.url("/search"), params=params) as r:
                if r.status >= 400:
                    raise SearchUnavailable(f"SearXNG HTTP {r.status}: {(await r.text())[:300]}")
                data = await r.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise SearchUnavailable(f"SearXNG unreachable at {self.base_url}: {e}") from e

        results = data.get("results") if isinstance(data, dict) else None
        out = [
            SearchResult(title=r.get("title") or "", snippet=r.get("content") or "", link=r.get("url") or "")
            for r in (results or [])
        ]
        log.info("searxng q=%r page=%d -> %d hits", text, page, len(out))
        return out


class SerperSearch(SearchClient):
    """Google results through serper.dev"""

    def __init__(self, api_key: str, timeout: int = 20):
        super().__init__(SERPER_URL, timeout, headers={"X-API-KEY": api_key, "Content-Type": "application/json"})

    async def query(self, text: str, page: int = 1, locale: str = "fr-FR") -> List[SearchResult]:
        if not text or not text.strip():
            return []
        await self.connect()
        lang, _, country = locale.partition("-")
        payload = {"q": text, "page": page, "num": 10, "hl": lang.lower(), "gl": (country or lang).lower()}
        try:
            async with self.session.post(self.url("/search"), json=payload) as r:
                if r.status >= 400:
                    raise SearchUnavailable(f"Serper HTTP {r.status}: {(await r.text())[:300]}")
                data = await r.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise SearchUnavailable(f"Serper unreachable: {e}") from e

        out = [
            SearchResult(title=r.get("title") or "", snippet=r.get("snippet") or "", link=r.get("link") or "")
            for r in (data.get("organic") or [])
        ]
        log.info("serper q=%r page=%d -> %d hits", text, page, len(out))
        return out


def build_search_client(s: Settings) -> SearchClient:
    if s.search_backend == "serper":
        if not s.serper_api_key:
            raise ConfigurationError("SERPER_API_KEY is missing (SEARCH_BACKEND=serper)")
        return SerperSearch(s.serper_api_key, timeout=s.search_timeout)
    if s.search_backend == "searxng":
        return SearxngSearch(s.searxng_base, timeout=s.search_timeout)
    raise ConfigurationError(f"unknown SEARCH_BACKEND {s.search_backend!r}")
