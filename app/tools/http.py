from __future__ import annotations
import aiohttp


class HttpClient:
    """Base async HTTP client holding one lazily opened aiohttp session"""

    def __init__(self, base_url: str, timeout: int = 30, headers: dict | None = None):
        self.base_url = base_url.rstrip("/")
        self.timeout = aiohttp.ClientTimeout(total=timeout)
        self.headers = headers or {}
        self.session: aiohttp.ClientSession | None = None

    async def connect(self):
        """Initialize connection"""
        if not self.session:
            self.session = aiohttp.ClientSession(headers=self.headers, timeout=self.timeout)

    async def close(self):
        """Close connection"""
        if self.session:
            await self.session.close()
            self.session = None

    def url(self, path: str) -> str:
        return f"{self.base_url}/{path.lstrip('/')}"
