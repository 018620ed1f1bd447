# app/tools/millionverifier.py
from __future__ import annotations
import asyncio, logging
from typing import List, Sequence, Union

import aiohttp

from app.errors import VerificationError
from app.tools.http import HttpClient

log = logging.getLogger("oracle")

MILLIONVERIFIER_URL = "https://api.millionverifier.com"

# ok = deliverable, catch_all = domain accepts anything, unknown = undetermined
VALID_RESULTS = frozenset({"ok", "catch_all", "unknown"})


class VerificationClient(HttpClient):
    """MillionVerifier single-address API, fanned out in fixed-size batches"""

    def __init__(self, api_key: str | None, concurrency: int = 5, timeout: int = 20):
        super().__init__(MILLIONVERIFIER_URL, timeout)
        self.api_key = api_key
        self.concurrency = max(1, concurrency)

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    @staticmethod
    def is_deliverable(result: str) -> bool:
        return (result or "").lower() in VALID_RESULTS

    async def check(self, email: str) -> str:
        """Raw oracle result for one address, lower-cased (ok, invalid, catch_all, ...)."""
        if not self.api_key:
            raise VerificationError("MILLIONVERIFIER_API_KEY is missing")
        await self.connect()
        params = {"api": self.api_key, "email": email, "timeout": "10"}
        try:
            async with self.session.get(self.url("/api/v3/"), params=params) as r:
                if r.status >= 400:
                    raise VerificationError(f"MillionVerifier HTTP {r.status}: {(await r.text())[:300]}")
                data = await r.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise VerificationError(f"MillionVerifier unreachable: {e}") from e
        if not isinstance(data, dict):
            raise VerificationError("MillionVerifier: malformed reply")
        if data.get("error"):
            raise VerificationError(f"MillionVerifier: {data['error']}")
        result = str(data.get("result") or "unknown").lower()
        log.debug("oracle %s -> %s", email, result)
        return result

    async def check_many(self, emails: Sequence[str]) -> List[Union[str, BaseException]]:
        """
        One entry per input, in input order. A failed lookup yields its exception
        in place of the result so a batch never fails as a whole.
        """
        out: List[Union[str, BaseException]] = []
        for i in range(0, len(emails), self.concurrency):
            chunk = emails[i:i + self.concurrency]
            out.extend(await asyncio.gather(*(self.check(e) for e in chunk), return_exceptions=True))
        return out
