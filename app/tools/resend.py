# app/tools/resend.py
from __future__ import annotations
import asyncio, logging
from typing import List, Optional

import aiohttp

from app.errors import ConfigurationError, DeliveryError
from app.tools.http import HttpClient

log = logging.getLogger("delivery")

RESEND_URL = "https://api.resend.com"


class DeliveryClient(HttpClient):
    """Resend transactional email API"""

    def __init__(self, api_key: str | None, timeout: int = 30):
        if not api_key:
            raise ConfigurationError("RESEND_API_KEY is missing")
        super().__init__(RESEND_URL, timeout, headers={
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
        })

    async def _call(self, method: str, path: str, payload: dict | None = None):
        await self.connect()
        try:
            async with self.session.request(method, self.url(path), json=payload) as r:
                data = await r.json(content_type=None)
                if r.status >= 400:
                    message = data.get("message") if isinstance(data, dict) else None
                    raise DeliveryError(f"Resend HTTP {r.status}: {message or data}")
                return data
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            raise DeliveryError(f"Resend {method} {path} failed: {e}") from e

    async def send(self, from_: str, to: str | List[str], subject: str,
                   text: str, html: Optional[str] = None) -> str:
        """Returns the provider message id."""
        if not from_ or not to or not subject:
            raise DeliveryError("from, to and subject are required")
        if not text and not html:
            raise DeliveryError("email body is empty")
        payload = {
            "from": from_,
            "to": to if isinstance(to, list) else [to],
            "subject": subject,
            "text": text,
        }
        if html:
            payload["html"] = html
        data = await self._call("POST", "/emails", payload)
        message_id = (data or {}).get("id") or ""
        log.info("resend sent to=%s id=%s", payload["to"], message_id)
        return message_id

    async def list_verified_domains(self) -> List[str]:
        data = await self._call("GET", "/domains")
        rows = data.get("data") if isinstance(data, dict) else data
        return [d["name"] for d in (rows or []) if d.get("status") == "verified" and d.get("name")]
