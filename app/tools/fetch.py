from __future__ import annotations
import asyncio, logging, re
from typing import Optional
from urllib.parse import urlparse

import aiohttp
from bs4 import BeautifulSoup

log = logging.getLogger("fetch")

UA = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) "
    "AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/124.0.0.0 Safari/537.36"
)

# No informational value and likely to block us
SOCIAL_DOMAINS = ("facebook.com", "instagram.com", "linkedin.com", "tiktok.com")

def is_social(url: str) -> bool:
    host = (urlparse(url).hostname or "").lower()
    return any(host == d or host.endswith("." + d) for d in SOCIAL_DOMAINS)

def homepage_url(raw: str | None) -> Optional[str]:
    """Origin of any URL, path dropped: https://site.fr/a/b -> https://site.fr/"""
    if not raw:
        return None
    u = urlparse(str(raw).strip())
    if u.scheme not in ("http", "https") or not u.netloc:
        return None
    return f"{u.scheme}://{u.netloc}/"

def clean_html(html: str) -> str:
    soup = BeautifulSoup(html or "", "html.parser")
    for tag in soup(["script", "style", "noscript", "template"]):
        tag.decompose()
    root = soup.body or soup
    text = root.get_text(" ")
    return re.sub(r"\s+", " ", text).strip()

async def fetch_page_text(url: str, max_chars: int = 1000, timeout: int = 15,
                          session: aiohttp.ClientSession | None = None) -> Optional[str]:
    """
    Readable text of a page truncated to max_chars.
    Returns None for social networks, non-HTML payloads or any fetch failure.
    """
    if not url or not url.strip().lower().startswith(("http://", "https://")):
        return None
    url = url.strip()
    if is_social(url):
        log.info("fetch skipped (social network) %s", url)
        return None

    headers = {"User-Agent": UA, "Accept": "text/html,application/xhtml+xml"}
    own = session is None
    if own:
        session = aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=timeout))
    try:
        async with session.get(url, headers=headers, allow_redirects=True) as r:
            if r.status >= 400:
                log.warning("fetch %s -> HTTP %d", url, r.status)
                return None
            ctype = (r.headers.get("content-type") or "").lower()
            if ctype and "html" not in ctype and "text" not in ctype:
                log.info("fetch %s skipped content-type=%s", url, ctype)
                return None
            html = await r.text(errors="replace")
    except (aiohttp.ClientError, asyncio.TimeoutError, UnicodeDecodeError) as e:
        log.warning("fetch failed %s: %s", url, e)
        return None
    finally:
        if own:
            await session.close()

    text = clean_html(html)
    return text[:max_chars] if text else None
