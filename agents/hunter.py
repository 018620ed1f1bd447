# file: agents/hunter.py
import asyncio
import logging
import random
import re
from typing import Dict, List, Optional, Set

from email_validator import EmailNotValidError, validate_email

from app.errors import SearchUnavailable, StoreError, UniqueViolation
from app.logging_utils import progress
from app.schema import SearchResult, StageReport

log = logging.getLogger("hunter")

EMAIL_REGEX = re.compile(r"[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}")

# File names that look like addresses (logo@2x.png ...)
MEDIA_EXTENSIONS = re.compile(
    r"\.(avif|jpeg|jpg|png|gif|webp|svg|bmp|tiff|ico|mp4|webm|mov|avi|mp3|wav|flac|pdf)$", re.I
)

# Placeholders, service mailboxes and job boards
FAKE_EMAILS = re.compile(
    r"noreply|exemple|example|test|no-reply|mydomain|mywebsite|mycompany|myorg|company|email|"
    r"website|business|yourcompany|yourorg|yourbusiness|youremail|monemail|domain|zoominfo|"
    r"partial-match|full-match|aplitrak\.com|makesense\.org|officeteam|shopify\.com|talent\.com|"
    r"sentry\.io|abuse",
    re.I,
)


def is_media_email(email: str) -> bool:
    return bool(MEDIA_EXTENSIONS.search((email or "").strip().lower()))


def normalize_email(raw: str) -> Optional[str]:
    """Lower-cased, syntax-checked address or None when it must be dropped."""
    candidate = raw.strip().lower()
    if is_media_email(candidate) or FAKE_EMAILS.search(candidate):
        return None
    try:
        info = validate_email(candidate, check_deliverability=False)
    except EmailNotValidError:
        return None
    return info.normalized.lower()


def extract_emails(result: SearchResult) -> List[str]:
    text = " ".join([result.title, result.snippet, result.link])
    return EMAIL_REGEX.findall(text)


class Hunter:
    """Discover: turns pending search queries into new contacts"""

    def __init__(self, registry):
        self.registry = registry
        self.settings = registry.settings
        self.records = registry.get_records()
        self.search = registry.get_search_client()
        self.queries = registry.get_query_book()
        self._requests = 0

    async def _polite_pause(self):
        # every request after the first waits a random delay
        if self._requests:
            await asyncio.sleep(random.uniform(self.settings.search_delay_min, self.settings.search_delay_max))
        self._requests += 1

    async def _harvest(self, query: str, domain: str, seen: Set[str]) -> List[Dict[str, str]]:
        """Paged search of one query x domain; ``seen`` is shared by every domain of the query."""
        search_str = f'"{query}" "{domain}"'
        found: List[Dict[str, str]] = []

        for page in range(1, self.settings.pages_count + 1):
            await self._polite_pause()
            results = await self.search.query(search_str, page=page, locale=self.settings.search_locale)

            new_count = 0
            for r in results:
                for raw in extract_emails(r):
                    email = normalize_email(raw)
                    if not email or email in seen:
                        continue
                    seen.add(email)
                    new_count += 1
                    found.append({"email": email, "title": r.title, "description": r.snippet, "url": r.link})

            log.info("extracted %d | page %d | domain %s", new_count, page, domain)
            if len(results) <= 1 or new_count == 0:
                break

        return found

    async def _store(self, query: str, candidates: List[Dict[str, str]], report: StageReport) -> int:
        inserted = 0
        for c in candidates:
            data = {"title": c["title"], "description": c["description"], "url": c["url"]}
            try:
                if await self.records.contact_by_email(c["email"]):
                    report.bump("duplicates")
                    continue
                await self.records.create_contact(c["email"], query, data)
            except UniqueViolation:
                # another run inserted it between the lookup and the insert
                report.bump("duplicates")
                continue
            except StoreError as e:
                log.error("insert failed for %s: %s", c["email"], e)
                report.errors += 1
                continue
            inserted += 1
        return inserted

    async def run(self, queries: Optional[List[str]] = None) -> StageReport:
        report = StageReport(stage="discover")
        queries = queries if queries is not None else self.queries.pending()
        report.selected = len(queries)
        self._requests = 0

        for i, query in enumerate(queries, 1):
            log.info("%s query %r", progress(i, len(queries)), query)
            seen: Set[str] = set()
            candidates: List[Dict[str, str]] = []
            try:
                for domain in self.settings.email_domains:
                    candidates.extend(await self._harvest(query, domain, seen))
            except SearchUnavailable as e:
                log.error("search unavailable for %r, query stays pending: %s", query, e)
                report.errors += 1
                continue

            report.bump("extracted", len(candidates))
            inserted = await self._store(query, candidates, report)
            report.bump("inserted", inserted)
            self.queries.mark_done(query)
            report.processed += 1
            log.info("query %r: extracted %d | inserted %d", query, len(candidates), inserted)

        return report
