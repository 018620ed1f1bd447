# file: app/services/registry.py
from __future__ import annotations
import logging
from functools import partial
from typing import Dict

from app.config import Settings, get_settings
from app.errors import ConfigurationError, ExternalServiceError
from app.services.queries import QueryBook
from app.services.records import Records
from app.services.store import LocalStore, PostgrestStore, RecordStore
from app.tools.fetch import fetch_page_text
from app.tools.llm import LLMClient
from app.tools.millionverifier import VerificationClient
from app.tools.resend import DeliveryClient
from app.tools.search import build_search_client

log = logging.getLogger("orchestrator")


def build_store(s: Settings) -> RecordStore:
    if s.store_backend == "supabase":
        if not s.supabase_url or not s.supabase_key:
            raise ConfigurationError("SUPABASE_URL and SUPABASE_SERVICE_KEY are required when STORE_BACKEND=supabase")
        return PostgrestStore(s.supabase_url, s.supabase_key)
    if s.store_backend == "local":
        return LocalStore(s.store_path or None)
    raise ConfigurationError(f"unknown STORE_BACKEND {s.store_backend!r}")


class ClientRegistry:
    """Central registry for the store and every external client a stage needs"""

    def __init__(self, settings: Settings | None = None, store: RecordStore | None = None):
        self.settings = settings or get_settings()
        self._store = store
        self._records: Records | None = None
        self._search = None
        self._llm: LLMClient | None = None
        self._oracle: VerificationClient | None = None
        self._delivery: DeliveryClient | None = None

    # Clients are built lazily so a stage only fails on the credentials it really needs

    def get_records(self) -> Records:
        if self._records is None:
            if self._store is None:
                self._store = build_store(self.settings)
            self._records = Records(self._store)
        return self._records

    def get_search_client(self):
        if self._search is None:
            self._search = build_search_client(self.settings)
        return self._search

    def get_llm_client(self) -> LLMClient:
        if self._llm is None:
            self._llm = LLMClient.from_settings(self.settings)
        return self._llm

    def get_oracle(self) -> VerificationClient:
        if self._oracle is None:
            self._oracle = VerificationClient(self.settings.millionverifier_api_key,
                                              concurrency=self.settings.verify_concurrency)
        return self._oracle

    def get_delivery_client(self) -> DeliveryClient:
        if self._delivery is None:
            self._delivery = DeliveryClient(self.settings.resend_api_key)
        return self._delivery

    def get_fetcher(self):
        return partial(fetch_page_text, max_chars=self.settings.chars_to_extract,
                       timeout=self.settings.fetch_timeout)

    def get_query_book(self) -> QueryBook:
        return QueryBook(self.settings.queries_file, self.settings.historic_file)

    async def connect(self):
        """Open the store; HTTP clients open their sessions on first use"""
        await self.get_records().store.connect()

    async def close(self):
        for client in (self._search, self._llm, self._oracle, self._delivery, self._store):
            if client is not None:
                await client.close()

    async def health_check(self) -> Dict[str, str]:
        """Check store, search and LLM backends"""
        status: Dict[str, str] = {}

        try:
            await self.get_records().store.select_where("contacts", {}, limit=1)
            status["store"] = "healthy"
        except (ConfigurationError, ExternalServiceError) as e:
            status["store"] = f"unhealthy: {e}"

        for name, getter in (("search", self.get_search_client), ("llm", self.get_llm_client)):
            try:
                client = getter()
            except ConfigurationError as e:
                status[name] = f"unconfigured: {e}"
                continue
            status[name] = "healthy" if await client.health() else "unhealthy"

        status["oracle"] = "configured" if self.get_oracle().configured else "disabled (no key)"
        return status
