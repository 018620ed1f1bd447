# app/config.py
from __future__ import annotations
import os
from dataclasses import dataclass, field
from typing import List, Optional

def _as_bool(v: str | None, default: bool = False) -> bool:
    if v is None:
        return default
    return v.strip().lower() in ("1", "true", "yes", "on")

def _as_limit(v: str | None, default: Optional[int] = None) -> Optional[int]:
    """'*' means unlimited (None)."""
    if v is None or not v.strip():
        return default
    v = v.strip()
    if v == "*":
        return None
    return int(v)

def _as_list(v: str | None, default: List[str]) -> List[str]:
    if v is None or not v.strip():
        return list(default)
    return [p.strip() for p in v.split(",") if p.strip()]

# Generic public mailbox providers used as search filters
EMAIL_DOMAINS = [
    "@gmail.com",
    "@yahoo.fr",
    "@hotmail.com",
    "@outlook.com",
    "@live.com",
    "@msn.com",
    "@aol.com",
    "@yahoo.com",
    "@laposte.net",
    "@free.fr",
]

@dataclass
class Settings:
    # Record store: "local" (JSON file) or "supabase" (PostgREST)
    store_backend: str = os.getenv("STORE_BACKEND", "local")
    store_path: str = os.getenv("STORE_PATH", "data/store.json")
    supabase_url: str | None = os.getenv("SUPABASE_URL") or None
    supabase_key: str | None = os.getenv("SUPABASE_SERVICE_KEY") or os.getenv("SUPABASE_KEY") or None

    # Search backend: "searxng" or "serper"
    search_backend: str = os.getenv("SEARCH_BACKEND", "searxng")
    searxng_base: str = os.getenv("SEARXNG_BASE_URL", "http://localhost:8080")
    serper_api_key: str | None = os.getenv("SERPER_API_KEY") or None
    search_locale: str = os.getenv("SEARCH_LOCALE", "fr-FR")
    search_timeout: int = int(os.getenv("SEARCH_TIMEOUT", "20"))

    # Generation backend: "ollama" or "openai" (any OpenAI-compatible server, e.g. vLLM)
    llm_backend: str = os.getenv("LLM_BACKEND", "ollama")
    ollama_base: str = os.getenv("OLLAMA_BASE_URL", "http://127.0.0.1:11434")
    ollama_model: str = os.getenv("OLLAMA_MODEL", "qwen2.5:7b-instruct-q4_K_M")
    llm_base_url: str | None = os.getenv("LLM_BASE_URL") or None
    llm_api_key: str | None = os.getenv("LLM_API_KEY") or None
    llm_model: str | None = os.getenv("LLM_MODEL") or None
    llm_timeout: int = int(os.getenv("LLM_TIMEOUT", "600"))

    # Deliverability oracle (MillionVerifier); no key -> every address passes
    millionverifier_api_key: str | None = os.getenv("MILLIONVERIFIER_API_KEY") or None
    verify_concurrency: int = int(os.getenv("VERIFY_CONCURRENCY", "5"))

    # Delivery provider (Resend)
    resend_api_key: str | None = os.getenv("RESEND_API_KEY") or None

    # Discover
    pages_count: int = int(os.getenv("PAGES_COUNT", "10"))
    search_delay_min: float = float(os.getenv("SEARCH_DELAY_MIN", "1.0"))
    search_delay_max: float = float(os.getenv("SEARCH_DELAY_MAX", "3.0"))
    email_domains: List[str] = field(default_factory=lambda: _as_list(os.getenv("EMAIL_DOMAINS"), EMAIL_DOMAINS))
    queries_file: str = os.getenv("QUERIES_FILE", "input.txt")
    historic_file: str = os.getenv("HISTORIC_FILE", "historic.txt")

    # Per-stage contact counts ('*' = unlimited)
    contacts_to_verify: Optional[int] = _as_limit(os.getenv("CONTACTS_TO_VERIFY"), None)
    contacts_to_enrich: Optional[int] = _as_limit(os.getenv("CONTACTS_TO_ENRICH"), None)
    contacts_to_copywrite: Optional[int] = _as_limit(os.getenv("CONTACTS_TO_COPYWRITE"), 4)
    contacts_to_send: Optional[int] = _as_limit(os.getenv("CONTACTS_TO_SEND"), 1)

    # Verify
    verify_statuses: List[str] = field(default_factory=lambda: _as_list(os.getenv("VERIFY_STATUSES"), ["new"]))
    interest_gate: bool = _as_bool(os.getenv("INTEREST_GATE"), False)

    # Enrich
    enrich_from: str = os.getenv("ENRICH_FROM", "verified")
    enrich_interlocutor: bool = _as_bool(os.getenv("ENRICH_INTERLOCUTOR"), True)
    chars_to_extract: int = int(os.getenv("CHARS_TO_EXTRACT", "1000"))
    fetch_timeout: int = int(os.getenv("FETCH_TIMEOUT", "15"))

    # Dispatch: "draft" sends the stored draft, "template" composes a static email
    dispatch_mode: str = os.getenv("DISPATCH_MODE", "draft")
    lease_ttl_minutes: int = int(os.getenv("LEASE_TTL_MINUTES", "30"))
    retry_errors: bool = _as_bool(os.getenv("RETRY_ERRORS"), False)

_settings: Settings | None = None

def get_settings() -> Settings:
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings
