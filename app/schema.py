# file: app/schema.py
from __future__ import annotations
from datetime import datetime
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Mapping, Optional, Union
from pydantic import BaseModel, Field


class ContactStatus(str, Enum):
    NEW = "new"
    VERIFIED = "verified"
    REJECTED = "rejected"
    ENRICHED = "enriched"
    READY = "ready"
    PROCESSING = "processing"
    PROCESSED = "processed"
    ERROR = "error"


S = ContactStatus

# source status -> statuses a stage may move it to
TRANSITIONS: Mapping[ContactStatus, FrozenSet[ContactStatus]] = {
    S.NEW: frozenset({S.VERIFIED, S.REJECTED, S.ENRICHED}),
    S.VERIFIED: frozenset({S.ENRICHED}),
    # only reachable through an explicit re-verification run
    S.REJECTED: frozenset({S.VERIFIED, S.REJECTED}),
    S.ENRICHED: frozenset({S.READY}),
    S.READY: frozenset({S.PROCESSING, S.ENRICHED, S.ERROR}),
    S.PROCESSING: frozenset({S.PROCESSED, S.ERROR, S.ENRICHED, S.READY}),
    S.ERROR: frozenset({S.PROCESSING, S.ENRICHED}),
    S.PROCESSED: frozenset(),
}

# rejected only leaves through re-verification, so the forward pipeline treats it as terminal
TERMINAL = frozenset({S.REJECTED, S.PROCESSED})

if set(TRANSITIONS) != set(ContactStatus):
    raise RuntimeError("transition table must cover every contact status")


class IllegalTransition(ValueError):
    def __init__(self, src: ContactStatus, dst: ContactStatus):
        super().__init__(f"illegal status transition {src.value} -> {dst.value}")
        self.src, self.dst = src, dst


def check_transition(src: ContactStatus | str, dst: ContactStatus | str) -> ContactStatus:
    src, dst = ContactStatus(src), ContactStatus(dst)
    if dst not in TRANSITIONS[src]:
        raise IllegalTransition(src, dst)
    return dst


MetaValue = Union[str, int, float, bool, Dict[str, Any], None]


class Contact(BaseModel):
    id: str
    email: str
    status: ContactStatus = ContactStatus.NEW
    source_query: str = ""
    additional_data: Dict[str, MetaValue] = Field(default_factory=dict)
    persona: Optional[str] = None
    identity_id: Optional[str] = None
    note: Optional[str] = None
    created_at: datetime
    lease_owner: Optional[str] = None
    lease_expires_at: Optional[datetime] = None

    def meta(self, key: str, default: Any = None) -> Any:
        return (self.additional_data or {}).get(key, default)

    def merged_data(self, extra: Mapping[str, MetaValue]) -> Dict[str, MetaValue]:
        """additional_data is only ever merged, never replaced."""
        out = dict(self.additional_data or {})
        out.update({k: v for k, v in extra.items() if v is not None})
        return out


class Identity(BaseModel):
    id: str
    name: str
    company: str = ""
    email: Optional[str] = None
    website: Optional[str] = None
    active: bool = False
    created_at: Optional[datetime] = None


class EmailStatus(str, Enum):
    DRAFT = "draft"
    SENT = "sent"
    ERROR = "error"


class Email(BaseModel):
    id: str
    contact_id: str
    object: str
    content: str
    cta: Optional[str] = None
    footer: Optional[str] = None
    status: EmailStatus = EmailStatus.DRAFT
    sent_at: Optional[datetime] = None
    used_domain: Optional[str] = None
    error: Optional[str] = None
    created_at: Optional[datetime] = None

    def text_body(self) -> str:
        parts = [self.content, self.cta, self.footer]
        return "\n\n".join(p.strip() for p in parts if p and p.strip())


class Interlocutor(BaseModel):
    interlocutor: str
    company: str = ""
    source_url: str = ""
    localisation: Optional[str] = None


class SearchResult(BaseModel):
    title: str = ""
    snippet: str = ""
    link: str = ""


class StageReport(BaseModel):
    stage: str
    selected: int = 0
    processed: int = 0
    skipped: int = 0
    errors: int = 0
    rejected_by_reason: Dict[str, int] = Field(default_factory=dict)
    extra: Dict[str, Any] = Field(default_factory=dict)

    def bump(self, key: str, n: int = 1) -> None:
        self.extra[key] = self.extra.get(key, 0) + n


class PipelineRequest(BaseModel):
    stages: Optional[List[str]] = None
