# file: app/services/records.py
"""Typed access to contacts, identities and emails on top of a RecordStore."""
from __future__ import annotations
import logging
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, List, Optional

from app.errors import StoreError
from app.schema import (
    Contact, ContactStatus, Email, EmailStatus, Identity, check_transition,
)
from app.services.store import RecordStore, now_utc

log = logging.getLogger("store")

CONTACTS = "contacts"
IDENTITIES = "identities"
EMAILS = "emails"


class Records:
    def __init__(self, store: RecordStore):
        self.store = store

    # ---- contacts -----------------------------------------------------

    async def contacts_in_status(self, statuses: Iterable[ContactStatus | str],
                                 limit: Optional[int] = None) -> List[Contact]:
        """Oldest first; limit None means every matching row."""
        values = [ContactStatus(s).value for s in statuses]
        status_filter = values[0] if len(values) == 1 else ("in", values)
        rows = await self.store.select_where(
            CONTACTS,
            {"status": status_filter, "email": ("not_is", None)},
            limit=limit, order_by="created_at", ascending=True,
        )
        return [Contact(**r) for r in rows if r.get("email")]

    async def recent_contacts(self, limit: int = 100) -> List[Contact]:
        rows = await self.store.select_where(CONTACTS, {}, limit=limit, order_by="created_at", ascending=False)
        return [Contact(**r) for r in rows]

    async def contact_by_email(self, email: str) -> Optional[Contact]:
        rows = await self.store.select(CONTACTS, "email", email.lower(), limit=1)
        return Contact(**rows[0]) if rows else None

    async def get_contact(self, contact_id: str) -> Optional[Contact]:
        rows = await self.store.select(CONTACTS, "id", contact_id, limit=1)
        return Contact(**rows[0]) if rows else None

    async def create_contact(self, email: str, source_query: str, data: Dict[str, Any]) -> Contact:
        row = await self.store.insert(CONTACTS, {
            "email": email.lower(),
            "source_query": source_query,
            "additional_data": data,
            "status": ContactStatus.NEW.value,
        })
        return Contact(**row)

    async def transition(self, contact: Contact, target: ContactStatus, *,
                         expect_current: bool = False, **patch: Any) -> Optional[Contact]:
        """
        Move a contact along the status table and apply ``patch`` in the same
        single-row update. With expect_current the write only lands if the
        stored status is still ``contact.status`` (returns None otherwise).
        """
        check_transition(contact.status, target)
        changes = {**patch, "status": target.value}
        expect = {"status": contact.status.value} if expect_current else None
        row = await self.store.update(CONTACTS, "id", contact.id, changes, expect=expect)
        if row is None:
            return None
        log.debug("contact %s: %s -> %s", contact.email, contact.status.value, target.value)
        return Contact(**row)

    async def merge_data(self, contact: Contact, extra: Dict[str, Any]) -> Contact:
        row = await self.store.update(CONTACTS, "id", contact.id,
                                      {"additional_data": contact.merged_data(extra)})
        return Contact(**row)

    async def link_identity(self, contact: Contact, identity: Identity) -> Contact:
        """identity_id is write-once."""
        if contact.identity_id:
            return contact
        row = await self.store.update(CONTACTS, "id", contact.id, {"identity_id": identity.id},
                                      expect={"identity_id": ("is", None)})
        if row is None:
            fresh = await self.get_contact(contact.id)
            if fresh is None:
                raise StoreError(f"contact {contact.id} vanished")
            return fresh
        return Contact(**row)

    async def claim(self, contact: Contact, owner: str, ttl: timedelta) -> Optional[Contact]:
        """Take a dispatch lease; None when another run got there first."""
        return await self.transition(
            contact, ContactStatus.PROCESSING, expect_current=True,
            lease_owner=owner, lease_expires_at=(now_utc() + ttl).isoformat(),
        )

    async def expired_leases(self, now: Optional[datetime] = None) -> List[Contact]:
        now = now or now_utc()
        rows = await self.store.select_where(
            CONTACTS,
            {"status": ContactStatus.PROCESSING.value, "lease_expires_at": ("lt", now.isoformat())},
            order_by="created_at", ascending=True,
        )
        return [Contact(**r) for r in rows]

    async def stranded(self) -> List[Contact]:
        """processing rows with no lease at all (written before leases existed or by hand)"""
        rows = await self.store.select_where(
            CONTACTS,
            {"status": ContactStatus.PROCESSING.value, "lease_expires_at": ("is", None)},
            order_by="created_at", ascending=True,
        )
        return [Contact(**r) for r in rows]

    # ---- identities ---------------------------------------------------

    async def identity_by_id(self, identity_id: Optional[str]) -> Optional[Identity]:
        if not identity_id:
            return None
        rows = await self.store.select(IDENTITIES, "id", identity_id, limit=1)
        return Identity(**rows[0]) if rows else None

    async def active_identity(self) -> Optional[Identity]:
        rows = await self.store.select(IDENTITIES, "active", True, limit=1,
                                       order_by="created_at", ascending=True)
        return Identity(**rows[0]) if rows else None

    async def create_identity(self, name: str, company: str, email: Optional[str] = None,
                              website: Optional[str] = None, active: bool = True) -> Identity:
        row = await self.store.insert(IDENTITIES, {
            "name": name, "company": company, "email": email,
            "website": website, "active": active,
        })
        return Identity(**row)

    # ---- emails -------------------------------------------------------

    async def email_for_contact(self, contact_id: str) -> Optional[Email]:
        rows = await self.store.select(EMAILS, "contact_id", contact_id, limit=1)
        return Email(**rows[0]) if rows else None

    async def has_email(self, contact_id: str) -> bool:
        return await self.email_for_contact(contact_id) is not None

    async def create_email(self, contact_id: str, fields: Dict[str, str]) -> Email:
        row = await self.store.insert(EMAILS, {
            "contact_id": contact_id,
            "object": fields["object"],
            "content": fields["content"],
            "cta": fields.get("cta"),
            "footer": fields.get("footer"),
            "status": EmailStatus.DRAFT.value,
        })
        return Email(**row)

    async def mark_sent(self, email: Email, domain: str) -> Email:
        row = await self.store.update(EMAILS, "id", email.id, {
            "status": EmailStatus.SENT.value,
            "sent_at": now_utc().isoformat(),
            "used_domain": domain,
            "error": None,
        })
        return Email(**row)

    async def mark_failed(self, email: Email, message: str) -> Email:
        row = await self.store.update(EMAILS, "id", email.id, {
            "status": EmailStatus.ERROR.value, "error": message,
        })
        return Email(**row)
