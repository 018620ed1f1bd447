# file: agents/sender.py
import html
import logging
import re
import uuid
from datetime import timedelta
from typing import List, Optional

from app.errors import ConfigurationError, MissingDraft, MissingIdentity, PipelineError, SentNotRecorded
from app.logging_utils import progress
from app.schema import Contact, ContactStatus, Email, EmailStatus, Identity, IllegalTransition, StageReport
from agents.writer import EMAIL_TEMPLATE, fill_template, template_values

log = logging.getLogger("sender")

DISPATCH_MODES = ("draft", "template")


def sender_address(identity: Identity, domain: str) -> str:
    """'Jane Doe <acme.studio@mail.example.fr>' from the identity company and a sending domain"""
    local = re.sub(r"\s+", ".", (identity.company or identity.name).strip().lower()) or "contact"
    return f"{identity.name} <{local}@{domain}>"


def to_html(text: str) -> str:
    paragraphs = [p.strip() for p in re.split(r"\n\s*\n", text or "") if p.strip()]
    return "".join("<p>" + html.escape(p).replace("\n", "<br>") + "</p>" for p in paragraphs)


class Sender:
    """Dispatch: sends drafted emails under a per-contact lease"""

    def __init__(self, registry):
        self.registry = registry
        self.settings = registry.settings
        self.records = registry.get_records()
        self.delivery = registry.get_delivery_client()
        self.run_id = uuid.uuid4().hex
        self.domains: List[str] = []
        self._next_domain = 0

    def _mode(self) -> str:
        if self.settings.dispatch_mode not in DISPATCH_MODES:
            raise ConfigurationError(f"DISPATCH_MODE must be one of {DISPATCH_MODES}, got {self.settings.dispatch_mode!r}")
        return self.settings.dispatch_mode

    def next_domain(self) -> str:
        domain = self.domains[self._next_domain % len(self.domains)]
        self._next_domain += 1
        return domain

    async def reclaim_leases(self) -> int:
        """Contacts left in processing by a dead run go back to ready (draft) or enriched (no draft)."""
        stale = await self.records.expired_leases() + await self.records.stranded()
        reclaimed = 0
        for contact in stale:
            target = ContactStatus.READY if await self.records.has_email(contact.id) else ContactStatus.ENRICHED
            moved = await self.records.transition(contact, target, expect_current=True,
                                                  lease_owner=None, lease_expires_at=None)
            if moved is not None:
                reclaimed += 1
                log.warning("lease of %s (owner %s) expired, back to %s",
                            contact.email, contact.lease_owner, target.value)
        return reclaimed

    async def _identity(self, contact: Contact) -> Identity:
        for identity_id in (contact.identity_id, contact.meta("active_identity_id")):
            identity = await self.records.identity_by_id(identity_id)
            if identity:
                return identity
        identity = await self.records.active_identity()
        if identity is None:
            raise MissingIdentity(f"no sender identity for {contact.email}")
        return identity

    async def _email(self, contact: Contact, identity: Identity, mode: str) -> Email:
        email = await self.records.email_for_contact(contact.id)
        if email is not None:
            return email
        if mode == "draft":
            raise MissingDraft(f"no drafted email for {contact.email}")
        fields = fill_template(EMAIL_TEMPLATE, template_values(contact, identity))
        return await self.records.create_email(contact.id, fields)

    async def _send(self, contact: Contact, mode: str):
        identity = await self._identity(contact)
        contact = await self.records.link_identity(contact, identity)
        email = await self._email(contact, identity, mode)

        if email.status == EmailStatus.SENT:
            # sent by a run that died before closing the contact
            log.warning("%s: email already sent on %s, closing contact", contact.email, email.sent_at)
        else:
            domain = self.next_domain()
            text = email.text_body()
            await self.delivery.send(sender_address(identity, domain), contact.email, email.object,
                                     text=text, html=to_html(text))
            try:
                await self.records.mark_sent(email, domain)
            except PipelineError as e:
                raise SentNotRecorded(f"sent via {domain} but email row not updated: {e}") from e
            log.info("sent to %s via %s", contact.email, domain)

        try:
            await self.records.transition(contact, ContactStatus.PROCESSED, lease_owner=None, lease_expires_at=None)
        except (PipelineError, IllegalTransition) as e:
            raise SentNotRecorded(f"sent but contact not closed: {e}") from e

    async def _fail(self, contact: Contact, message: str):
        email = await self.records.email_for_contact(contact.id)
        if email is not None:
            await self.records.mark_failed(email, message)
            await self.records.transition(contact, ContactStatus.ERROR, lease_owner=None, lease_expires_at=None)
        else:
            await self.records.transition(contact, ContactStatus.ENRICHED, lease_owner=None, lease_expires_at=None)

    async def run(self, limit: Optional[int] = None) -> StageReport:
        report = StageReport(stage="dispatch")
        mode = self._mode()

        self.domains = await self.delivery.list_verified_domains()
        if not self.domains:
            raise ConfigurationError("no verified sending domain on the Resend account")
        log.info("sending domains: %s (mode: %s)", ", ".join(self.domains), mode)

        report.extra["reclaimed"] = await self.reclaim_leases()

        statuses = [ContactStatus.READY]
        if self.settings.retry_errors:
            statuses.append(ContactStatus.ERROR)
        limit = limit if limit is not None else self.settings.contacts_to_send
        contacts = await self.records.contacts_in_status(statuses, limit=limit)
        report.selected = len(contacts)
        ttl = timedelta(minutes=self.settings.lease_ttl_minutes)

        for i, contact in enumerate(contacts, 1):
            prefix = progress(i, len(contacts))
            try:
                claimed = await self.records.claim(contact, self.run_id, ttl)
            except (PipelineError, IllegalTransition) as e:
                report.errors += 1
                log.error("%s %s: claim failed: %s", prefix, contact.email, e)
                continue
            if claimed is None:
                log.info("%s %s: claimed by another run, skip", prefix, contact.email)
                report.skipped += 1
                continue

            log.info("%s %s", prefix, contact.email)
            try:
                await self._send(claimed, mode)
            except ConfigurationError:
                raise
            except SentNotRecorded as e:
                # the email went out: never mark it failed, reclaim closes the contact later
                report.errors += 1
                log.error("%s %s: %s (lease left to expire)", prefix, contact.email, e)
                continue
            except (PipelineError, IllegalTransition) as e:
                report.errors += 1
                log.error("%s %s: %s", prefix, contact.email, e)
                try:
                    await self._fail(claimed, str(e))
                except (PipelineError, IllegalTransition) as rollback_error:
                    log.error("%s %s: rollback failed, lease will expire: %s",
                              prefix, contact.email, rollback_error)
                continue
            report.processed += 1

        log.info("dispatch done: %d sent | %d errors | %d skipped",
                 report.processed, report.errors, report.skipped)
        return report
