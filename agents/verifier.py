# file: agents/verifier.py
import json
import logging
from typing import List, Optional, Tuple

from app.errors import ConfigurationError, PipelineError
from app.logging_utils import progress
from app.schema import Contact, ContactStatus, IllegalTransition, StageReport
from app.tools.french import is_french_text

log = logging.getLogger("verifier")

INTEREST_SYSTEM = """
Tu vérifies des contacts professionnels trouvés sur Google.
Tu dois dire si le contact est un(e) indépendant(e) ou un prestataire susceptible de chercher des missions ou des clients.
Si oui, réponds uniquement "true".
Si non, réponds "false: " suivi d'une phrase courte qui explique le rejet.
"""

INTEREST_USER = """
Informations du contact extraites de Google : {contact_informations}

Ce contact cherche-t-il probablement des missions ou des clients ?
Réponds : true ou false: [explication si false]
"""


def parse_interest(answer: str) -> Tuple[bool, str]:
    """'true' passes; 'false: <reason>' and anything else fail."""
    text = (answer or "").strip().strip('"').strip()
    low = text.lower()
    if low == "true" or (low.startswith("true") and not low[4:5].isalnum()):
        return True, ""
    if low.startswith("false"):
        reason = text[5:].lstrip(" :-").strip()
        return False, reason or "no reason given"
    return False, f"unexpected answer: {text[:120]}" if text else "empty answer"


class Verifier:
    """Verify: language, deliverability and (optional) interest gates"""

    def __init__(self, registry):
        self.registry = registry
        self.settings = registry.settings
        self.records = registry.get_records()
        self.oracle = registry.get_oracle()
        self.llm = registry.get_llm_client() if self.settings.interest_gate else None

    def _statuses(self) -> List[ContactStatus]:
        try:
            statuses = [ContactStatus(s) for s in self.settings.verify_statuses]
        except ValueError as e:
            raise ConfigurationError(f"VERIFY_STATUSES: {e}") from e
        allowed = {ContactStatus.NEW, ContactStatus.REJECTED}
        if not statuses or not set(statuses) <= allowed:
            raise ConfigurationError("VERIFY_STATUSES may only contain new and rejected")
        return statuses

    async def _reject(self, contact: Contact, gate: str, note: str, report: StageReport):
        await self.records.transition(contact, ContactStatus.REJECTED, note=note)
        report.rejected_by_reason[gate] = report.rejected_by_reason.get(gate, 0) + 1
        report.processed += 1
        log.info("%s rejected (%s): %s", contact.email, gate, note)

    async def _interest(self, contact: Contact) -> Tuple[bool, str]:
        info = {
            "email": contact.email,
            "source_query": contact.source_query,
            "title": contact.meta("title"),
            "description": contact.meta("description"),
            "url": contact.meta("url"),
        }
        answer = await self.llm.complete(INTEREST_SYSTEM,
                                         INTEREST_USER.format(contact_informations=json.dumps(info, ensure_ascii=False)),
                                         temperature=0.5, max_tokens=100)
        return parse_interest(answer)

    async def _finish(self, contact: Contact, result: str, report: StageReport):
        if not self.oracle.is_deliverable(result):
            await self._reject(contact, "deliverability",
                               f"Rejected (deliverability): invalid/unverified email ({result})", report)
            return
        if self.llm is not None:
            ok, reason = await self._interest(contact)
            if not ok:
                await self._reject(contact, "interest", f"Rejected (interest): {reason}", report)
                return
        await self.records.transition(contact, ContactStatus.VERIFIED, note=None)
        report.processed += 1
        report.bump("verified")
        log.info("%s verified (%s)", contact.email, result)

    async def run(self, limit: Optional[int] = None) -> StageReport:
        report = StageReport(stage="verify")
        statuses = self._statuses()
        limit = limit if limit is not None else self.settings.contacts_to_verify
        contacts = await self.records.contacts_in_status(statuses, limit=limit)
        report.selected = len(contacts)
        log.info("contacts to verify: %d (limit: %s)", len(contacts), limit if limit is not None else "none")

        if not self.oracle.configured:
            log.warning("MILLIONVERIFIER_API_KEY missing: deliverability check skipped, every address kept")

        size = self.oracle.concurrency
        done = 0
        for start in range(0, len(contacts), size):
            chunk = contacts[start:start + size]
            french = [is_french_text(" ".join(str(v) for v in (c.meta("title"), c.meta("description")) if v))
                      for c in chunk]
            passing = [c for c, ok in zip(chunk, french) if ok]
            if not passing:
                results = []
            elif self.oracle.configured:
                results = await self.oracle.check_many([c.email for c in passing])
            else:
                results = ["unknown"] * len(passing)
            by_id = {c.id: r for c, r in zip(passing, results)}

            # outcomes are committed one contact at a time, in selection order
            for contact, ok in zip(chunk, french):
                done += 1
                log.info("%s %s", progress(done, len(contacts)), contact.email)
                try:
                    if not ok:
                        await self._reject(contact, "language",
                                           "Rejected (language): non French title/description", report)
                        continue
                    result = by_id[contact.id]
                    if isinstance(result, BaseException):
                        report.errors += 1
                        log.error("%s: oracle failed, status kept: %s", contact.email, result)
                        continue
                    await self._finish(contact, result, report)
                except ConfigurationError:
                    raise
                except (PipelineError, IllegalTransition) as e:
                    report.errors += 1
                    log.error("%s: %s", contact.email, e)

        log.info("verify done: verified %d | rejected %s | errors %d",
                 report.extra.get("verified", 0), report.rejected_by_reason, report.errors)
        return report
