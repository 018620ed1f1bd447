# file: agents/writer.py
import json
import logging
import re
from typing import Dict, Optional
from urllib.parse import urlparse

from app.errors import ConfigurationError, ModelOutputError, PipelineError
from app.logging_utils import progress
from app.schema import Contact, ContactStatus, Identity, IllegalTransition, StageReport
from app.tools.llm import parse_json_reply
from agents.hunter import is_media_email

log = logging.getLogger("writer")

NO_IDENTITY = "(aucune identité)"
NO_PERSONA = "(aucun persona)"

EMAIL_FIELDS = ("object", "content", "cta", "footer")

# Base outreach email, placeholders in {{...}}
EMAIL_TEMPLATE: Dict[str, str] = {
    "object": "Recherche {{poste}} pour {{company}}",
    "content": (
        "Bonjour,\n\n"
        "Nous recherchons un(e) {{poste}} en freelance pour {{company}}.\n\n"
        "Nous avons découvert votre profil sur {{source}} et aimerions en savoir plus sur votre expertise "
        "en vue d'une collaboration.\n\n"
        "Vous trouverez ci-dessous le brief de la mission :"
    ),
    "cta": "https://trello.google-share.com/board",
    "footer": (
        "Dans l'attente de votre retour,\n\n"
        "{{sender_fullname}}\n"
        "{{sender_website}}\n"
        "{{sender_company}}"
    ),
}

COPYWRITE_SYSTEM = """
Tu rédiges des emails professionnels de prospection.
Tu personnalises un modèle d'email selon le persona du contact et l'identité de l'expéditeur.
Réponds uniquement avec un JSON valide aux clés exactes : object, content, cta, footer.
Pas de texte autour du JSON, pas de markdown.
"""

COPYWRITE_USER = """
Modèle de base :
- Objet : {template_object}
- Corps : {template_content}
- CTA : {template_cta}
- Footer : {template_footer}

Persona du contact : {persona}

Identité de l'expéditeur : {identity_data}

Personnalise chaque champ (object, content, cta, footer) pour ce contact.
Réponds uniquement avec un objet JSON : {{"object":"...","content":"...","cta":"...","footer":"..."}}
"""


def template_values(contact: Contact, identity: Optional[Identity]) -> Dict[str, str]:
    interlocutor = contact.meta("interlocutor") or {}
    if not isinstance(interlocutor, dict):
        interlocutor = {}
    url = contact.meta("web") or contact.meta("url") or ""
    host = (urlparse(str(url)).hostname or "").removeprefix("www.")
    return {
        "poste": contact.source_query or "prestataire",
        "company": interlocutor.get("company") or (identity.company if identity else "") or "notre client",
        "source": host or "Google",
        "sender_fullname": identity.name if identity else "",
        "sender_website": (identity.website or "") if identity else "",
        "sender_company": identity.company if identity else "",
    }


def fill_template(template: Dict[str, str], values: Dict[str, str]) -> Dict[str, str]:
    out = {}
    for key, text in template.items():
        for name, value in values.items():
            text = text.replace("{{" + name + "}}", value)
        # blank lines left by empty sender fields
        out[key] = re.sub(r"\n{3,}", "\n\n", text).strip()
    return out


def parse_draft(reply: str, fallback: Dict[str, str]):
    """Model reply -> (fields, repaired). Exactly the four email keys; extra keys dropped."""
    parsed = parse_json_reply(reply, context="draft")
    data = parsed.data
    if not isinstance(data, dict):
        raise ModelOutputError("draft reply is not a JSON object")
    missing = [k for k in EMAIL_FIELDS if k not in data]
    if missing:
        raise ModelOutputError(f"draft reply misses keys: {', '.join(missing)}")
    fields = {}
    for k in EMAIL_FIELDS:
        value = data[k]
        if value is not None and not isinstance(value, str):
            raise ModelOutputError(f"draft field {k!r} is not a string")
        fields[k] = (value or "").strip() or fallback[k]
    return fields, parsed.repaired


class Writer:
    """Draft: personalizes the base template for each enriched contact"""

    def __init__(self, registry):
        self.registry = registry
        self.settings = registry.settings
        self.records = registry.get_records()
        self.llm = registry.get_llm_client()

    async def resolve_identity(self, contact: Contact) -> Optional[Identity]:
        """linked identity, then the one chosen at enrichment, then the oldest active one"""
        for identity_id in (contact.identity_id, contact.meta("active_identity_id")):
            identity = await self.records.identity_by_id(identity_id)
            if identity:
                return identity
        return await self.records.active_identity()

    async def _draft(self, contact: Contact, report: StageReport):
        identity = await self.resolve_identity(contact)
        if identity is None:
            log.warning("%s: no active identity, drafting with %s", contact.email, NO_IDENTITY)
        base = fill_template(EMAIL_TEMPLATE, template_values(contact, identity))

        identity_data = (json.dumps(identity.model_dump(mode="json", exclude={"created_at"}),
                                    ensure_ascii=False, indent=2)
                         if identity else NO_IDENTITY)
        user = COPYWRITE_USER.format(
            template_object=base["object"], template_content=base["content"],
            template_cta=base["cta"], template_footer=base["footer"],
            persona=contact.persona or contact.meta("persona") or NO_PERSONA,
            identity_data=identity_data,
        )
        reply = await self.llm.complete(COPYWRITE_SYSTEM, user, temperature=0.5, max_tokens=800)
        fields, repaired = parse_draft(reply, base)
        if repaired:
            report.bump("json_repairs")

        await self.records.create_email(contact.id, fields)
        if identity is not None:
            contact = await self.records.link_identity(contact, identity)
        await self.records.transition(contact, ContactStatus.READY)

    async def run(self, limit: Optional[int] = None) -> StageReport:
        report = StageReport(stage="draft")
        limit = limit if limit is not None else self.settings.contacts_to_copywrite
        contacts = await self.records.contacts_in_status([ContactStatus.ENRICHED], limit=limit)
        report.selected = len(contacts)
        log.info("enriched contacts to draft: %d (limit: %s)", len(contacts),
                 limit if limit is not None else "none")

        for i, contact in enumerate(contacts, 1):
            prefix = progress(i, len(contacts))
            if is_media_email(contact.email):
                report.skipped += 1
                continue
            try:
                if await self.records.has_email(contact.id):
                    # drafted by a run that failed before the status change
                    await self.records.transition(contact, ContactStatus.READY)
                    log.info("%s %s: email already drafted, moved to ready", prefix, contact.email)
                    report.skipped += 1
                    continue
                log.info("%s %s", prefix, contact.email)
                await self._draft(contact, report)
            except ConfigurationError:
                raise
            except (PipelineError, IllegalTransition) as e:
                report.errors += 1
                log.error("%s %s: %s", prefix, contact.email, e)
                continue
            report.processed += 1

        log.info("draft done: %d created | %d skipped | %d errors",
                 report.processed, report.skipped, report.errors)
        return report
