# file: agents/enricher.py
import json
import logging
from typing import Any, Dict, Optional

from pydantic import ValidationError

from app.errors import ConfigurationError, ExternalServiceError, ModelOutputError, PipelineError
from app.logging_utils import progress
from app.schema import Contact, ContactStatus, IllegalTransition, Interlocutor, StageReport
from app.tools.fetch import homepage_url
from app.tools.llm import parse_json_reply
from agents.hunter import is_media_email

log = logging.getLogger("enricher")

NO_WEB_CONTENT = "(aucun contenu extrait)"

PERSONA_SYSTEM = """
Tu synthétises des profils professionnels.
À partir des données fournies, rédige en 3 à 5 phrases le persona professionnel du contact :
intérêts, type de missions recherchées, clients idéaux, expertises clés et tout détail utile.
"""

PERSONA_USER = """
Informations brutes trouvées sur Google : {contact_informations}
Extrait de la page d'accueil du site du contact : {web_informations}
Rédige le persona du contact. Si elles sont présentes, reprends nom, prénom, localisation et société.
N'invente rien. Pas de guillemets, pas d'autre texte : uniquement le persona, en français.
"""

MOTIVATION_SYSTEM = """
Tu analyses les objectifs et la carrière de professionnels.
À partir des données d'un contact, tu formules ce qui le motive, en français, de façon précise.
"""

MOTIVATION_USER = """
Informations brutes trouvées sur Google : {contact_informations}
Persona du contact : {persona}
Donne uniquement ses motivations ou enjeux professionnels, en 1 à 3 phrases, sans guillemets ni explication.
"""

INTERLOCUTOR_QUERY_SYSTEM = """
Tu écris des requêtes Google qui trouvent le client idéal d'un prestataire.
La requête est en français, courte et cohérente avec les expertises du prestataire.
"""

INTERLOCUTOR_QUERY_USER = """
Persona du prestataire : {persona}
Motivations du prestataire : {motivations}
Réponds uniquement avec la requête, 5 mots maximum, sous la forme "intitulé du poste, type d'entreprise, localisation si connue".
Exemple : Responsable marketing Agence Web Paris
"""

INTERLOCUTOR_SELECTION_SYSTEM = """
Tu choisis, parmi des résultats Google, l'interlocuteur qui correspond le mieux au client idéal d'un prestataire.
Tu ne retiens qu'un seul résultat et tu en extrais l'interlocuteur, l'entreprise et si possible la localisation.
"""

INTERLOCUTOR_SELECTION_USER = """
Persona du prestataire : {persona}
Motivations du prestataire : {motivations}
Résultats Google : {search_results}
Privilégie un résultat avec prénom, nom et intitulé de poste de l'interlocuteur.
Réponds uniquement avec un objet JSON valide aux clés exactes interlocutor, company, source_url, localisation (si connue).
Pas de texte autour du JSON, pas de markdown.
Exemple : {{"interlocutor": "Jeanne Martin", "company": "Agence Lumière", "source_url": "https://www.agence-lumiere.fr", "localisation": "Lyon"}}
"""


class Enricher:
    """Enrich: web excerpt + LLM persona (+ ideal interlocutor) for each contact"""

    def __init__(self, registry):
        self.registry = registry
        self.settings = registry.settings
        self.records = registry.get_records()
        self.llm = registry.get_llm_client()
        self.fetch = registry.get_fetcher()
        self.search = registry.get_search_client() if self.settings.enrich_interlocutor else None

    def _source_status(self) -> ContactStatus:
        if self.settings.enrich_from not in (ContactStatus.VERIFIED.value, ContactStatus.NEW.value):
            raise ConfigurationError(f"ENRICH_FROM must be verified or new, got {self.settings.enrich_from!r}")
        return ContactStatus(self.settings.enrich_from)

    @staticmethod
    def _snapshot(contact: Contact) -> str:
        return json.dumps({
            "email": contact.email,
            "source_query": contact.source_query,
            "title": contact.meta("title"),
            "description": contact.meta("description"),
            "url": contact.meta("web") or contact.meta("url"),
        }, ensure_ascii=False, indent=2)

    async def _web_text(self, contact: Contact) -> Optional[str]:
        url = homepage_url(contact.meta("web") or contact.meta("url"))
        if not url:
            return None
        return await self.fetch(url)

    async def _interlocutor(self, info: str, persona: str, report: StageReport) -> Dict[str, Any]:
        """Motivations, ideal-client query and one selected interlocutor; partial dict on failure."""
        out: Dict[str, Any] = {}
        try:
            motivations = await self.llm.complete(
                MOTIVATION_SYSTEM, MOTIVATION_USER.format(contact_informations=info, persona=persona),
                temperature=0.5, max_tokens=200)
            out["motivations"] = motivations

            raw_query = await self.llm.complete(
                INTERLOCUTOR_QUERY_SYSTEM,
                INTERLOCUTOR_QUERY_USER.format(persona=persona, motivations=motivations),
                temperature=0.5, max_tokens=30)
            query = raw_query.strip().splitlines()[0].strip().strip('"').strip()
            if not query:
                return out
            out["interlocutor_query"] = query

            results = await self.search.query(query, page=1, locale=self.settings.search_locale)
            if not results:
                log.info("no result for interlocutor query %r", query)
                return out
            listing = json.dumps([r.model_dump() for r in results], ensure_ascii=False)
            reply = await self.llm.complete(
                INTERLOCUTOR_SELECTION_SYSTEM,
                INTERLOCUTOR_SELECTION_USER.format(persona=persona, motivations=motivations,
                                                   search_results=listing),
                temperature=0.3, max_tokens=300)
            parsed = parse_json_reply(reply, context="interlocutor")
            if parsed.repaired:
                report.bump("json_repairs")
            out["interlocutor"] = Interlocutor(**parsed.data).model_dump(exclude_none=True)
        except (ExternalServiceError, ModelOutputError, ValidationError, TypeError) as e:
            log.warning("interlocutor lookup failed, continuing without: %s", e)
        return out

    async def _enrich(self, contact: Contact, identity_id: Optional[str], report: StageReport):
        web_text = await self._web_text(contact)
        info = self._snapshot(contact)
        persona = (await self.llm.complete(
            PERSONA_SYSTEM,
            PERSONA_USER.format(contact_informations=info, web_informations=web_text or NO_WEB_CONTENT),
            temperature=0.5, max_tokens=300)).strip()

        extra: Dict[str, Any] = {"persona": persona, "web_excerpt": web_text, "active_identity_id": identity_id}
        if self.search is not None:
            extra.update(await self._interlocutor(info, persona, report))

        await self.records.transition(contact, ContactStatus.ENRICHED,
                                      persona=persona, additional_data=contact.merged_data(extra))

    async def run(self, limit: Optional[int] = None) -> StageReport:
        report = StageReport(stage="enrich")
        source = self._source_status()
        limit = limit if limit is not None else self.settings.contacts_to_enrich
        contacts = await self.records.contacts_in_status([source], limit=limit)
        report.selected = len(contacts)
        log.info("contacts to enrich (%s): %d (limit: %s)", source.value, len(contacts),
                 limit if limit is not None else "none")

        identity = await self.records.active_identity()
        if identity is None:
            log.warning("no active identity (identities.active = true); drafts will fall back")
        identity_id = identity.id if identity else None

        for i, contact in enumerate(contacts, 1):
            prefix = progress(i, len(contacts))
            if is_media_email(contact.email):
                report.skipped += 1
                continue
            log.info("%s %s", prefix, contact.email)
            try:
                await self._enrich(contact, identity_id, report)
            except ConfigurationError:
                raise
            except (PipelineError, IllegalTransition) as e:
                report.errors += 1
                log.error("%s %s: %s (status kept)", prefix, contact.email, e)
                continue
            report.processed += 1

        log.info("enrich done: %d enriched | %d errors", report.processed, report.errors)
        return report
