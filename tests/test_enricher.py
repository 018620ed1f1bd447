# file: tests/test_enricher.py
import json
import pytest
from unittest.mock import AsyncMock, Mock
from agents.enricher import Enricher, NO_WEB_CONTENT
from app.errors import LLMNotReady, SearchUnavailable
from app.schema import ContactStatus, SearchResult
from conftest import add_contact, make_registry

PERSONA = "Jean Dupont, consultant SEO indépendant basé à Lyon, accompagne les PME."

def fake_llm(*replies):
    llm = Mock()
    llm.complete = AsyncMock(side_effect=list(replies))
    return llm

@pytest.mark.asyncio
async def test_persona_merged_and_status_enriched(settings, records):
    contact = await add_contact(records, "jean.dupont@gmail.com", status="verified",
                                url="https://jean-seo.fr/services/audit")
    identity = await records.create_identity("Jeanne Martin", "Acme Studio")
    fetcher = AsyncMock(return_value="Bienvenue chez Jean, référencement naturel")
    llm = fake_llm(PERSONA)

    report = await Enricher(make_registry(settings, records, llm=llm, fetcher=fetcher)).run()

    fetcher.assert_awaited_once_with("https://jean-seo.fr/")
    c = await records.get_contact(contact.id)
    assert c.status == ContactStatus.ENRICHED
    assert c.persona == PERSONA
    assert c.meta("title") == "Consultant SEO indépendant à Lyon"
    assert c.meta("persona") == PERSONA
    assert c.meta("web_excerpt") == "Bienvenue chez Jean, référencement naturel"
    assert c.meta("active_identity_id") == identity.id
    assert report.processed == 1
    _, kwargs = llm.complete.await_args
    assert kwargs["max_tokens"] == 300

@pytest.mark.asyncio
async def test_failed_fetch_means_no_content(settings, records):
    await add_contact(records, "jean.dupont@gmail.com", status="verified")
    llm = fake_llm(PERSONA)

    await Enricher(make_registry(settings, records, llm=llm, fetcher=AsyncMock(return_value=None))).run()

    system, user = llm.complete.await_args.args
    assert NO_WEB_CONTENT in user

@pytest.mark.asyncio
async def test_persona_failure_keeps_contact_for_next_run(settings, records):
    contact = await add_contact(records, "jean.dupont@gmail.com", status="verified")
    llm = Mock()
    llm.complete = AsyncMock(side_effect=LLMNotReady("timeout"))

    report = await Enricher(make_registry(settings, records, llm=llm,
                                          fetcher=AsyncMock(return_value=None))).run()

    assert report.errors == 1
    c = await records.get_contact(contact.id)
    assert c.status == ContactStatus.VERIFIED
    assert c.persona is None

@pytest.mark.asyncio
async def test_interlocutor_selected(settings, records):
    settings.enrich_interlocutor = True
    contact = await add_contact(records, "jean.dupont@gmail.com", status="verified")
    selection = json.dumps({"interlocutor": "Claire Petit", "company": "Agence Lumière",
                            "source_url": "https://lumiere.fr/equipe", "localisation": "Lyon",
                            "score": 9})
    llm = fake_llm(PERSONA, "Faire grandir les PME locales.", '"Responsable marketing Agence Lyon"', selection)
    search = AsyncMock()
    search.query.return_value = [SearchResult(title="Claire Petit - Responsable marketing - Agence Lumière",
                                              snippet="Lyon", link="https://lumiere.fr/equipe")]

    await Enricher(make_registry(settings, records, llm=llm, search=search,
                                 fetcher=AsyncMock(return_value=None))).run()

    search.query.assert_awaited_once_with("Responsable marketing Agence Lyon", page=1, locale="fr-FR")
    c = await records.get_contact(contact.id)
    assert c.meta("motivations") == "Faire grandir les PME locales."
    assert c.meta("interlocutor_query") == "Responsable marketing Agence Lyon"
    assert c.meta("interlocutor") == {"interlocutor": "Claire Petit", "company": "Agence Lumière",
                                      "source_url": "https://lumiere.fr/equipe", "localisation": "Lyon"}

@pytest.mark.asyncio
async def test_interlocutor_failure_is_not_fatal(settings, records):
    settings.enrich_interlocutor = True
    contact = await add_contact(records, "jean.dupont@gmail.com", status="verified")
    llm = fake_llm(PERSONA, "Motivations.", "Directeur agence web")
    search = AsyncMock()
    search.query.side_effect = SearchUnavailable("down")

    report = await Enricher(make_registry(settings, records, llm=llm, search=search,
                                          fetcher=AsyncMock(return_value=None))).run()

    c = await records.get_contact(contact.id)
    assert c.status == ContactStatus.ENRICHED
    assert c.meta("interlocutor") is None
    assert report.errors == 0

@pytest.mark.asyncio
async def test_short_pipeline_enriches_new_contacts(settings, records):
    settings.enrich_from = "new"
    contact = await add_contact(records, "jean.dupont@gmail.com")
    llm = fake_llm(PERSONA)

    await Enricher(make_registry(settings, records, llm=llm, fetcher=AsyncMock(return_value=None))).run()

    assert (await records.get_contact(contact.id)).status == ContactStatus.ENRICHED
