# file: tests/test_writer.py
import json
import pytest
from unittest.mock import AsyncMock, Mock
from agents.writer import EMAIL_TEMPLATE, NO_IDENTITY, Writer, fill_template, parse_draft
from app.errors import ModelOutputError
from app.schema import ContactStatus, EmailStatus
from conftest import add_contact, make_registry

DRAFT = {
    "object": "Mission SEO pour Acme Studio",
    "content": "Bonjour Jean,\n\nVotre expertise SEO nous intéresse.",
    "cta": "https://cal.acme.fr",
    "footer": "Jeanne Martin\nAcme Studio",
}

def fake_llm(reply):
    llm = Mock()
    llm.complete = AsyncMock(return_value=reply)
    return llm

async def enriched(records, email="jean.dupont@gmail.com", **fields):
    return await add_contact(records, email, status="enriched", persona="Consultant SEO à Lyon", **fields)

@pytest.mark.asyncio
async def test_draft_created_and_contact_ready(settings, records):
    identity = await records.create_identity("Jeanne Martin", "Acme Studio", website="https://acme.fr")
    contact = await enriched(records)
    llm = fake_llm(json.dumps(DRAFT))

    report = await Writer(make_registry(settings, records, llm=llm)).run()

    email = await records.email_for_contact(contact.id)
    assert email.status == EmailStatus.DRAFT
    assert email.object == DRAFT["object"]
    assert email.footer == DRAFT["footer"]
    c = await records.get_contact(contact.id)
    assert c.status == ContactStatus.READY
    assert c.identity_id == identity.id
    assert report.processed == 1
    system, user = llm.complete.await_args.args
    assert "Consultant SEO à Lyon" in user
    assert "Jeanne Martin" in user

@pytest.mark.asyncio
async def test_existing_email_is_skipped(settings, records):
    contact = await enriched(records)
    await records.create_email(contact.id, DRAFT)
    llm = fake_llm(json.dumps(DRAFT))

    report = await Writer(make_registry(settings, records, llm=llm)).run()

    assert report.skipped == 1
    llm.complete.assert_not_awaited()
    assert (await records.get_contact(contact.id)).status == ContactStatus.READY
    assert len(await records.store.select("emails", "contact_id", contact.id)) == 1

@pytest.mark.asyncio
async def test_identity_from_enrichment_is_preferred(settings, records):
    await records.create_identity("Oldest Active", "Premier")
    chosen = await records.create_identity("Jeanne Martin", "Acme Studio", active=False)
    contact = await enriched(records, additional_data={"active_identity_id": chosen.id})

    await Writer(make_registry(settings, records, llm=fake_llm(json.dumps(DRAFT)))).run()

    assert (await records.get_contact(contact.id)).identity_id == chosen.id

@pytest.mark.asyncio
async def test_placeholder_identity(settings, records):
    contact = await enriched(records)
    llm = fake_llm(json.dumps(DRAFT))

    await Writer(make_registry(settings, records, llm=llm)).run()

    system, user = llm.complete.await_args.args
    assert NO_IDENTITY in user
    c = await records.get_contact(contact.id)
    assert c.status == ContactStatus.READY
    assert c.identity_id is None

@pytest.mark.asyncio
async def test_control_characters_repaired(settings, records):
    contact = await enriched(records)
    raw = '```json\n{"object": "Mission", "content": "Bonjour,\n\nMerci", "cta": "x", "footer": "y"}\n```'

    report = await Writer(make_registry(settings, records, llm=fake_llm(raw))).run()

    assert report.extra["json_repairs"] == 1
    assert (await records.email_for_contact(contact.id)).content == "Bonjour,\n\nMerci"

@pytest.mark.asyncio
async def test_missing_key_leaves_contact_enriched(settings, records):
    contact = await enriched(records)
    reply = json.dumps({"object": "x", "content": "y", "cta": "z"})

    report = await Writer(make_registry(settings, records, llm=fake_llm(reply))).run()

    assert report.errors == 1
    assert await records.email_for_contact(contact.id) is None
    assert (await records.get_contact(contact.id)).status == ContactStatus.ENRICHED

def test_parse_draft_drops_extra_keys_and_fills_blanks():
    fields, repaired = parse_draft(json.dumps({**DRAFT, "cta": "", "signature": "PS"}), {**DRAFT, "cta": "base"})
    assert set(fields) == {"object", "content", "cta", "footer"}
    assert fields["cta"] == "base"
    assert repaired is False
    with pytest.raises(ModelOutputError):
        parse_draft("[1, 2]", DRAFT)

def test_template_filled_without_leftover_placeholders():
    filled = fill_template(EMAIL_TEMPLATE, {"poste": "expert SEO", "company": "Acme", "source": "jean-seo.fr",
                                            "sender_fullname": "Jeanne Martin", "sender_website": "",
                                            "sender_company": "Acme Studio"})
    assert filled["object"] == "Recherche expert SEO pour Acme"
    assert "{{" not in "".join(filled.values())
    assert filled["footer"].endswith("Jeanne Martin\n\nAcme Studio")
