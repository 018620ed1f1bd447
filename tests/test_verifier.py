# file: tests/test_verifier.py
import pytest
from unittest.mock import AsyncMock, Mock
from agents.verifier import Verifier, parse_interest
from app.errors import VerificationError
from app.schema import ContactStatus
from app.tools.millionverifier import VerificationClient
from conftest import add_contact, make_registry

def oracle_with(results, key="mv-key", concurrency=5):
    """Real client whose single lookup is faked: email -> result or exception"""
    oracle = VerificationClient(key, concurrency=concurrency)
    async def check(email):
        value = results[email]
        if isinstance(value, Exception):
            raise value
        return value
    oracle.check = AsyncMock(side_effect=check)
    return oracle

def test_parse_interest():
    assert parse_interest("true") == (True, "")
    assert parse_interest(' "True". ') == (True, "")
    assert parse_interest("false: agence de 50 salariés") == (False, "agence de 50 salariés")
    ok, reason = parse_interest("peut-être")
    assert ok is False and "peut-être" in reason

@pytest.mark.asyncio
async def test_gates_in_order(settings, records):
    good = await add_contact(records, "good@gmail.com")
    english = await add_contact(records, "uk@gmail.com", title="Freelance SEO consultant in London",
                                description="Audits and growth", url="https://uk-seo.co.uk/")
    bounced = await add_contact(records, "bounce@gmail.com")
    oracle = oracle_with({"good@gmail.com": "ok", "bounce@gmail.com": "invalid"})

    report = await Verifier(make_registry(settings, records, oracle=oracle)).run()

    assert (await records.get_contact(good.id)).status == ContactStatus.VERIFIED
    assert (await records.get_contact(good.id)).note is None

    uk = await records.get_contact(english.id)
    assert uk.status == ContactStatus.REJECTED
    assert uk.note.startswith("Rejected (language)")

    b = await records.get_contact(bounced.id)
    assert b.status == ContactStatus.REJECTED
    assert b.note == "Rejected (deliverability): invalid/unverified email (invalid)"

    # a language failure never reaches the oracle
    checked = [c.args[0] for c in oracle.check.await_args_list]
    assert "uk@gmail.com" not in checked
    assert report.rejected_by_reason == {"language": 1, "deliverability": 1}
    assert report.extra["verified"] == 1

@pytest.mark.asyncio
async def test_oracle_failure_is_isolated(settings, records):
    broken = await add_contact(records, "broken@gmail.com")
    fine = await add_contact(records, "fine@gmail.com")
    oracle = oracle_with({"broken@gmail.com": VerificationError("HTTP 500"), "fine@gmail.com": "catch_all"})

    report = await Verifier(make_registry(settings, records, oracle=oracle)).run()

    assert report.errors == 1
    assert (await records.get_contact(broken.id)).status == ContactStatus.NEW
    assert (await records.get_contact(fine.id)).status == ContactStatus.VERIFIED

@pytest.mark.asyncio
async def test_missing_oracle_key_keeps_everyone(settings, records):
    contact = await add_contact(records, "a@gmail.com")
    oracle = oracle_with({}, key=None)

    await Verifier(make_registry(settings, records, oracle=oracle)).run()

    assert (await records.get_contact(contact.id)).status == ContactStatus.VERIFIED
    oracle.check.assert_not_awaited()

@pytest.mark.asyncio
async def test_interest_gate(settings, records):
    settings.interest_gate = True
    contact = await add_contact(records, "agence@gmail.com")
    llm = Mock()
    llm.complete = AsyncMock(return_value="false: agence, pas un indépendant")
    oracle = oracle_with({"agence@gmail.com": "ok"})

    report = await Verifier(make_registry(settings, records, oracle=oracle, llm=llm)).run()

    c = await records.get_contact(contact.id)
    assert c.status == ContactStatus.REJECTED
    assert c.note == "Rejected (interest): agence, pas un indépendant"
    assert report.rejected_by_reason == {"interest": 1}

@pytest.mark.asyncio
async def test_reverification_of_rejected(settings, records):
    settings.verify_statuses = ["rejected"]
    contact = await add_contact(records, "retry@gmail.com", status="rejected",
                                note="Rejected (deliverability): invalid/unverified email (unknown)")
    await add_contact(records, "fresh@gmail.com")
    oracle = oracle_with({"retry@gmail.com": "ok"})

    report = await Verifier(make_registry(settings, records, oracle=oracle)).run()

    assert report.selected == 1
    c = await records.get_contact(contact.id)
    assert c.status == ContactStatus.VERIFIED
    assert c.note is None

@pytest.mark.asyncio
async def test_limit_takes_oldest(settings, records):
    settings.contacts_to_verify = 1
    first = await add_contact(records, "first@gmail.com")
    second = await add_contact(records, "second@gmail.com")
    oracle = oracle_with({"first@gmail.com": "ok", "second@gmail.com": "ok"})

    await Verifier(make_registry(settings, records, oracle=oracle)).run()

    assert (await records.get_contact(first.id)).status == ContactStatus.VERIFIED
    assert (await records.get_contact(second.id)).status == ContactStatus.NEW

@pytest.mark.asyncio
async def test_outcomes_written_in_selection_order(settings, records):
    await add_contact(records, "a@gmail.com")
    await add_contact(records, "b@gmail.com", title="Freelance SEO consultant in London",
                      description="Audits and growth", url="https://uk-seo.co.uk/")
    await add_contact(records, "c@gmail.com")
    oracle = oracle_with({"a@gmail.com": "ok", "c@gmail.com": "invalid"})
    written = []
    transition = records.transition

    async def recording_transition(contact, target, **kwargs):
        written.append((contact.email, target.value))
        return await transition(contact, target, **kwargs)

    records.transition = recording_transition
    await Verifier(make_registry(settings, records, oracle=oracle)).run()

    assert written == [("a@gmail.com", "verified"), ("b@gmail.com", "rejected"), ("c@gmail.com", "rejected")]
    # still a single batched lookup for the two French contacts
    assert oracle.check.await_count == 2
