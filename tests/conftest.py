import os
import sys
from unittest.mock import Mock

import pytest

# Ensure the repository root is on sys.path so imports like `import app` and `import agents` work
ROOT_DIR = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if ROOT_DIR not in sys.path:
    sys.path.insert(0, ROOT_DIR)

from app.config import Settings
from app.schema import Contact
from app.services.queries import QueryBook
from app.services.records import Records
from app.services.store import LocalStore


@pytest.fixture
def settings(tmp_path):
    return Settings(
        store_backend="local",
        store_path="",
        search_delay_min=0.0,
        search_delay_max=0.0,
        email_domains=["@gmail.com"],
        queries_file=str(tmp_path / "input.txt"),
        historic_file=str(tmp_path / "historic.txt"),
        millionverifier_api_key="mv-key",
        resend_api_key="re-key",
        contacts_to_verify=None,
        contacts_to_enrich=None,
        contacts_to_copywrite=None,
        contacts_to_send=None,
        verify_statuses=["new"],
        interest_gate=False,
        enrich_from="verified",
        enrich_interlocutor=False,
        dispatch_mode="draft",
        retry_errors=False,
    )


@pytest.fixture
def store():
    return LocalStore()


@pytest.fixture
def records(store):
    return Records(store)


def make_registry(settings, records, search=None, llm=None, oracle=None, delivery=None, fetcher=None):
    """Mock registry handing out the given fakes, the way stage runners ask for them"""
    registry = Mock()
    registry.settings = settings
    registry.get_records.return_value = records
    registry.get_search_client.return_value = search or Mock()
    registry.get_llm_client.return_value = llm or Mock()
    registry.get_oracle.return_value = oracle or Mock()
    registry.get_delivery_client.return_value = delivery or Mock()
    registry.get_fetcher.return_value = fetcher or Mock()
    registry.get_query_book.return_value = QueryBook(settings.queries_file, settings.historic_file)
    return registry


async def add_contact(records, email, status="new", title="Consultant SEO indépendant à Lyon",
                      description="Audit et référencement pour les PME", url="https://jean-seo.fr/contact",
                      **fields):
    """Contact row in the given status, bypassing the transition table"""
    contact = await records.create_contact(email, "expert SEO indépendant",
                                           {"title": title, "description": description, "url": url})
    patch = {"status": status, **fields}
    row = await records.store.update("contacts", "id", contact.id, patch)
    return Contact(**row)
