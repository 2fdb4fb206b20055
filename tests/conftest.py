"""Shared test fixtures for the contacts test suite."""

from __future__ import annotations

from collections.abc import Callable
from pathlib import Path
from typing import Any

import httpx
import pytest

from contacts.config import ContactsConfig
from contacts.google_credentials import CredentialsFile, GoogleCredentials
from contacts.record import Record, RecordId
from contacts.sync import ContactsProvider, PeoplePage


class FakeProvider(ContactsProvider):
    """In-memory provider double recording every call."""

    def __init__(self) -> None:
        self.pages: list[PeoplePage] = []
        self.fetched_tokens: list[str | None] = []
        self.written: list[Record] = []
        self.deleted: list[RecordId] = []
        self.write_response: dict[str, Any] = {}
        self.raise_on_write: Exception | None = None
        self.raise_on_delete: Exception | None = None
        self.shutdown_calls = 0

    @property
    def name(self) -> str:
        return "fake"

    async def fetch_page(self, page_token: str | None = None) -> PeoplePage:
        self.fetched_tokens.append(page_token)
        index = len(self.fetched_tokens) - 1
        if index >= len(self.pages):
            raise AssertionError("No more pages configured")
        return self.pages[index]

    async def write_contact(self, record: Record) -> dict[str, Any]:
        if self.raise_on_write is not None:
            raise self.raise_on_write
        self.written.append(record.model_copy(deep=True))
        return dict(self.write_response)

    async def delete_contact(self, uid: RecordId) -> None:
        if self.raise_on_delete is not None:
            raise self.raise_on_delete
        self.deleted.append(uid)

    async def shutdown(self) -> None:
        self.shutdown_calls += 1


@pytest.fixture
def fake_provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def config(tmp_path: Path) -> ContactsConfig:
    cfg = ContactsConfig(data_dir=tmp_path / "contacts")
    cfg.ensure_dir()
    return cfg


@pytest.fixture
def credentials_file(config: ContactsConfig) -> CredentialsFile:
    """Credentials file holding a client plus a refresh token."""
    creds_file = CredentialsFile(config.credentials_path)
    creds_file.save(
        GoogleCredentials(
            client_id="cid.apps.googleusercontent.com",
            client_secret="client-secret",
            refresh_token="rtok-1",
        )
    )
    return creds_file


@pytest.fixture
def mock_http_client() -> Callable[[Callable[[httpx.Request], httpx.Response]], httpx.AsyncClient]:
    """Build an ``httpx.AsyncClient`` backed by ``httpx.MockTransport``."""

    def _make(handler: Callable[[httpx.Request], httpx.Response]) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(handler))

    return _make


@pytest.fixture
def full_person() -> dict[str, Any]:
    """A People API person with every field group the translator understands."""
    return {
        "resourceName": "people/c1234567890",
        "etag": "%EgcBAgkLLjc9GgQBAgUHIgw",
        "metadata": {
            "sources": [{"type": "CONTACT", "id": "1a2b3c"}],
        },
        "names": [
            {
                "displayName": "Dr. Ada M. Lovelace",
                "familyName": "Lovelace",
                "givenName": "Ada",
                "middleName": "M.",
                "honorificPrefix": "Dr.",
                "honorificSuffix": "",
            },
            {"displayName": "Ignored Second Name"},
        ],
        "nicknames": [{"value": "Countess"}],
        "phoneNumbers": [
            {"value": "+44 20 7946 0000", "type": "Work"},
            {"value": "+44 7700 900000", "type": "mobile"},
        ],
        "emailAddresses": [
            {"value": "ada@example.com", "type": "HOME"},
            {"value": "ada@engine.example"},
        ],
        "addresses": [
            {
                "type": "Home",
                "streetAddress": "12 St James's Square",
                "city": "London",
                "postalCode": "SW1Y 4JH",
                "country": "United Kingdom",
            }
        ],
        "organizations": [
            {"name": "Analytical Engine Co", "department": "Research", "title": "Analyst"},
            {"name": "Ignored Org"},
        ],
        "birthdays": [{"date": {"year": 1815, "month": 12, "day": 10}}],
        "photos": [{"url": "https://lh3.googleusercontent.com/a/photo.jpg"}],
        "biographies": [{"value": "Wrote the first program."}],
        "urls": [{"value": "https://ada.example", "type": "Blog"}],
        "events": [
            {"date": {"year": 1835, "month": 7, "day": 8}, "type": "anniversary"},
            {"date": {"month": 3, "day": 10}, "type": "Graduation"},
            {"date": {"year": 1840}, "type": "Dropped"},
        ],
        "genders": [{"value": "unspecified"}, {"value": "female"}],
        "imClients": [{"username": "ada", "protocol": "XMPP", "type": "Home"}],
        "sipAddresses": [{"value": "ada@sip.example", "type": "Work"}],
        "relations": [{"person": "Lord Byron", "type": "Father"}],
        "calendarUrls": [{"url": "https://cal.example/ada", "type": "Availability"}],
        "locales": [{"value": "en-GB"}],
        "interests": [{"value": "Mathematics"}],
        "skills": [{"value": "Programming"}],
        "occupations": [{"value": "Mathematician"}],
        "locations": [{"value": "Desk 4", "type": "desk"}],
        "memberships": [
            {"contactGroupMembership": {"contactGroupResourceName": "contactGroups/myContacts"}}
        ],
        "userDefined": [{"key": "shirt size", "value": "M"}],
        "clientData": [{"key": "App ID", "value": "42"}],
        "externalIds": [{"value": "EMP-001", "type": "Employee"}],
        "miscKeywords": [{"value": "vip", "type": "OUTLOOK_USER"}],
        "coverPhotos": [{"url": "https://lh3.googleusercontent.com/cover.jpg"}],
        "ageRanges": [{"ageRange": "TWENTY_ONE_OR_OLDER"}],
    }
