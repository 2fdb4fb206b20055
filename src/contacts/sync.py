"""Google People API client and the one-way sync engine.

This module keeps the provider behind an abstract seam and covers:
- provider fetch/write/delete contracts
- a full, one-directional replace of the local store
- sync cursor persistence
"""

from __future__ import annotations

import abc
import logging
from typing import TYPE_CHECKING, Any

import httpx
from pydantic import BaseModel, ConfigDict, Field, field_validator

from contacts import ContactsError
from contacts.google_credentials import CredentialsFile, SyncCursorFile
from contacts.oauth import GoogleTokenSource, safe_google_error_message
from contacts.record import Record, RecordId, extension_value, record_uid, utc_stamp
from contacts.translate import (
    PERSON_FIELDS,
    UPDATE_PERSON_FIELDS,
    X_ETAG,
    resource_id,
    to_provider_payload,
    to_record,
)

if TYPE_CHECKING:
    from contacts.store import LocalStore

logger = logging.getLogger(__name__)

GOOGLE_PEOPLE_API_BASE_URL = "https://people.googleapis.com/v1"
GOOGLE_PEOPLE_API_CONNECTIONS_URL = f"{GOOGLE_PEOPLE_API_BASE_URL}/people/me/connections"
GOOGLE_PEOPLE_API_CREATE_URL = f"{GOOGLE_PEOPLE_API_BASE_URL}/people:createContact"

DEFAULT_GOOGLE_PAGE_SIZE = 1000
READ_SOURCE_TYPE_CONTACT = "READ_SOURCE_TYPE_CONTACT"


class ContactsSyncError(ContactsError):
    """Base contacts sync error."""


class ContactsTokenRefreshError(ContactsSyncError):
    """Raised when the provider cannot obtain an access token."""


class ContactsRequestError(ContactsSyncError):
    """Raised when a Google People API request fails.

    ``status_code`` is ``0`` for transport failures (no response).
    """

    def __init__(self, *, status_code: int, message: str) -> None:
        self.status_code = status_code
        self.message = message
        super().__init__(f"Google People API request failed ({status_code}): {message}")


class PeoplePage(BaseModel):
    """One page of ``people.connections.list`` (or all pages, merged)."""

    model_config = ConfigDict(extra="forbid")

    people: list[dict[str, Any]] = Field(default_factory=list)
    next_page_token: str | None = None
    next_sync_token: str | None = None

    @field_validator("next_page_token", "next_sync_token")
    @classmethod
    def _normalize_tokens(cls, value: str | None) -> str | None:
        if value is None:
            return None
        normalized = value.strip()
        return normalized or None


class SyncResult(BaseModel):
    """Counts from one :meth:`SyncEngine.sync` run."""

    model_config = ConfigDict(extra="forbid")

    fetched: int = 0
    written: int = 0
    skipped: int = 0
    synced_at: str
    next_sync_token: str | None = None


class ContactsProvider(abc.ABC):
    """Provider contract used by the local store and the sync engine."""

    @property
    @abc.abstractmethod
    def name(self) -> str:
        """Provider name (for logging)."""

    @abc.abstractmethod
    async def fetch_page(self, page_token: str | None = None) -> PeoplePage:
        """Fetch one page of contacts."""

    async def fetch_all(self) -> PeoplePage:
        """Fetch every page, following ``nextPageToken`` until it is absent."""
        people: list[dict[str, Any]] = []
        page_token: str | None = None
        next_sync_token: str | None = None
        while True:
            page = await self.fetch_page(page_token)
            people.extend(page.people)
            if page.next_sync_token is not None:
                next_sync_token = page.next_sync_token
            if page.next_page_token is None:
                break
            page_token = page.next_page_token
        return PeoplePage(people=people, next_sync_token=next_sync_token)

    @abc.abstractmethod
    async def write_contact(self, record: Record) -> dict[str, Any]:
        """Create or update *record* remotely; returns the provider's person."""

    @abc.abstractmethod
    async def delete_contact(self, uid: RecordId) -> None:
        """Delete the provider contact identified by *uid*."""

    @abc.abstractmethod
    async def shutdown(self) -> None:
        """Release provider resources."""


class GoogleContactsProvider(ContactsProvider):
    """Google People API provider implementation."""

    def __init__(
        self,
        credentials_file: CredentialsFile,
        *,
        person_fields: str = PERSON_FIELDS,
        page_size: int = DEFAULT_GOOGLE_PAGE_SIZE,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._person_fields = person_fields.strip() or PERSON_FIELDS
        self._page_size = max(1, int(page_size))
        self._owns_http_client = http_client is None
        self._http_client = (
            http_client
            if http_client is not None
            else httpx.AsyncClient(timeout=httpx.Timeout(20.0, connect=10.0))
        )
        self._token_source = GoogleTokenSource(credentials_file, self._http_client)

    @property
    def name(self) -> str:
        return "google"

    async def fetch_page(self, page_token: str | None = None) -> PeoplePage:
        params: dict[str, Any] = {
            "personFields": self._person_fields,
            "pageSize": self._page_size,
            "sources": READ_SOURCE_TYPE_CONTACT,
            "requestSyncToken": "true",
        }
        if page_token is not None:
            params["pageToken"] = page_token
        payload = await self._request("GET", GOOGLE_PEOPLE_API_CONNECTIONS_URL, params=params)
        return _parse_people_page(payload)

    async def write_contact(self, record: Record) -> dict[str, Any]:
        person = to_provider_payload(record)
        uid = record.uid
        if uid is not None and uid.is_provider:
            etag = extension_value(record, X_ETAG)
            if etag:
                person["etag"] = etag
            payload = await self._request(
                "PATCH",
                f"{GOOGLE_PEOPLE_API_BASE_URL}/{uid.resource_name}:updateContact",
                params={"updatePersonFields": UPDATE_PERSON_FIELDS},
                json=person,
            )
            logger.info("Updated Google contact %s", uid)
        else:
            payload = await self._request("POST", GOOGLE_PEOPLE_API_CREATE_URL, json=person)
            logger.info(
                "Created Google contact %s for local record %s",
                payload.get("resourceName"),
                record_uid(record),
            )
        return payload

    async def delete_contact(self, uid: RecordId) -> None:
        await self._request(
            "DELETE",
            f"{GOOGLE_PEOPLE_API_BASE_URL}/{uid.resource_name}:deleteContact",
        )
        logger.info("Deleted Google contact %s", uid)

    async def shutdown(self) -> None:
        if self._owns_http_client:
            await self._http_client.aclose()

    async def _request(
        self,
        method: str,
        url: str,
        *,
        params: dict[str, Any] | None = None,
        json: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        try:
            token = await self._token_source.get_access_token()
        except ContactsError as exc:
            raise ContactsTokenRefreshError(str(exc)) from exc

        try:
            response = await self._http_client.request(
                method,
                url,
                params=params,
                json=json,
                headers={
                    "Authorization": f"Bearer {token}",
                    "Accept": "application/json",
                },
            )
        except httpx.HTTPError as exc:
            raise ContactsRequestError(status_code=0, message=str(exc)) from exc

        if response.status_code < 200 or response.status_code >= 300:
            raise ContactsRequestError(
                status_code=response.status_code,
                message=safe_google_error_message(response),
            )

        if response.status_code == 204 or not response.content:
            return {}

        try:
            payload = response.json()
        except ValueError as exc:
            raise ContactsRequestError(
                status_code=response.status_code,
                message="Invalid JSON payload from Google People API",
            ) from exc

        if not isinstance(payload, dict):
            raise ContactsRequestError(
                status_code=response.status_code,
                message="Google People API payload must be a JSON object",
            )
        return payload


def _parse_people_page(payload: dict[str, Any]) -> PeoplePage:
    raw_people = payload.get("connections")
    people: list[dict[str, Any]] = []
    if isinstance(raw_people, list):
        people = [item for item in raw_people if isinstance(item, dict)]

    next_page_token = payload.get("nextPageToken")
    next_sync_token = payload.get("nextSyncToken")
    return PeoplePage(
        people=people,
        next_page_token=next_page_token if isinstance(next_page_token, str) else None,
        next_sync_token=next_sync_token if isinstance(next_sync_token, str) else None,
    )


def provider_id_from_person(person: dict[str, Any]) -> RecordId | None:
    """Provider id from a People API response body, if it carries one."""
    resource_name = person.get("resourceName")
    if not isinstance(resource_name, str) or not resource_name.strip():
        return None
    return RecordId.provider(resource_id(resource_name.strip()))


class SyncEngine:
    """Replace local records with the provider's current contact set.

    Full fetch every run. Records present locally but absent remotely are
    left alone; local edits to synced records are overwritten. Concurrent
    runs against the same directory are not coordinated.
    """

    def __init__(
        self,
        *,
        provider: ContactsProvider,
        store: LocalStore,
        cursor_file: SyncCursorFile,
    ) -> None:
        self._provider = provider
        self._store = store
        self._cursor_file = cursor_file
        self.previous_sync_token = cursor_file.read()
        if self.previous_sync_token is not None:
            logger.debug("Stored sync cursor present; running a full fetch regardless")

    async def sync(self) -> SyncResult:
        listing = await self._provider.fetch_all()
        synced_at = utc_stamp()

        records: list[Record] = []
        skipped = 0
        for person in listing.people:
            try:
                records.append(to_record(person))
            except ValueError as exc:
                skipped += 1
                logger.warning("Skipping %s contact: %s", self._provider.name, exc)

        for record in records:
            await self._store.write_local(record, synced_at=synced_at)

        if listing.next_sync_token is not None:
            self._cursor_file.write(listing.next_sync_token)

        result = SyncResult(
            fetched=len(listing.people),
            written=len(records),
            skipped=skipped,
            synced_at=synced_at,
            next_sync_token=listing.next_sync_token,
        )
        logger.info(
            "Contacts sync complete (provider=%s, fetched=%d, written=%d, skipped=%d)",
            self._provider.name,
            result.fetched,
            result.written,
            result.skipped,
        )
        return result
