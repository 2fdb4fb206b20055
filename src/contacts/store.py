"""File-per-record local contact store.

Each record lives at ``<people_dir>/<identifier>.vcf`` as a single vCard 4.0
document. When a provider is configured, :meth:`LocalStore.write` and
:meth:`LocalStore.delete` also push the change to it:

- create/update writes the local file first, then pushes; a failed push
  raises :class:`StoreError` and leaves the local file in place.
- delete removes the provider copy first; a failed remote delete aborts
  before the local file is touched.

Neither direction is atomic across the two stores.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from pathlib import Path
from typing import Any

from contacts import ContactsError
from contacts.record import Record, RecordId, record_uid, utc_stamp
from contacts.sync import ContactsProvider, provider_id_from_person
from contacts.translate import X_ETAG
from contacts.vcard import RecordDecodeError, decode_record, encode_record

logger = logging.getLogger(__name__)

RECORD_SUFFIX = ".vcf"


class StoreError(ContactsError):
    """Raised when a store operation fails (I/O or provider push)."""


class ContactNotFoundError(StoreError):
    """Raised when deleting a record that does not exist locally."""

    def __init__(self, uid: str) -> None:
        self.uid = uid
        super().__init__(f"contact not found: {uid}")


def _is_safe_identifier(uid: str) -> bool:
    return bool(uid) and "/" not in uid and "\\" not in uid and not uid.startswith(".")


class LocalStore:
    """Durable CRUD over :class:`Record` objects."""

    def __init__(self, people_dir: Path, *, provider: ContactsProvider | None = None) -> None:
        self.people_dir = Path(people_dir)
        self._provider = provider
        try:
            self.people_dir.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise StoreError(f"failed to create contacts directory {self.people_dir}: {exc}") from exc

    @property
    def provider(self) -> ContactsProvider | None:
        return self._provider

    def path_for(self, uid: str) -> Path:
        return self.people_dir / f"{uid}{RECORD_SUFFIX}"

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def _read(self, path: Path) -> Record:
        try:
            text = path.read_text(encoding="utf-8")
        except UnicodeDecodeError as exc:
            raise RecordDecodeError(f"contact file {path} is not valid UTF-8: {exc}") from exc
        except OSError as exc:
            raise StoreError(f"failed to read contact file {path}: {exc}") from exc
        try:
            return decode_record(text)
        except RecordDecodeError as exc:
            raise RecordDecodeError(f"failed to decode contact file {path}: {exc}") from exc

    def get(self, uid: str) -> Record | None:
        """Return the record stored under *uid*, or ``None`` if absent.

        Decode failures propagate as :class:`~contacts.vcard.RecordDecodeError`.
        """
        if not _is_safe_identifier(uid):
            return None
        path = self.path_for(uid)
        if not path.is_file():
            return None
        return self._read(path)

    def list(self) -> list[Record]:
        """Every stored record, in directory-enumeration order."""
        try:
            entries = list(self.people_dir.iterdir())
        except OSError as exc:
            raise StoreError(f"failed to read contacts directory {self.people_dir}: {exc}") from exc

        records: list[Record] = []
        for path in entries:
            if path.suffix != RECORD_SUFFIX or not path.is_file():
                continue
            records.append(self._read(path))
        return records

    def find_by_name(self, name: str) -> Record | None:
        """First record whose display name matches *name*, case-insensitively."""
        wanted = name.casefold()
        for record in self.list():
            if record.formatted_name.casefold() == wanted:
                return record
        return None

    def resolve(self, query: str) -> Record | None:
        """Look *query* up as an identifier first, then as a display name."""
        record = self.get(query)
        if record is not None:
            return record
        return self.find_by_name(query)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def _write_file(self, record: Record) -> Path:
        path = self.path_for(record_uid(record))
        try:
            path.write_text(encode_record(record), encoding="utf-8")
        except OSError as exc:
            raise StoreError(f"failed to write contact file {path}: {exc}") from exc
        return path

    def _remove_file(self, path: Path) -> None:
        try:
            path.unlink()
        except FileNotFoundError:
            return
        except OSError as exc:
            raise StoreError(f"failed to delete contact file {path}: {exc}") from exc

    async def write(self, record: Record) -> Record:
        """Persist *record* locally, then push it to the provider (if any).

        A record without an identifier gets a fresh local one. Returns the
        record as stored; after a provider create it carries the provider's
        identifier and etag, and the local-id file is replaced.
        """
        stored = record.model_copy(deep=True)
        if stored.uid is None:
            stored.uid = RecordId.generate()
        stored.ensure_formatted_name()
        stored.revision = utc_stamp()
        self._write_file(stored)
        logger.debug("Wrote contact %s", stored.uid)

        if self._provider is None:
            return stored

        try:
            person = await self._provider.write_contact(stored)
        except ContactsError as exc:
            raise StoreError(
                f"saved {stored.uid} locally but failed to push to {self._provider.name}: {exc}"
            ) from exc
        return self._adopt_provider_state(stored, person)

    def _adopt_provider_state(self, stored: Record, person: dict[str, Any]) -> Record:
        provider_id = provider_id_from_person(person)
        etag = person.get("etag")
        if provider_id is None and not isinstance(etag, str):
            return stored

        updated = stored.model_copy(deep=True)
        if isinstance(etag, str) and etag:
            updated.extensions = [ext for ext in updated.extensions if ext.key != X_ETAG]
            updated.add_extension(X_ETAG, etag)

        old_path = self.path_for(record_uid(stored))
        if provider_id is not None and provider_id != stored.uid:
            if updated.formatted_name == record_uid(stored):
                updated.formatted_name = provider_id.value
            updated.uid = provider_id
        self._write_file(updated)
        if updated.uid != stored.uid:
            self._remove_file(old_path)
            logger.info("Contact %s is now %s", stored.uid, updated.uid)
        return updated

    async def write_many(self, records: Iterable[Record]) -> list[Record]:
        """Write records in order, stopping at the first failure."""
        return [await self.write(record) for record in records]

    async def write_local(self, record: Record, *, synced_at: str | None = None) -> Record:
        """Persist a provider-sourced record without pushing it back."""
        stored = record.model_copy(deep=True)
        if stored.uid is None:
            stored.uid = RecordId.generate()
        stored.ensure_formatted_name()
        stored.last_synced = synced_at or utc_stamp()
        self._write_file(stored)
        return stored

    async def delete(self, uid: str) -> Record:
        """Delete the record stored under *uid* (remotely first, if provider-sourced).

        Raises
        ------
        ContactNotFoundError
            If no local file exists; no remote call is made.
        StoreError
            If the remote delete or the file removal fails.
        """
        record = self.get(uid)
        if record is None:
            raise ContactNotFoundError(uid)

        record_id = record.uid if record.uid is not None else RecordId.infer(uid)
        if record_id.is_provider and self._provider is not None:
            try:
                await self._provider.delete_contact(record_id)
            except ContactsError as exc:
                raise StoreError(
                    f"failed to delete {uid} from {self._provider.name}: {exc}"
                ) from exc

        path = self.path_for(uid)
        try:
            path.unlink()
        except FileNotFoundError as exc:
            raise ContactNotFoundError(uid) from exc
        except OSError as exc:
            raise StoreError(f"failed to delete contact file {path}: {exc}") from exc
        logger.info("Deleted contact %s", uid)
        return record
