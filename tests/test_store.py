"""Tests for the file-per-record local store."""

from __future__ import annotations

import pytest

from contacts.record import Record, RecordId, TypedValue, extension_value, new_record
from contacts.store import ContactNotFoundError, LocalStore, StoreError
from contacts.sync import ContactsRequestError
from contacts.vcard import RecordDecodeError

pytestmark = pytest.mark.unit


@pytest.fixture
def store(config) -> LocalStore:
    return LocalStore(config.people_dir)


@pytest.fixture
def synced_store(config, fake_provider) -> LocalStore:
    return LocalStore(config.people_dir, provider=fake_provider)


class TestConstruction:
    def test_creates_people_directory(self, tmp_path):
        people = tmp_path / "nested" / "people"
        LocalStore(people)
        assert people.is_dir()

    def test_unusable_directory_raises_store_error(self, tmp_path):
        blocker = tmp_path / "blocker"
        blocker.write_text("not a directory")
        with pytest.raises(StoreError, match="blocker"):
            LocalStore(blocker / "people")


class TestReads:
    def test_get_missing_returns_none(self, store):
        assert store.get("nope") is None

    @pytest.mark.parametrize("uid", ["", "../secrets", "a/b", ".hidden"])
    def test_get_rejects_path_like_identifiers(self, store, uid):
        assert store.get(uid) is None

    def test_get_corrupt_file_raises(self, store):
        store.path_for("broken").write_text("not a vcard")
        with pytest.raises(RecordDecodeError, match="broken.vcf"):
            store.get("broken")

    def test_non_utf8_file_raises_decode_error(self, store):
        store.path_for("latin").write_bytes(b"BEGIN:VCARD\r\nFN:\xff\xfe\r\nEND:VCARD\r\n")

        with pytest.raises(RecordDecodeError, match="latin.vcf"):
            store.list()
        with pytest.raises(RecordDecodeError):
            store.get("latin")

    async def test_list_only_reads_vcf_files(self, store):
        await store.write(new_record("Alice"))
        (store.people_dir / "notes.txt").write_text("ignored")
        (store.people_dir / "subdir.vcf").mkdir()

        records = store.list()

        assert [r.formatted_name for r in records] == ["Alice"]

    async def test_find_by_name_is_case_insensitive(self, store):
        await store.write(new_record("Alice Smith"))

        found = store.find_by_name("alice SMITH")

        assert found is not None and found.formatted_name == "Alice Smith"
        assert store.find_by_name("Alice") is None

    async def test_resolve_prefers_identifier_then_name(self, store):
        alice = await store.write(new_record("Alice"))
        await store.write(Record(uid=RecordId.provider("Alice"), formatted_name="Bob"))

        assert store.resolve("Alice").formatted_name == "Bob"
        assert store.resolve(alice.uid.value).formatted_name == "Alice"
        assert store.resolve("bob").formatted_name == "Bob"
        assert store.resolve("carol") is None


class TestWrite:
    async def test_assigns_local_identifier_when_missing(self, store):
        stored = await store.write(Record(formatted_name="New Person"))

        assert stored.uid is not None
        assert stored.uid.source == "local"
        assert store.path_for(stored.uid.value).is_file()

    async def test_stamps_revision(self, store):
        stored = await store.write(new_record("Rev"))

        assert stored.revision is not None
        assert len(stored.revision) == len("20240101T000000Z")
        assert store.get(stored.uid.value).revision == stored.revision

    async def test_does_not_mutate_input(self, store):
        record = Record(formatted_name="Immutable")
        await store.write(record)
        assert record.uid is None

    async def test_persists_round_trip(self, store):
        record = new_record("Carol")
        record.phones = [TypedValue(value="555-0100", type="mobile")]

        stored = await store.write(record)

        assert store.get(stored.uid.value) == stored

    async def test_write_many(self, store):
        written = await store.write_many([new_record("A"), new_record("B")])

        assert len(written) == 2
        assert len(store.list()) == 2


class TestWriteWithProvider:
    async def test_update_pushes_provider_record(self, synced_store, fake_provider):
        record = Record(uid=RecordId.provider("c1"), formatted_name="Remote")
        fake_provider.write_response = {"resourceName": "people/c1", "etag": "etag-2"}

        stored = await synced_store.write(record)

        assert [r.uid for r in fake_provider.written] == [RecordId.provider("c1")]
        assert extension_value(stored, "X-GOOGLE-ETAG") == "etag-2"
        assert extension_value(synced_store.get("c1"), "X-GOOGLE-ETAG") == "etag-2"

    async def test_create_rekeys_local_record_to_provider_id(self, synced_store, fake_provider):
        fake_provider.write_response = {"resourceName": "people/c77", "etag": "etag-1"}

        stored = await synced_store.write(Record(formatted_name="Brand New"))

        assert fake_provider.written[0].uid.source == "local"
        local_id = fake_provider.written[0].uid.value
        assert stored.uid == RecordId.provider("c77")
        assert synced_store.get(local_id) is None
        assert synced_store.get("c77").formatted_name == "Brand New"

    async def test_push_failure_raises_and_keeps_local_file(self, synced_store, fake_provider):
        fake_provider.raise_on_write = ContactsRequestError(status_code=500, message="boom")
        record = Record(uid=RecordId.provider("c1"), formatted_name="Diverged")

        with pytest.raises(StoreError, match="boom"):
            await synced_store.write(record)

        assert synced_store.get("c1") is not None


class TestDelete:
    async def test_get_after_delete_reports_not_found(self, store):
        stored = await store.write(new_record("Gone"))

        await store.delete(stored.uid.value)

        assert store.get(stored.uid.value) is None

    async def test_delete_missing_raises_not_found(self, store):
        with pytest.raises(ContactNotFoundError):
            await store.delete("does-not-exist")

    async def test_delete_missing_makes_no_remote_call(self, synced_store, fake_provider):
        with pytest.raises(ContactNotFoundError):
            await synced_store.delete("c404")
        assert fake_provider.deleted == []

    async def test_provider_record_deleted_remotely_first(self, synced_store, fake_provider):
        await synced_store.write_local(Record(uid=RecordId.provider("c1"), formatted_name="R"))

        await synced_store.delete("c1")

        assert fake_provider.deleted == [RecordId.provider("c1")]
        assert synced_store.get("c1") is None

    async def test_local_record_not_deleted_remotely(self, synced_store, fake_provider):
        await synced_store.write_local(Record(uid=RecordId.local("abc"), formatted_name="L"))

        await synced_store.delete("abc")

        assert fake_provider.deleted == []
        assert synced_store.get("abc") is None

    async def test_remote_failure_keeps_local_file(self, synced_store, fake_provider):
        await synced_store.write_local(Record(uid=RecordId.provider("c1"), formatted_name="R"))
        fake_provider.raise_on_delete = ContactsRequestError(status_code=403, message="denied")

        with pytest.raises(StoreError, match="denied"):
            await synced_store.delete("c1")

        assert synced_store.get("c1") is not None


class TestWriteLocal:
    async def test_stamps_last_synced_without_pushing(self, synced_store, fake_provider):
        record = Record(uid=RecordId.provider("c1"), formatted_name="Synced")

        stored = await synced_store.write_local(record, synced_at="20240101T000000Z")

        assert stored.last_synced == "20240101T000000Z"
        assert synced_store.get("c1").last_synced == "20240101T000000Z"
        assert fake_provider.written == []
