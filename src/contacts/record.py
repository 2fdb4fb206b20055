"""Canonical contact record model.

A :class:`Record` is the vCard-shaped representation every other layer
speaks: the translator produces it from Google People payloads, the local
store persists it as a vCard 4.0 file, and the CLI renders it.

Identifiers carry their provenance explicitly (:class:`RecordId`), so the
store and provider decide between create/update and remote deletes from the
tag rather than from the shape of the identifier string.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

IdSource = Literal["provider", "local"]

LOCAL_ID_SEPARATOR = "-"
ADDRESS_PARTS = ("po_box", "extended", "street", "city", "region", "postal_code", "country")
STAMP_FORMAT = "%Y%m%dT%H%M%SZ"

_MOBILE_TYPES = frozenset({"mobile", "cell"})


class RecordId(BaseModel):
    """A record identifier tagged with where it came from.

    ``provider`` ids are the trailing segment of a Google resource name
    (``people/c123`` → ``c123``); ``local`` ids are random UUIDs minted by
    the local store for records that have never been pushed.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    value: str = Field(min_length=1)
    source: IdSource

    @field_validator("value")
    @classmethod
    def _normalize_value(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError("value must be a non-empty string")
        if "/" in normalized:
            raise ValueError("value must not contain '/'")
        return normalized

    @classmethod
    def provider(cls, value: str) -> RecordId:
        return cls(value=value, source="provider")

    @classmethod
    def local(cls, value: str) -> RecordId:
        return cls(value=value, source="local")

    @classmethod
    def generate(cls) -> RecordId:
        """Mint a fresh locally-generated identifier (random 128-bit UUID)."""
        return cls(value=str(uuid.uuid4()), source="local")

    @classmethod
    def infer(cls, value: str) -> RecordId:
        """Guess provenance from the identifier's shape.

        Only used for files written before provenance was stored: ids
        containing the UUID separator are taken as local, everything else as
        provider-assigned. Google ids are not guaranteed to never contain a
        ``-``, so new data must never go through this path.
        """
        source: IdSource = "local" if LOCAL_ID_SEPARATOR in value else "provider"
        return cls(value=value, source=source)

    @property
    def is_provider(self) -> bool:
        return self.source == "provider"

    @property
    def resource_name(self) -> str:
        """Google People resource name for this id."""
        return f"people/{self.value}"

    def __str__(self) -> str:
        return self.value


class TypedValue(BaseModel):
    """One entry of a repeated typed field (phone, email, URL, ...)."""

    model_config = ConfigDict(extra="forbid")

    value: str
    type: str | None = None


class StructuredName(BaseModel):
    """The five vCard ``N`` components."""

    model_config = ConfigDict(extra="forbid")

    family: str = ""
    given: str = ""
    middle: str = ""
    prefix: str = ""
    suffix: str = ""

    def to_value(self) -> str:
        return ";".join([self.family, self.given, self.middle, self.prefix, self.suffix])

    @classmethod
    def from_value(cls, value: str) -> StructuredName:
        parts = value.split(";", 4)
        parts += [""] * (5 - len(parts))
        return cls(
            family=parts[0],
            given=parts[1],
            middle=parts[2],
            prefix=parts[3],
            suffix=parts[4],
        )

    def is_empty(self) -> bool:
        return not any((self.family, self.given, self.middle, self.prefix, self.suffix))


class Extension(BaseModel):
    """A vendor-extension field (``X-...``) with no standard vCard equivalent."""

    model_config = ConfigDict(extra="forbid")

    key: str = Field(min_length=3)
    value: str
    type: str | None = None

    @field_validator("key")
    @classmethod
    def _normalize_key(cls, value: str) -> str:
        normalized = value.strip().upper()
        if not normalized.startswith("X-"):
            raise ValueError("extension keys must start with 'X-'")
        return normalized


class Record(BaseModel):
    """Canonical contact record (vCard-shaped)."""

    model_config = ConfigDict(extra="forbid")

    uid: RecordId | None = None
    formatted_name: str = ""
    name: StructuredName | None = None
    nicknames: list[str] = Field(default_factory=list)
    phones: list[TypedValue] = Field(default_factory=list)
    emails: list[TypedValue] = Field(default_factory=list)
    addresses: list[TypedValue] = Field(default_factory=list)
    urls: list[TypedValue] = Field(default_factory=list)
    impps: list[TypedValue] = Field(default_factory=list)
    related: list[TypedValue] = Field(default_factory=list)
    calendar_urls: list[TypedValue] = Field(default_factory=list)
    organization: str | None = None
    title: str | None = None
    birthday: str | None = None
    anniversary: str | None = None
    gender: str | None = None
    notes: list[str] = Field(default_factory=list)
    photos: list[str] = Field(default_factory=list)
    languages: list[str] = Field(default_factory=list)
    extensions: list[Extension] = Field(default_factory=list)
    revision: str | None = None
    last_synced: str | None = None

    def add_extension(self, key: str, value: str, type: str | None = None) -> None:
        self.extensions.append(Extension(key=key, value=value, type=type))

    def ensure_formatted_name(self) -> None:
        """Default an empty display name to the identifier."""
        if not self.formatted_name and self.uid is not None:
            self.formatted_name = self.uid.value


# ---------------------------------------------------------------------------
# Accessors
# ---------------------------------------------------------------------------


def record_uid(record: Record) -> str:
    """Return the identifier string, or ``""`` when the record has none."""
    return record.uid.value if record.uid is not None else ""


def full_name(record: Record) -> str:
    return record.formatted_name


def primary_phone(record: Record) -> str:
    """Return the first mobile/cell phone, else the first phone, else ``""``."""
    if not record.phones:
        return ""
    for phone in record.phones:
        if phone.type and phone.type.lower() in _MOBILE_TYPES:
            return phone.value
    return record.phones[0].value


def primary_email(record: Record) -> str:
    return record.emails[0].value if record.emails else ""


def primary_photo(record: Record) -> str:
    return record.photos[0] if record.photos else ""


def extension_values(record: Record, key: str) -> list[Extension]:
    wanted = key.upper()
    return [ext for ext in record.extensions if ext.key == wanted]


def extension_value(record: Record, key: str) -> str | None:
    matches = extension_values(record, key)
    return matches[0].value if matches else None


def new_record(name: str) -> Record:
    """Create a minimal record with a fresh local identifier."""
    return Record(uid=RecordId.generate(), formatted_name=name)


# ---------------------------------------------------------------------------
# Address packing
# ---------------------------------------------------------------------------


def pack_address(
    *,
    po_box: str = "",
    extended: str = "",
    street: str = "",
    city: str = "",
    region: str = "",
    postal_code: str = "",
    country: str = "",
) -> str:
    """Join the seven ADR components; empty trailing parts are kept."""
    return ";".join([po_box, extended, street, city, region, postal_code, country])


def unpack_address(value: str) -> dict[str, str]:
    """Split a packed ADR value into its seven named components."""
    parts = value.split(";", len(ADDRESS_PARTS) - 1)
    parts += [""] * (len(ADDRESS_PARTS) - len(parts))
    return dict(zip(ADDRESS_PARTS, parts, strict=True))


def utc_stamp(now: datetime | None = None) -> str:
    """UTC timestamp with second precision, e.g. ``20240101T120000Z``."""
    moment = now if now is not None else datetime.now(UTC)
    return moment.astimezone(UTC).strftime(STAMP_FORMAT)
