"""Google People API ↔ Record translation.

``to_record`` maps every person field group the People API returns onto the
vCard-shaped :class:`~contacts.record.Record`. Groups with a vCard
equivalent land on the standard fields; the rest become ``X-GOOGLE-*``
vendor extensions so nothing fetched is dropped.

``to_provider_payload`` is the inverse for the fields the People API write
path accepts (names, phones, emails, addresses, organization/title,
birthday, biography, URLs). Extension data is not
written back.

Type-label casing: phone, email, address, URL, IM, SIP, relation and
calendar-URL labels are lower-cased. Event, location, external-id, keyword
and source labels keep the provider's spelling.
"""

from __future__ import annotations

import logging
import re
from datetime import datetime
from typing import Any

from contacts import ContactsError
from contacts.record import (
    Record,
    RecordId,
    StructuredName,
    TypedValue,
    pack_address,
    unpack_address,
)

logger = logging.getLogger(__name__)

# Every personField the People API supports; requested on each list call.
PERSON_FIELDS = (
    "addresses,ageRanges,biographies,birthdays,calendarUrls,clientData,coverPhotos,"
    "emailAddresses,events,externalIds,genders,imClients,interests,locales,locations,"
    "memberships,metadata,miscKeywords,names,nicknames,occupations,organizations,"
    "phoneNumbers,photos,relations,sipAddresses,skills,urls,userDefined"
)

# Field mask sent with updateContact; matches what to_provider_payload emits.
UPDATE_PERSON_FIELDS = (
    "names,phoneNumbers,emailAddresses,addresses,organizations,birthdays,biographies,urls"
)

X_ETAG = "X-GOOGLE-ETAG"
X_EVENT = "X-GOOGLE-EVENT"
X_INTEREST = "X-GOOGLE-INTEREST"
X_SKILL = "X-GOOGLE-SKILL"
X_OCCUPATION = "X-GOOGLE-OCCUPATION"
X_LOCATION = "X-GOOGLE-LOCATION"
X_GROUP_MEMBERSHIP = "X-GOOGLE-GROUP-MEMBERSHIP"
X_CUSTOM_PREFIX = "X-GOOGLE-CUSTOM-"
X_CLIENT_PREFIX = "X-GOOGLE-CLIENT-"
X_EXTERNAL_ID = "X-GOOGLE-EXTERNAL-ID"
X_KEYWORD = "X-GOOGLE-KEYWORD"
X_COVER_PHOTO = "X-GOOGLE-COVER-PHOTO"
X_AGE_RANGE = "X-GOOGLE-AGE-RANGE"
X_SOURCE = "X-GOOGLE-SOURCE"

_KEY_INVALID_CHARS = re.compile(r"[^A-Z0-9-]")


class TranslationError(ContactsError, ValueError):
    """Raised when a provider payload is missing its resource name."""


# ---------------------------------------------------------------------------
# Pure helpers
# ---------------------------------------------------------------------------


def extension_key_suffix(text: str) -> str:
    """Turn arbitrary user text into a vCard-safe extension key suffix.

    Upper-cases the text and replaces whitespace (and any other character
    not allowed in a vCard property name) with ``-``. The mapping is not
    injective: ``"shirt_size"`` and ``"Shirt Size"`` both
    yield ``SHIRT-SIZE``. Colliding keys are kept as separate extension
    entries under the shared key, so no value is dropped, but the original
    key text cannot be recovered from the record.

    >>> extension_key_suffix("shirt size")
    'SHIRT-SIZE'
    """
    suffix = _KEY_INVALID_CHARS.sub("-", text.upper())
    return suffix or "UNNAMED"


def resource_id(resource_name: str) -> str:
    """Return the trailing segment of a resource name (``people/c1`` → ``c1``)."""
    return resource_name.rsplit("/", 1)[-1]


def _as_int(value: Any) -> int:
    if isinstance(value, bool):
        return 0
    if isinstance(value, int):
        return value
    return 0


def encode_date(date: Any) -> str | None:
    """Render a People API ``Date`` as ``YYYYMMDD`` or ``--MMDD``.

    Dates without both month and day are dropped (``None``).
    """
    if not isinstance(date, dict):
        return None
    year = _as_int(date.get("year"))
    month = _as_int(date.get("month"))
    day = _as_int(date.get("day"))
    if month <= 0 or day <= 0:
        return None
    if year > 0:
        return f"{year:04d}{month:02d}{day:02d}"
    return f"--{month:02d}{day:02d}"


def parse_date_value(value: str) -> dict[str, int] | None:
    """Parse ``YYYYMMDD`` / ``--MMDD`` back into a People API ``Date``.

    Separators are stripped first; exactly 8 digits is a full date, exactly
    4 digits a month/day date (``year`` 0). Anything else, or an invalid
    calendar date, yields ``None``.
    """
    digits = value.replace("-", "").strip()
    if not digits.isdigit():
        return None
    if len(digits) == 8:
        try:
            parsed = datetime.strptime(digits, "%Y%m%d")
        except ValueError:
            return None
        return {"year": parsed.year, "month": parsed.month, "day": parsed.day}
    if len(digits) == 4:
        try:
            # Leap year so --0229 stays valid.
            parsed = datetime.strptime(f"2000{digits}", "%Y%m%d")
        except ValueError:
            return None
        return {"year": 0, "month": parsed.month, "day": parsed.day}
    return None


def _as_string(value: Any) -> str:
    return value if isinstance(value, str) else ""


def _dicts(raw: Any) -> list[dict[str, Any]]:
    if not isinstance(raw, list):
        return []
    return [item for item in raw if isinstance(item, dict)]


def _label(item: dict[str, Any], *, lower: bool = True) -> str | None:
    label = _as_string(item.get("type")).strip()
    if not label:
        return None
    return label.lower() if lower else label


def _typed(
    raw: Any,
    value_key: str = "value",
    *,
    lower: bool = True,
    prefix: str = "",
) -> list[TypedValue]:
    entries: list[TypedValue] = []
    for item in _dicts(raw):
        value = _as_string(item.get(value_key))
        if not value:
            continue
        entries.append(TypedValue(value=prefix + value, type=_label(item, lower=lower)))
    return entries


def _values(raw: Any, value_key: str = "value") -> list[str]:
    return [
        value for item in _dicts(raw) if (value := _as_string(item.get(value_key)))
    ]


# ---------------------------------------------------------------------------
# People API → Record
# ---------------------------------------------------------------------------


def _apply_names(record: Record, person: dict[str, Any]) -> None:
    names = _dicts(person.get("names"))
    if not names:
        return
    name = names[0]
    display = _as_string(name.get("displayName"))
    if display:
        record.formatted_name = display
    record.name = StructuredName(
        family=_as_string(name.get("familyName")),
        given=_as_string(name.get("givenName")),
        middle=_as_string(name.get("middleName")),
        prefix=_as_string(name.get("honorificPrefix")),
        suffix=_as_string(name.get("honorificSuffix")),
    )


def _parse_addresses(raw: Any) -> list[TypedValue]:
    addresses: list[TypedValue] = []
    for item in _dicts(raw):
        packed = pack_address(
            po_box=_as_string(item.get("poBox")),
            extended=_as_string(item.get("extendedAddress")),
            street=_as_string(item.get("streetAddress")),
            city=_as_string(item.get("city")),
            region=_as_string(item.get("region")),
            postal_code=_as_string(item.get("postalCode")),
            country=_as_string(item.get("country")),
        )
        addresses.append(TypedValue(value=packed, type=_label(item)))
    return addresses


def _apply_organization(record: Record, person: dict[str, Any]) -> None:
    organizations = _dicts(person.get("organizations"))
    if not organizations:
        return
    org = organizations[0]
    name = _as_string(org.get("name"))
    department = _as_string(org.get("department"))
    value = f"{name};{department}" if department else name
    record.organization = value or None
    title = _as_string(org.get("title"))
    if title:
        record.title = title


def _apply_birthday(record: Record, person: dict[str, Any]) -> None:
    birthdays = _dicts(person.get("birthdays"))
    if birthdays:
        record.birthday = encode_date(birthdays[0].get("date"))


def _apply_events(record: Record, person: dict[str, Any]) -> None:
    for event in _dicts(person.get("events")):
        rendered = encode_date(event.get("date"))
        if rendered is None:
            continue
        label = _label(event, lower=False)
        if label is not None and label.lower() == "anniversary":
            record.anniversary = rendered
        else:
            record.add_extension(X_EVENT, rendered, label)


def _parse_im_clients(raw: Any) -> list[TypedValue]:
    entries: list[TypedValue] = []
    for item in _dicts(raw):
        username = _as_string(item.get("username"))
        if not username:
            continue
        protocol = _as_string(item.get("protocol")).lower()
        entries.append(TypedValue(value=f"{protocol}:{username}", type=_label(item)))
    return entries


def _apply_extensions(record: Record, person: dict[str, Any]) -> None:
    for value in _values(person.get("interests")):
        record.add_extension(X_INTEREST, value)
    for value in _values(person.get("skills")):
        record.add_extension(X_SKILL, value)
    for value in _values(person.get("occupations")):
        record.add_extension(X_OCCUPATION, value)
    for entry in _typed(person.get("locations"), lower=False):
        record.add_extension(X_LOCATION, entry.value, entry.type)

    for item in _dicts(person.get("memberships")):
        group = item.get("contactGroupMembership")
        if not isinstance(group, dict):
            continue
        group_name = _as_string(group.get("contactGroupResourceName"))
        if group_name:
            record.add_extension(X_GROUP_MEMBERSHIP, group_name)

    for item in _dicts(person.get("userDefined")):
        key = _as_string(item.get("key"))
        record.add_extension(
            X_CUSTOM_PREFIX + extension_key_suffix(key), _as_string(item.get("value"))
        )
    for item in _dicts(person.get("clientData")):
        key = _as_string(item.get("key"))
        record.add_extension(
            X_CLIENT_PREFIX + extension_key_suffix(key), _as_string(item.get("value"))
        )

    for entry in _typed(person.get("externalIds"), lower=False):
        record.add_extension(X_EXTERNAL_ID, entry.value, entry.type)
    for entry in _typed(person.get("miscKeywords"), lower=False):
        record.add_extension(X_KEYWORD, entry.value, entry.type)
    for value in _values(person.get("coverPhotos"), "url"):
        record.add_extension(X_COVER_PHOTO, value)
    for value in _values(person.get("ageRanges"), "ageRange"):
        record.add_extension(X_AGE_RANGE, value)

    metadata = person.get("metadata")
    if isinstance(metadata, dict):
        for source in _dicts(metadata.get("sources")):
            source_id = _as_string(source.get("id"))
            if source_id:
                record.add_extension(X_SOURCE, source_id, _as_string(source.get("type")) or None)


def to_record(person: dict[str, Any]) -> Record:
    """Translate one People API ``Person`` into a :class:`Record`.

    Never fails on a well-formed payload: every optional group may be
    absent, in which case the record carries only its identifier and a
    display name equal to that identifier.

    Raises
    ------
    TranslationError
        If the payload has no ``resourceName``.
    """
    resource_name = _as_string(person.get("resourceName")).strip()
    uid_value = resource_id(resource_name) if resource_name else ""
    if not uid_value:
        raise TranslationError("People API person is missing resourceName")

    record = Record(uid=RecordId.provider(uid_value))

    etag = _as_string(person.get("etag"))
    if etag:
        record.add_extension(X_ETAG, etag)

    _apply_names(record, person)
    record.nicknames = _values(person.get("nicknames"))
    record.phones = _typed(person.get("phoneNumbers"))
    record.emails = _typed(person.get("emailAddresses"))
    record.addresses = _parse_addresses(person.get("addresses"))
    _apply_organization(record, person)
    _apply_birthday(record, person)
    record.photos = _values(person.get("photos"), "url")
    record.notes = _values(person.get("biographies"))
    record.urls = _typed(person.get("urls"))
    _apply_events(record, person)

    genders = _values(person.get("genders"))
    if genders:
        record.gender = genders[-1]

    record.impps = _parse_im_clients(person.get("imClients"))
    record.related = _typed(person.get("relations"), "person")
    record.calendar_urls = _typed(person.get("calendarUrls"), "url")
    record.impps.extend(_typed(person.get("sipAddresses"), prefix="sip:"))
    record.languages = _values(person.get("locales"))

    _apply_extensions(record, person)

    record.ensure_formatted_name()
    return record


# ---------------------------------------------------------------------------
# Record → People API
# ---------------------------------------------------------------------------


def _typed_payload(entries: list[TypedValue]) -> list[dict[str, str]]:
    payload: list[dict[str, str]] = []
    for entry in entries:
        item = {"value": entry.value}
        if entry.type:
            item["type"] = entry.type
        payload.append(item)
    return payload


def _address_payload(entry: TypedValue) -> dict[str, str]:
    parts = unpack_address(entry.value)
    item = {
        "poBox": parts["po_box"],
        "extendedAddress": parts["extended"],
        "streetAddress": parts["street"],
        "city": parts["city"],
        "region": parts["region"],
        "postalCode": parts["postal_code"],
        "country": parts["country"],
    }
    if entry.type:
        item["type"] = entry.type
    return item


def to_provider_payload(record: Record) -> dict[str, Any]:
    """Translate a :class:`Record` into a People API ``Person`` write body.

    Only write-path fields are emitted; everything else is omitted.
    """
    person: dict[str, Any] = {}

    if record.name is not None:
        person["names"] = [
            {
                "familyName": record.name.family,
                "givenName": record.name.given,
                "middleName": record.name.middle,
                "honorificPrefix": record.name.prefix,
                "honorificSuffix": record.name.suffix,
            }
        ]
    elif record.formatted_name:
        person["names"] = [{"unstructuredName": record.formatted_name}]

    if record.phones:
        person["phoneNumbers"] = _typed_payload(record.phones)
    if record.emails:
        person["emailAddresses"] = _typed_payload(record.emails)
    if record.addresses:
        person["addresses"] = [_address_payload(entry) for entry in record.addresses]

    if record.organization or record.title:
        org: dict[str, str] = {}
        if record.organization:
            name, _, department = record.organization.partition(";")
            org["name"] = name
            if department:
                org["department"] = department
        if record.title:
            org["title"] = record.title
        person["organizations"] = [org]

    if record.birthday:
        date = parse_date_value(record.birthday)
        if date is not None:
            person["birthdays"] = [{"date": date}]
        else:
            logger.debug("Dropping unparseable birthday %r on write", record.birthday)

    # Contact sources allow a single biography.
    if record.notes:
        person["biographies"] = [{"value": record.notes[0], "contentType": "TEXT_PLAIN"}]

    if record.urls:
        person["urls"] = _typed_payload(record.urls)

    return person
