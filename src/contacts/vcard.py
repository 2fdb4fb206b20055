"""vCard 4.0 encode/decode for :class:`~contacts.record.Record`.

Each record is persisted as a single vCard document. Provenance of the
identifier is stored as an ``X-ID-SOURCE`` parameter on the ``UID`` line::

    BEGIN:VCARD
    VERSION:4.0
    UID;X-ID-SOURCE=provider:c123456
    FN:John Doe
    N:Doe;John;;;
    TEL;TYPE=mobile:555-1234
    X-GOOGLE-ETAG:%EgcBAgkLLjc9GgQBAgUHIgw
    END:VCARD

Files written before the parameter existed decode through the legacy
separator heuristic (:meth:`RecordId.infer`).
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import Any

import vobject

from contacts import ContactsError
from contacts.record import (
    Extension,
    Record,
    RecordId,
    StructuredName,
    TypedValue,
    pack_address,
    unpack_address,
)

logger = logging.getLogger(__name__)

VCARD_VERSION = "4.0"
ID_SOURCE_PARAM = "X-ID-SOURCE"
LAST_SYNCED_FIELD = "X-LAST-SYNCED"

# Repeated typed fields: vCard property name → Record attribute.
_TYPED_FIELDS = (
    ("tel", "phones"),
    ("email", "emails"),
    ("url", "urls"),
    ("impp", "impps"),
    ("related", "related"),
    ("caluri", "calendar_urls"),
)

# Singular text fields: vCard property name → Record attribute.
_SINGULAR_FIELDS = (
    ("title", "title"),
    ("bday", "birthday"),
    ("anniversary", "anniversary"),
    ("gender", "gender"),
    ("rev", "revision"),
    (LAST_SYNCED_FIELD.lower(), "last_synced"),
)

# Plain repeated text fields.
_LIST_FIELDS = (
    ("nickname", "nicknames"),
    ("note", "notes"),
    ("photo", "photos"),
    ("lang", "languages"),
)

_RESERVED_NAMES = frozenset(
    {"version", "uid", "fn", "n", "adr", "org", "prodid"}
    | {name for name, _ in _TYPED_FIELDS}
    | {name for name, _ in _SINGULAR_FIELDS}
    | {name for name, _ in _LIST_FIELDS}
)


class RecordDecodeError(ContactsError):
    """Raised when a persisted vCard document cannot be parsed."""


# ---------------------------------------------------------------------------
# Encoding
# ---------------------------------------------------------------------------


def _add_typed(card: Any, name: str, entry: TypedValue) -> None:
    line = card.add(name)
    line.value = entry.value
    if entry.type:
        line.type_param = entry.type


def _add_text(card: Any, name: str, value: str) -> None:
    card.add(name).value = value


def _build_card(record: Record) -> Any:
    card = vobject.vCard()
    card.add("version").value = VCARD_VERSION

    if record.uid is not None:
        uid_line = card.add("uid")
        uid_line.value = record.uid.value
        uid_line.params[ID_SOURCE_PARAM] = [record.uid.source]

    card.add("fn").value = record.formatted_name or (record.uid.value if record.uid else "")

    # N is mandatory for vCard 3 readers; an all-empty N decodes back to None.
    structured = record.name if record.name is not None else StructuredName()
    card.add("n").value = vobject.vcard.Name(
        family=structured.family,
        given=structured.given,
        additional=structured.middle,
        prefix=structured.prefix,
        suffix=structured.suffix,
    )

    for name, attr in _LIST_FIELDS:
        for value in getattr(record, attr):
            _add_text(card, name, value)

    for name, attr in _TYPED_FIELDS:
        for entry in getattr(record, attr):
            _add_typed(card, name, entry)

    for entry in record.addresses:
        parts = unpack_address(entry.value)
        line = card.add("adr")
        line.value = vobject.vcard.Address(
            box=parts["po_box"],
            extended=parts["extended"],
            street=parts["street"],
            city=parts["city"],
            region=parts["region"],
            code=parts["postal_code"],
            country=parts["country"],
        )
        if entry.type:
            line.type_param = entry.type

    if record.organization:
        card.add("org").value = record.organization.split(";")

    for name, attr in _SINGULAR_FIELDS:
        value = getattr(record, attr)
        if value:
            _add_text(card, name, value)

    for ext in record.extensions:
        line = card.add(ext.key.lower())
        line.value = ext.value
        if ext.type:
            line.type_param = ext.type

    return card


def encode_record(record: Record) -> str:
    """Serialize *record* to a vCard 4.0 document."""
    return _build_card(record).serialize()


def encode_records(records: Iterable[Record]) -> str:
    return "".join(encode_record(record) for record in records)


# ---------------------------------------------------------------------------
# Decoding
# ---------------------------------------------------------------------------


def _text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, list | tuple):
        return ",".join(_text(item) for item in value)
    return str(value)


def _type_of(line: Any) -> str | None:
    types = line.params.get("TYPE")
    if not types:
        return None
    return ",".join(types)


def _lines(card: Any, name: str) -> list[Any]:
    return card.contents.get(name, [])


def _decode_uid(card: Any) -> RecordId | None:
    lines = _lines(card, "uid")
    if not lines:
        return None
    line = lines[0]
    value = _text(line.value).strip()
    if not value:
        return None
    source = (line.params.get(ID_SOURCE_PARAM) or [None])[0]
    if source in ("provider", "local"):
        return RecordId(value=value, source=source)
    return RecordId.infer(value)


def _decode_name(card: Any) -> StructuredName | None:
    lines = _lines(card, "n")
    if not lines:
        return None
    value = lines[0].value
    if isinstance(value, str):
        name = StructuredName.from_value(value)
    else:
        name = StructuredName(
            family=_text(getattr(value, "family", "")),
            given=_text(getattr(value, "given", "")),
            middle=_text(getattr(value, "additional", "")),
            prefix=_text(getattr(value, "prefix", "")),
            suffix=_text(getattr(value, "suffix", "")),
        )
    return None if name.is_empty() else name


def _decode_address(line: Any) -> TypedValue:
    value = line.value
    if isinstance(value, str):
        packed = value
    else:
        packed = pack_address(
            po_box=_text(getattr(value, "box", "")),
            extended=_text(getattr(value, "extended", "")),
            street=_text(getattr(value, "street", "")),
            city=_text(getattr(value, "city", "")),
            region=_text(getattr(value, "region", "")),
            postal_code=_text(getattr(value, "code", "")),
            country=_text(getattr(value, "country", "")),
        )
    return TypedValue(value=packed, type=_type_of(line))


def _decode_org(card: Any) -> str | None:
    lines = _lines(card, "org")
    if not lines:
        return None
    value = lines[0].value
    if isinstance(value, list | tuple):
        org = ";".join(_text(part) for part in value)
    else:
        org = _text(value)
    return org or None


def _card_to_record(card: Any) -> Record:
    record = Record(uid=_decode_uid(card))

    fn_lines = _lines(card, "fn")
    if fn_lines:
        record.formatted_name = _text(fn_lines[0].value)
    record.name = _decode_name(card)

    for name, attr in _LIST_FIELDS:
        setattr(record, attr, [_text(line.value) for line in _lines(card, name)])

    for name, attr in _TYPED_FIELDS:
        setattr(
            record,
            attr,
            [TypedValue(value=_text(line.value), type=_type_of(line)) for line in _lines(card, name)],
        )

    record.addresses = [_decode_address(line) for line in _lines(card, "adr")]
    record.organization = _decode_org(card)

    for name, attr in _SINGULAR_FIELDS:
        lines = _lines(card, name)
        if lines:
            setattr(record, attr, _text(lines[0].value) or None)

    for line in card.getChildren():
        key = line.name.lower()
        if key in _RESERVED_NAMES or not key.startswith("x-"):
            continue
        record.extensions.append(
            Extension(key=line.name.upper(), value=_text(line.value), type=_type_of(line))
        )

    record.ensure_formatted_name()
    return record


def decode_record(text: str) -> Record:
    """Parse one vCard document into a :class:`Record`.

    Raises
    ------
    RecordDecodeError
        If *text* is not a parseable vCard.
    """
    try:
        card = vobject.readOne(text)
    except StopIteration as exc:
        raise RecordDecodeError("empty vCard document") from exc
    except (vobject.base.ParseError, ValueError, TypeError, AttributeError) as exc:
        raise RecordDecodeError(f"failed to decode vcard: {exc}") from exc

    if getattr(card, "name", "").upper() != "VCARD":
        raise RecordDecodeError(f"expected a VCARD component, got {card.name!r}")

    try:
        return _card_to_record(card)
    except ValueError as exc:
        raise RecordDecodeError(f"failed to decode vcard: {exc}") from exc
