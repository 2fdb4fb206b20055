"""Human-readable and JSON renderings of records for the CLI."""

from __future__ import annotations

import json
from collections.abc import Iterable
from datetime import datetime
from typing import Any

from contacts.record import (
    Record,
    TypedValue,
    extension_values,
    full_name,
    primary_email,
    primary_phone,
    primary_photo,
    record_uid,
    unpack_address,
)
from contacts.translate import X_INTEREST, X_LOCATION, X_OCCUPATION, X_SKILL

_LABEL_WIDTH = 10

_SHOWN_EXTENSIONS = (
    (X_INTEREST, "Interest"),
    (X_SKILL, "Skill"),
    (X_OCCUPATION, "Occupation"),
    (X_LOCATION, "Location"),
)


def format_date(value: str) -> str:
    """Render ``YYYYMMDD`` as ``Jan 2, 2006`` and ``--MMDD`` as ``Jan 2``.

    Anything else is returned unchanged.
    """
    digits = value.replace("-", "")
    if len(digits) == 8:
        try:
            parsed = datetime.strptime(digits, "%Y%m%d")
        except ValueError:
            pass
        else:
            return f"{parsed:%b} {parsed.day}, {parsed.year}"
    if len(digits) == 4:
        try:
            parsed = datetime.strptime(f"2000{digits}", "%Y%m%d")
        except ValueError:
            pass
        else:
            return f"{parsed:%b} {parsed.day}"
    return value


def format_address(value: str) -> str:
    """Street, city, region, postal code and country joined by ``, ``."""
    parts = unpack_address(value)
    pieces = [
        parts[key]
        for key in ("street", "city", "region", "postal_code", "country")
        if parts[key]
    ]
    return ", ".join(pieces)


def _line(label: str, value: str) -> str:
    return f"  {label + ':':<{_LABEL_WIDTH}} {value}"


def _labelled(entry: TypedValue, fallback: str) -> str:
    return f"{entry.value} ({entry.type or fallback})"


def format_record(record: Record) -> str:
    """Multi-line summary of one record."""
    lines: list[str] = []

    name = full_name(record)
    if name:
        lines.append(name)
        lines.append("-" * len(name))

    if record.nicknames:
        lines.append(_line("Nickname", record.nicknames[0]))

    if record.organization:
        org = record.organization.replace(";", ", ").rstrip(", ")
        if record.title:
            lines.append(_line("Work", f"{record.title}, {org}"))
        else:
            lines.append(_line("Org", org))
    elif record.title:
        lines.append(_line("Title", record.title))

    for entry in record.phones:
        lines.append(_line("Phone", _labelled(entry, "phone")))
    for entry in record.emails:
        lines.append(_line("Email", _labelled(entry, "email")))
    for entry in record.addresses:
        address = format_address(entry.value)
        if address:
            lines.append(_line("Address", f"{address} ({entry.type or 'address'})"))

    if record.birthday:
        lines.append(_line("Birthday", format_date(record.birthday)))
    if record.anniversary:
        lines.append(_line("Anniv", format_date(record.anniversary)))

    for entry in record.urls:
        lines.append(_line("URL", _labelled(entry, "url")))
    for entry in record.impps:
        lines.append(_line("IM", entry.value))
    for entry in record.related:
        lines.append(_line("Related", _labelled(entry, "related")))

    if record.gender:
        lines.append(_line("Gender", record.gender))
    for note in record.notes:
        lines.append(_line("Note", note))
    photo = primary_photo(record)
    if photo:
        lines.append(_line("Photo", photo))

    for key, label in _SHOWN_EXTENSIONS:
        for ext in extension_values(record, key):
            lines.append(_line(label, ext.value))

    uid = record_uid(record)
    if uid:
        lines.append(_line("UID", uid))

    return "\n".join(lines)


def format_table(records: Iterable[Record]) -> str:
    """One line per record: name, primary email, primary phone, identifier."""
    rows = [
        (full_name(record), primary_email(record), primary_phone(record), record_uid(record))
        for record in records
    ]
    if not rows:
        return "No contacts."
    headers = ("NAME", "EMAIL", "PHONE", "UID")
    widths = [max(len(headers[i]), *(len(row[i]) for row in rows)) for i in range(len(headers))]
    rendered = [
        "  ".join(cell.ljust(width) for cell, width in zip(row, widths, strict=True)).rstrip()
        for row in (headers, *rows)
    ]
    return "\n".join(rendered)


def record_to_dict(record: Record) -> dict[str, Any]:
    data = record.model_dump(mode="json", exclude={"uid"})
    return {
        "uid": record_uid(record),
        "uid_source": record.uid.source if record.uid is not None else None,
        "full_name": full_name(record),
        "primary_email": primary_email(record),
        "primary_phone": primary_phone(record),
        "primary_photo": primary_photo(record),
        **data,
    }


def records_to_json(records: Iterable[Record]) -> str:
    return json.dumps([record_to_dict(record) for record in records], indent=2)
