"""contacts: personal address book with one-way Google Contacts sync."""

from __future__ import annotations

__version__ = "0.1.0"


class ContactsError(Exception):
    """Base class for every error raised by the contacts package.

    The message of each subclass is safe to show to the user: it never
    contains client secrets, tokens, or authorization codes.
    """


__all__ = ["ContactsError", "__version__"]
