"""Google OAuth credential storage for the contacts data directory.

Two small files live next to the ``people/`` directory:

- ``google_creds.json`` holds the OAuth client (``client_id``,
  ``client_secret``) written by ``contacts init`` and the tokens merged in
  after authorization (``refresh_token``, ``access_token``). Written with
  mode ``0600``.
- ``google_sync_token.txt`` holds the last ``nextSyncToken`` returned by the
  People API.

Secret material (client_secret, refresh_token, access_token) is never logged
in plaintext.

Usage, persisting the client during init::

    creds_file = CredentialsFile(config.credentials_path)
    creds_file.save(GoogleCredentials(client_id="...", client_secret="..."))

Usage, loading before a sync::

    creds = creds_file.load()
    if not creds.is_authenticated:
        ...
"""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from contacts import ContactsError

logger = logging.getLogger(__name__)

_FILE_MODE = 0o600

# ---------------------------------------------------------------------------
# Credential model
# ---------------------------------------------------------------------------


class GoogleCredentials(BaseModel):
    """OAuth client plus the tokens obtained for it."""

    model_config = ConfigDict(extra="forbid")

    client_id: str = Field(min_length=1)
    client_secret: str = Field(min_length=1)
    refresh_token: str | None = None
    access_token: str | None = None
    email: str | None = None

    @field_validator("client_id", "client_secret")
    @classmethod
    def _normalize_non_empty(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError("must be a non-empty string")
        return normalized

    @field_validator("refresh_token", "access_token", "email")
    @classmethod
    def _normalize_optional(cls, value: str | None) -> str | None:
        if value is None:
            return None
        normalized = value.strip()
        return normalized or None

    @property
    def is_authenticated(self) -> bool:
        return self.refresh_token is not None

    # ------------------------------------------------------------------
    # Safe repr
    # ------------------------------------------------------------------

    def __repr__(self) -> str:
        return (
            f"GoogleCredentials("
            f"client_id={self.client_id!r}, "
            f"client_secret=<REDACTED>, "
            f"refresh_token={'<REDACTED>' if self.refresh_token else None}, "
            f"access_token={'<REDACTED>' if self.access_token else None}, "
            f"email={self.email!r})"
        )

    # Pydantic's default __str__ would expose field values verbatim.
    __str__ = __repr__


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class MissingCredentialsError(ContactsError):
    """Raised when credentials (or a refresh token) are not available.

    The error message is safe to log: it names what is missing but never
    includes secret values.
    """


class InvalidCredentialsError(ContactsError):
    """Raised when the credentials file is malformed or unparseable.

    The error message is safe to log.
    """


# ---------------------------------------------------------------------------
# Files
# ---------------------------------------------------------------------------


def _write_private(path: Path, text: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, _FILE_MODE)
    with os.fdopen(fd, "w", encoding="utf-8") as fh:
        fh.write(text)
    # O_CREAT only applies the mode to new files.
    os.chmod(path, _FILE_MODE)


class CredentialsFile:
    """Read/write ``google_creds.json``."""

    def __init__(self, path: Path) -> None:
        self.path = Path(path)

    def load(self) -> GoogleCredentials:
        """Load credentials.

        Raises
        ------
        MissingCredentialsError
            If the file does not exist.
        InvalidCredentialsError
            If the file is not valid JSON or fails validation.
        """
        try:
            raw = self.path.read_text(encoding="utf-8")
        except FileNotFoundError as exc:
            raise MissingCredentialsError(
                f"credentials file not found at {self.path}: run 'contacts init' first"
            ) from exc

        try:
            data = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise InvalidCredentialsError(
                f"credentials file {self.path} is not valid JSON"
            ) from exc

        if not isinstance(data, dict):
            raise InvalidCredentialsError(
                f"credentials file {self.path} must contain a JSON object"
            )

        try:
            return GoogleCredentials.model_validate(data)
        except ValidationError as exc:
            fields = ", ".join(str(err["loc"][0]) for err in exc.errors() if err["loc"])
            raise InvalidCredentialsError(
                f"credentials file {self.path} is invalid (fields: {fields or 'unknown'})"
            ) from exc

    def load_or_none(self) -> GoogleCredentials | None:
        try:
            return self.load()
        except MissingCredentialsError:
            return None

    def save(self, creds: GoogleCredentials) -> None:
        payload = creds.model_dump(exclude_none=True)
        _write_private(self.path, json.dumps(payload, indent=2) + "\n")
        logger.debug(
            "Saved Google credentials to %s (client_id=%s, has_refresh_token=%s)",
            self.path,
            creds.client_id,
            creds.is_authenticated,
        )

    def update_tokens(
        self,
        *,
        refresh_token: str | None,
        access_token: str | None,
    ) -> GoogleCredentials:
        """Merge new tokens into the stored credentials and persist them.

        A previous refresh token is kept when *refresh_token* is empty (the
        token endpoint only returns one on first consent).
        """
        current = self.load()
        updated = current.model_copy(
            update={
                "refresh_token": refresh_token or current.refresh_token,
                "access_token": access_token or current.access_token,
            }
        )
        self.save(updated)
        return updated


class SyncCursorFile:
    """Read/write the People API ``nextSyncToken``."""

    def __init__(self, path: Path) -> None:
        self.path = Path(path)

    def read(self) -> str | None:
        try:
            token = self.path.read_text(encoding="utf-8").strip()
        except FileNotFoundError:
            return None
        return token or None

    def write(self, token: str) -> None:
        _write_private(self.path, token)
