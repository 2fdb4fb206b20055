"""Google OAuth authorization-code flow with PKCE, plus access-token refresh.

The interactive flow (``contacts auth``):
  1. ``AuthorizationFlow.begin()``
     - Generates a PKCE verifier/challenge pair and a random state token.
     - Binds the loopback callback listener (``http://localhost:<port>/callback``)
       and starts uvicorn serving a small FastAPI app on it.
     - Returns a :class:`PendingAuthorization` carrying the authorization URL.

  2. ``GET /callback``
     - Rejects provider errors (e.g. the user denied consent), missing codes
       and state mismatches. A mismatched state never reaches the token
       endpoint.
     - Exchanges ``code`` + ``code_verifier`` at Google's token endpoint and
       merges the tokens into ``google_creds.json``.
     - Serves a small HTML page; the outcome is delivered to the waiter
       after the response has been written.

  3. ``PendingAuthorization.wait()``
     - Returns the persisted credentials or raises the delivered error.
     - Exactly one outcome is observed. The listener is shut down on every
       path, including cancellation.

Secret material (client_secret, tokens, authorization code, verifier) is
never logged in plaintext.
"""

from __future__ import annotations

import asyncio
import base64
import hashlib
import html
import json
import logging
import secrets
import socket
from datetime import UTC, datetime, timedelta
from typing import Any
from urllib.parse import urlencode

import httpx
import uvicorn
from fastapi import FastAPI, Query
from fastapi.responses import HTMLResponse, Response
from starlette.background import BackgroundTask

from contacts import ContactsError
from contacts.config import DEFAULT_REDIRECT_PORT
from contacts.google_credentials import (
    CredentialsFile,
    GoogleCredentials,
    MissingCredentialsError,
)

logger = logging.getLogger(__name__)

GOOGLE_AUTH_URL = "https://accounts.google.com/o/oauth2/auth"
GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"

DEFAULT_SCOPES = (
    "https://www.googleapis.com/auth/contacts",
    "https://www.googleapis.com/auth/userinfo.email",
)

CALLBACK_PATH = "/callback"
_CALLBACK_HOST = "localhost"
_BIND_HOST = "127.0.0.1"
_SHUTDOWN_TIMEOUT_S = 5.0

# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class AuthorizationError(ContactsError):
    """Raised when the authorization flow cannot complete."""


class AuthorizationDeniedError(AuthorizationError):
    """Raised when Google redirects back with an ``error`` parameter."""

    def __init__(self, error: str, description: str | None = None) -> None:
        self.error = error
        self.description = description
        detail = f"{error} - {description}" if description else error
        super().__init__(f"authorization failed: {detail}")


class StateMismatchError(AuthorizationError):
    """Raised when the callback ``state`` does not match the one we issued."""


class AuthorizationCancelledError(AuthorizationError):
    """Raised when a pending authorization is cancelled before completing."""


class TokenExchangeError(AuthorizationError):
    """Raised when the authorization code → token exchange fails."""


class TokenRefreshError(ContactsError):
    """Raised when the refresh-token → access-token exchange fails."""


# ---------------------------------------------------------------------------
# PKCE / state / URL helpers
# ---------------------------------------------------------------------------


def _b64url(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def generate_pkce() -> tuple[str, str]:
    """Return ``(verifier, challenge)``.

    The verifier is 32 random bytes, unpadded base64url; the challenge is
    the unpadded base64url SHA-256 of the verifier (method ``S256``).
    """
    verifier = _b64url(secrets.token_bytes(32))
    challenge = _b64url(hashlib.sha256(verifier.encode("ascii")).digest())
    return verifier, challenge


def generate_state() -> str:
    """Generate a cryptographically random CSRF state token."""
    return secrets.token_urlsafe(32)


def redirect_uri_for(port: int) -> str:
    return f"http://{_CALLBACK_HOST}:{port}{CALLBACK_PATH}"


def build_authorization_url(
    *,
    client_id: str,
    redirect_uri: str,
    state: str,
    code_challenge: str,
    scopes: tuple[str, ...] = DEFAULT_SCOPES,
) -> str:
    params = {
        "response_type": "code",
        "client_id": client_id,
        "redirect_uri": redirect_uri,
        "scope": " ".join(scopes),
        "state": state,
        "access_type": "offline",
        "prompt": "consent",
        "code_challenge": code_challenge,
        "code_challenge_method": "S256",
    }
    return f"{GOOGLE_AUTH_URL}?{urlencode(params)}"


def safe_google_error_message(response: httpx.Response) -> str:
    """Extract a short, single-line error message from a Google error response."""
    try:
        payload = response.json()
    except ValueError:
        payload = None

    if isinstance(payload, dict):
        error_payload = payload.get("error")
        if isinstance(error_payload, dict):
            message = error_payload.get("message")
            if isinstance(message, str) and message.strip():
                return " ".join(message.split())[:200]
        message = payload.get("error_description") or payload.get("message")
        if isinstance(message, str) and message.strip():
            return " ".join(message.split())[:200]
        if isinstance(error_payload, str) and error_payload.strip():
            return error_payload.strip()[:200]

    text = response.text.strip()
    if text:
        return " ".join(text.split())[:200]
    return "unknown error"


# ---------------------------------------------------------------------------
# Token exchange
# ---------------------------------------------------------------------------


async def _exchange_code_for_tokens(
    http_client: httpx.AsyncClient,
    *,
    code: str,
    code_verifier: str,
    client_id: str,
    client_secret: str,
    redirect_uri: str,
) -> dict[str, Any]:
    """Exchange an authorization code for OAuth tokens.

    Raises
    ------
    TokenExchangeError
        If the exchange fails for any reason (HTTP error, invalid code,
        network error, malformed payload).
    """
    payload = {
        "code": code,
        "code_verifier": code_verifier,
        "client_id": client_id,
        "client_secret": client_secret,
        "redirect_uri": redirect_uri,
        "grant_type": "authorization_code",
    }

    try:
        response = await http_client.post(
            GOOGLE_TOKEN_URL, data=payload, headers={"Accept": "application/json"}
        )
    except httpx.HTTPError as exc:
        raise TokenExchangeError(f"network error during token exchange: {exc}") from exc

    if response.status_code != 200:
        raise TokenExchangeError(
            f"token endpoint returned HTTP {response.status_code}: "
            f"{safe_google_error_message(response)}"
        )

    try:
        data = response.json()
    except json.JSONDecodeError as exc:
        raise TokenExchangeError("invalid JSON in token response") from exc

    if not isinstance(data, dict):
        raise TokenExchangeError("token response must be a JSON object")
    return data


# ---------------------------------------------------------------------------
# Callback pages
# ---------------------------------------------------------------------------


def _render_page(title: str, message: str, *, ok: bool) -> str:
    colour = "#4CAF50" if ok else "#C62828"
    return (
        f"<html><head><title>{html.escape(title)}</title></head>"
        '<body style="font-family:sans-serif;text-align:center;padding:50px;">'
        f'<h1 style="color:{colour};">{html.escape(title)}</h1>'
        f"<p>{html.escape(message)}</p>"
        "</body></html>"
    )


_SUCCESS_PAGE = _render_page(
    "Authorization Successful",
    "You can close this window and return to the terminal.",
    ok=True,
)


# ---------------------------------------------------------------------------
# Pending authorization
# ---------------------------------------------------------------------------

CallbackOutcome = GoogleCredentials | AuthorizationError


class PendingAuthorization:
    """An authorization waiting for the browser redirect.

    Created by :meth:`AuthorizationFlow.begin`; tests may construct one
    directly and drive :func:`build_callback_app` without a listener.
    """

    def __init__(
        self,
        *,
        credentials_file: CredentialsFile,
        client_id: str,
        client_secret: str,
        state: str,
        code_verifier: str,
        redirect_uri: str,
        authorization_url: str,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self.authorization_url = authorization_url
        self.state = state
        self.redirect_uri = redirect_uri
        self._credentials_file = credentials_file
        self._client_id = client_id
        self._client_secret = client_secret
        self._code_verifier = code_verifier
        self._http_client = http_client
        self._future: asyncio.Future[GoogleCredentials] = (
            asyncio.get_running_loop().create_future()
        )
        self._callback_seen = False
        self._server: uvicorn.Server | None = None
        self._serve_task: asyncio.Task[None] | None = None
        self._socket: socket.socket | None = None
        self._closed = False

    @property
    def done(self) -> bool:
        return self._future.done()

    # -- outcome delivery --------------------------------------------------

    def deliver(self, outcome: CallbackOutcome) -> bool:
        """Record the outcome. Returns ``False`` if one was already recorded."""
        if self._future.done():
            return False
        if isinstance(outcome, GoogleCredentials):
            self._future.set_result(outcome)
        else:
            self._future.set_exception(outcome)
        return True

    async def wait(self) -> GoogleCredentials:
        """Wait for the callback and return the persisted credentials."""
        try:
            return await asyncio.shield(self._future)
        except asyncio.CancelledError:
            self.deliver(AuthorizationCancelledError("authorization was cancelled"))
            raise
        finally:
            await self.close()

    async def cancel(self) -> None:
        """Abort the authorization and shut the listener down."""
        if self.deliver(AuthorizationCancelledError("authorization was cancelled")):
            logger.info("Google authorization cancelled")
        await self.close()

    # -- callback handling -------------------------------------------------

    async def handle_callback(
        self,
        *,
        code: str | None,
        state: str | None,
        error: str | None,
        error_description: str | None,
    ) -> tuple[int, CallbackOutcome]:
        """Validate one redirect and, when valid, exchange and persist tokens.

        Returns the HTTP status to answer with and the outcome to deliver.
        """
        self._callback_seen = True

        if state != self.state:
            logger.warning("OAuth callback received a mismatched state token")
            return 400, StateMismatchError("state mismatch: possible CSRF attempt")

        if error:
            logger.warning("Google OAuth provider error: %s", error)
            return 400, AuthorizationDeniedError(error, error_description)

        if not code:
            return 400, AuthorizationError("no authorization code in callback")

        try:
            token_data = await self._exchange(code)
        except TokenExchangeError as exc:
            logger.warning("Google OAuth token exchange failed: %s", exc)
            return 500, exc

        access_token = token_data.get("access_token")
        refresh_token = token_data.get("refresh_token")
        try:
            creds = self._credentials_file.update_tokens(
                refresh_token=refresh_token if isinstance(refresh_token, str) else None,
                access_token=access_token if isinstance(access_token, str) else None,
            )
        except (ContactsError, OSError) as exc:
            return 500, AuthorizationError(f"failed to save credentials: {exc}")

        if not creds.is_authenticated:
            return 500, AuthorizationError(
                "Google did not return a refresh token; re-run authorization "
                "and grant offline access"
            )

        logger.info("Google OAuth credentials persisted (client_id=%s)", creds.client_id)
        return 200, creds

    async def _exchange(self, code: str) -> dict[str, Any]:
        kwargs: dict[str, Any] = {
            "code": code,
            "code_verifier": self._code_verifier,
            "client_id": self._client_id,
            "client_secret": self._client_secret,
            "redirect_uri": self.redirect_uri,
        }
        if self._http_client is not None:
            return await _exchange_code_for_tokens(self._http_client, **kwargs)
        async with httpx.AsyncClient(timeout=15.0) as client:
            return await _exchange_code_for_tokens(client, **kwargs)

    # -- listener lifecycle ------------------------------------------------

    def _attach(self, server: uvicorn.Server, sock: socket.socket) -> None:
        self._server = server
        self._socket = sock
        self._serve_task = asyncio.create_task(server.serve(sockets=[sock]))
        self._serve_task.add_done_callback(self._on_listener_exit)

    def _on_listener_exit(self, task: asyncio.Task[None]) -> None:
        if self._future.done():
            return
        if task.cancelled():
            self.deliver(AuthorizationCancelledError("callback listener was cancelled"))
            return
        exc = task.exception()
        detail = f": {exc}" if exc is not None else ""
        self.deliver(AuthorizationError(f"callback listener stopped unexpectedly{detail}"))

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._server is not None:
            self._server.should_exit = True
        if self._serve_task is not None:
            try:
                await asyncio.wait_for(asyncio.shield(self._serve_task), _SHUTDOWN_TIMEOUT_S)
            except TimeoutError:
                logger.warning("Callback listener did not stop in time; cancelling")
                self._serve_task.cancel()
            except Exception:
                logger.debug("Callback listener exited with an error", exc_info=True)
        if self._socket is not None:
            self._socket.close()
        logger.debug("Callback listener shut down")


def build_callback_app(pending: PendingAuthorization) -> FastAPI:
    """FastAPI app serving ``GET /callback`` for *pending*."""
    app = FastAPI(docs_url=None, redoc_url=None, openapi_url=None)

    @app.get(CALLBACK_PATH)
    async def oauth_callback(
        code: str | None = Query(default=None),
        state: str | None = Query(default=None),
        error: str | None = Query(default=None),
        error_description: str | None = Query(default=None),
    ) -> Response:
        if pending._callback_seen or pending.done:
            return HTMLResponse(
                _render_page(
                    "Authorization Already Handled",
                    "This authorization request has already completed.",
                    ok=False,
                ),
                status_code=409,
            )

        status_code, outcome = await pending.handle_callback(
            code=code,
            state=state,
            error=error,
            error_description=error_description,
        )
        if isinstance(outcome, GoogleCredentials):
            page = _SUCCESS_PAGE
        else:
            page = _render_page("Authorization Failed", str(outcome), ok=False)
        return HTMLResponse(
            page,
            status_code=status_code,
            background=BackgroundTask(pending.deliver, outcome),
        )

    return app


# ---------------------------------------------------------------------------
# Flow
# ---------------------------------------------------------------------------


def _bind_socket(port: int) -> socket.socket:
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
    try:
        sock.bind((_BIND_HOST, port))
    except OSError as exc:
        sock.close()
        raise AuthorizationError(
            f"cannot listen for the OAuth callback on port {port}: {exc}"
        ) from exc
    sock.setblocking(False)
    return sock


class AuthorizationFlow:
    """Drive ``unauthenticated → pending → authenticated`` for one account."""

    def __init__(
        self,
        credentials_file: CredentialsFile,
        *,
        port: int = DEFAULT_REDIRECT_PORT,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._credentials_file = credentials_file
        self._port = port
        self._http_client = http_client

    async def begin(self) -> PendingAuthorization:
        """Start the callback listener and return the pending authorization.

        Raises
        ------
        MissingCredentialsError
            If no OAuth client has been configured (``contacts init``).
        AuthorizationError
            If the callback port cannot be bound.
        """
        creds = self._credentials_file.load()
        verifier, challenge = generate_pkce()
        state = generate_state()

        sock = _bind_socket(self._port)
        port = sock.getsockname()[1]
        redirect_uri = redirect_uri_for(port)

        pending = PendingAuthorization(
            credentials_file=self._credentials_file,
            client_id=creds.client_id,
            client_secret=creds.client_secret,
            state=state,
            code_verifier=verifier,
            redirect_uri=redirect_uri,
            authorization_url=build_authorization_url(
                client_id=creds.client_id,
                redirect_uri=redirect_uri,
                state=state,
                code_challenge=challenge,
            ),
            http_client=self._http_client,
        )
        config = uvicorn.Config(
            build_callback_app(pending),
            log_level="warning",
            log_config=None,
            access_log=False,
            lifespan="off",
            timeout_graceful_shutdown=0,
        )
        pending._attach(uvicorn.Server(config), sock)
        logger.info("Listening for the OAuth callback on %s", redirect_uri)
        logger.debug("Authorization state issued (state=%s...)", state[:8])
        return pending


# ---------------------------------------------------------------------------
# Access tokens
# ---------------------------------------------------------------------------


def _coerce_expires_in_seconds(value: Any) -> int:
    if isinstance(value, bool):
        return 3600
    if isinstance(value, int | float):
        return int(value) if value > 0 else 3600
    return 3600


class GoogleTokenSource:
    """Refresh-token OAuth helper with an in-memory access-token cache.

    The first call always refreshes; later calls reuse the cached token
    until 60 seconds before it expires. Every refresh persists the new
    token pair to the credentials file.
    """

    def __init__(self, credentials_file: CredentialsFile, http_client: httpx.AsyncClient) -> None:
        self._credentials_file = credentials_file
        self._http_client = http_client
        self._access_token: str | None = None
        self._access_token_expires_at: datetime | None = None
        self._refresh_lock = asyncio.Lock()

    async def get_access_token(self, *, force_refresh: bool = False) -> str:
        if not force_refresh and self._token_is_fresh():
            assert self._access_token is not None
            return self._access_token

        async with self._refresh_lock:
            if not force_refresh and self._token_is_fresh():
                assert self._access_token is not None
                return self._access_token

            await self._refresh_access_token()
            assert self._access_token is not None
            return self._access_token

    def _token_is_fresh(self) -> bool:
        if self._access_token is None or self._access_token_expires_at is None:
            return False
        return datetime.now(UTC) < self._access_token_expires_at

    async def _refresh_access_token(self) -> None:
        creds = self._credentials_file.load()
        if creds.refresh_token is None:
            raise MissingCredentialsError(
                "not authorized with Google: run 'contacts auth' first"
            )

        try:
            response = await self._http_client.post(
                GOOGLE_TOKEN_URL,
                data={
                    "client_id": creds.client_id,
                    "client_secret": creds.client_secret,
                    "refresh_token": creds.refresh_token,
                    "grant_type": "refresh_token",
                },
                headers={"Accept": "application/json"},
            )
        except httpx.HTTPError as exc:
            raise TokenRefreshError(f"Google OAuth token refresh request failed: {exc}") from exc

        if response.status_code < 200 or response.status_code >= 300:
            raise TokenRefreshError(
                "Google OAuth token refresh failed "
                f"({response.status_code}): {safe_google_error_message(response)}"
            )

        try:
            payload = response.json()
        except ValueError as exc:
            raise TokenRefreshError("Google OAuth token endpoint returned invalid JSON") from exc

        access_token = payload.get("access_token") if isinstance(payload, dict) else None
        if not isinstance(access_token, str) or not access_token.strip():
            raise TokenRefreshError(
                "Google OAuth token response is missing a non-empty access_token"
            )

        new_refresh = payload.get("refresh_token")
        self._credentials_file.update_tokens(
            refresh_token=new_refresh if isinstance(new_refresh, str) else None,
            access_token=access_token.strip(),
        )

        expires_in_seconds = _coerce_expires_in_seconds(payload.get("expires_in"))
        refresh_ttl_seconds = max(expires_in_seconds - 60, 30)

        self._access_token = access_token.strip()
        self._access_token_expires_at = datetime.now(UTC) + timedelta(seconds=refresh_ttl_seconds)
        logger.debug("Refreshed Google access token (expires_in=%ss)", expires_in_seconds)
