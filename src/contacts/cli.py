"""CLI for contacts: a local address book synced from Google Contacts."""

from __future__ import annotations

import asyncio
import logging
import webbrowser
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

import click

from contacts import ContactsError, __version__
from contacts.config import ConfigError, ContactsConfig, load_config
from contacts.core.logging import configure_logging
from contacts.formatting import format_record, format_table, records_to_json
from contacts.google_credentials import (
    CredentialsFile,
    GoogleCredentials,
    MissingCredentialsError,
    SyncCursorFile,
)
from contacts.oauth import AuthorizationFlow
from contacts.record import Record, full_name, record_uid
from contacts.store import LocalStore
from contacts.sync import ContactsProvider, GoogleContactsProvider, SyncEngine, SyncResult
from contacts.vcard import encode_record, encode_records

logger = logging.getLogger(__name__)

OUTPUT_FORMATS = ("table", "json", "vcf")

_SETUP_STEPS = """\
Google Contacts setup
  1. Enable the People API at console.cloud.google.com/apis/library/people.googleapis.com
  2. Go to console.cloud.google.com/apis/credentials
  3. Create an OAuth 2.0 Client ID (Desktop app)
  4. Add the redirect URI: http://localhost:{port}/callback
"""

_output_option = click.option(
    "-o",
    "--output",
    "output",
    type=click.Choice(OUTPUT_FORMATS, case_sensitive=False),
    default="table",
    show_default=True,
    help="Output format.",
)


@contextmanager
def _user_errors() -> Iterator[None]:
    """Report ContactsError subclasses as a clean CLI failure (exit code 1)."""
    try:
        yield
    except ContactsError as exc:
        raise click.ClickException(str(exc)) from exc


def _build_provider(config: ContactsConfig) -> ContactsProvider:
    """Google provider for *config*; requires a completed authorization."""
    creds_file = CredentialsFile(config.credentials_path)
    creds = creds_file.load()
    if not creds.is_authenticated:
        raise MissingCredentialsError(
            "not authorized with Google: run 'contacts init' or 'contacts auth' first"
        )
    return GoogleContactsProvider(creds_file)


@click.group()
@click.version_option(version=__version__)
@click.option(
    "--dir",
    "data_dir",
    type=click.Path(file_okay=False, path_type=Path),
    default=None,
    help="Data directory (default: $CONTACTS_DIR or ~/.config/contacts).",
)
@click.pass_context
def cli(ctx: click.Context, data_dir: Path | None) -> None:
    """contacts: personal address book synced from Google Contacts."""
    try:
        config = load_config(data_dir)
    except ConfigError as exc:
        raise click.ClickException(str(exc)) from exc
    configure_logging(config.logging.level, config.logging.format)
    ctx.obj = config


# ---------------------------------------------------------------------------
# Authorization
# ---------------------------------------------------------------------------


async def _authorize(config: ContactsConfig, *, open_browser: bool) -> GoogleCredentials:
    flow = AuthorizationFlow(
        CredentialsFile(config.credentials_path), port=config.redirect_port
    )
    pending = await flow.begin()
    click.echo(
        "Opening browser for authorization...\n"
        "If it doesn't open, visit:\n\n"
        f"  {pending.authorization_url}\n\n"
        "Waiting for authorization...",
        err=True,
    )
    if open_browser and not webbrowser.open(pending.authorization_url):
        logger.debug("No browser could be opened for the authorization URL")
    return await pending.wait()


def _run_authorization(config: ContactsConfig, *, open_browser: bool) -> None:
    asyncio.run(_authorize(config, open_browser=open_browser))
    click.echo("Google Contacts initialized. Run 'contacts sync' to sync.", err=True)


def _prompt_required(label: str, *, hide_input: bool = False) -> str:
    value = click.prompt(label, hide_input=hide_input, err=True).strip()
    if not value:
        raise click.ClickException(f"{label} is required")
    return value


@cli.command()
@click.option("--client-id", default=None, help="OAuth client ID (prompted if omitted).")
@click.option("--client-secret", default=None, help="OAuth client secret (prompted if omitted).")
@click.option("--no-browser", is_flag=True, help="Print the authorization URL only.")
@click.pass_obj
def init(
    config: ContactsConfig,
    client_id: str | None,
    client_secret: str | None,
    no_browser: bool,
) -> None:
    """Configure the Google OAuth client and authorize access."""
    with _user_errors():
        config.ensure_dir()
        creds_file = CredentialsFile(config.credentials_path)
        existing = creds_file.load_or_none()

        if existing is not None and client_id is None:
            click.echo(f"Existing credentials found (client ID: {existing.client_id}).", err=True)
            if not click.confirm(
                "Delete them and enter new credentials?", default=False, err=True
            ):
                _run_authorization(config, open_browser=not no_browser)
                return

        if client_id is None:
            click.echo(_SETUP_STEPS.format(port=config.redirect_port), err=True)
            client_id = _prompt_required("Client ID")
        if client_secret is None:
            client_secret = _prompt_required("Client Secret", hide_input=True)

        if not client_id.strip() or not client_secret.strip():
            raise click.ClickException("client ID and client secret must be non-empty")
        creds_file.save(GoogleCredentials(client_id=client_id, client_secret=client_secret))
        _run_authorization(config, open_browser=not no_browser)


@cli.command()
@click.option("--no-browser", is_flag=True, help="Print the authorization URL only.")
@click.pass_obj
def auth(config: ContactsConfig, no_browser: bool) -> None:
    """Re-authorize with the stored OAuth client."""
    with _user_errors():
        _run_authorization(config, open_browser=not no_browser)


# ---------------------------------------------------------------------------
# Sync
# ---------------------------------------------------------------------------


async def _sync(config: ContactsConfig) -> tuple[SyncResult, int]:
    provider = _build_provider(config)
    try:
        store = LocalStore(config.people_dir, provider=provider)
        engine = SyncEngine(
            provider=provider,
            store=store,
            cursor_file=SyncCursorFile(config.sync_cursor_path),
        )
        result = await engine.sync()
        return result, len(store.list())
    finally:
        await provider.shutdown()


@cli.command()
@click.pass_obj
def sync(config: ContactsConfig) -> None:
    """Replace local contacts with the current Google Contacts set."""
    with _user_errors():
        config.ensure_dir()
        click.echo("Syncing contacts...", err=True)
        result, total = asyncio.run(_sync(config))
        message = f"Sync complete. {result.written} synced, {total} contacts."
        if result.skipped:
            message += f" {result.skipped} skipped."
        click.echo(message, err=True)


# ---------------------------------------------------------------------------
# Read commands
# ---------------------------------------------------------------------------


def _resolve_or_fail(store: LocalStore, query: str) -> Record:
    record = store.resolve(query)
    if record is None:
        raise click.ClickException(f"contact not found: {query}")
    return record


@cli.command("list")
@_output_option
@click.pass_obj
def list_cmd(config: ContactsConfig, output: str) -> None:
    """List all contacts."""
    with _user_errors():
        records = LocalStore(config.people_dir).list()
        output = output.lower()
        if output == "json":
            click.echo(records_to_json(records))
        elif output == "vcf":
            click.echo(encode_records(records), nl=False)
        else:
            click.echo(format_table(records))


@cli.command()
@_output_option
@click.argument("query", nargs=-1, required=True)
@click.pass_obj
def get(config: ContactsConfig, output: str, query: tuple[str, ...]) -> None:
    """Show one contact by identifier or display name."""
    with _user_errors():
        record = _resolve_or_fail(LocalStore(config.people_dir), " ".join(query))
        output = output.lower()
        if output == "json":
            click.echo(records_to_json([record]))
        elif output == "vcf":
            click.echo(encode_record(record), nl=False)
        else:
            click.echo(format_record(record))


# ---------------------------------------------------------------------------
# Delete
# ---------------------------------------------------------------------------


async def _delete(config: ContactsConfig, record: Record) -> None:
    provider: ContactsProvider | None = None
    if record.uid is not None and record.uid.is_provider:
        provider = _build_provider(config)
    try:
        await LocalStore(config.people_dir, provider=provider).delete(record_uid(record))
    finally:
        if provider is not None:
            await provider.shutdown()


@cli.command()
@click.option("-y", "--yes", is_flag=True, help="Do not ask for confirmation.")
@click.argument("query", nargs=-1, required=True)
@click.pass_obj
def delete(config: ContactsConfig, yes: bool, query: tuple[str, ...]) -> None:
    """Delete a contact locally and, if it came from Google, remotely."""
    with _user_errors():
        record = _resolve_or_fail(LocalStore(config.people_dir), " ".join(query))
        if not yes and not click.confirm(f"Delete {full_name(record)!r}?", default=False, err=True):
            click.echo("Cancelled.", err=True)
            return
        asyncio.run(_delete(config, record))
        click.echo("Deleted.", err=True)
