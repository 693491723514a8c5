"""
Command-line interface for contact_bridge.

Provides commands to import contacts into the local contact store, push
stored contacts to a CardDAV account, list the account's contacts, and
serve the HTTP API.

Usage:
    # Show help
    contact-bridge --help

    # Import a JSON list of contact records
    contact-bridge import contacts.json

    # Push stored contacts to iCloud
    contact-bridge sync 3f2a... 9b1c... --email me@icloud.com

    # List the contacts currently in the account
    contact-bridge fetch --email me@icloud.com

    # Serve the HTTP API
    contact-bridge serve --port 8000
"""

import json
import sys
from collections.abc import Callable
from pathlib import Path
from typing import Any

import click
import uvicorn

from contact_bridge import __version__
from contact_bridge.api.carddav_client import (
    AuthError,
    CardDAVCredentials,
    DirectoryError,
)
from contact_bridge.config.loader import ConfigError, ConfigLoader
from contact_bridge.config.settings import BridgeSettings
from contact_bridge.storage.db import ContactStore, ContactStoreError
from contact_bridge.sync.reconciler import BatchSyncError
from contact_bridge.utils import resolve_config_dir
from contact_bridge.utils.logging import get_logger, setup_logging
from contact_bridge.web.app import create_app


def credential_options(func: Callable[..., Any]) -> Callable[..., Any]:
    """Add --email and --password options shared by the CardDAV commands."""
    func = click.option(
        "--password",
        "-p",
        envvar="CONTACT_BRIDGE_PASSWORD",
        prompt="App-specific password",
        hide_input=True,
        help="App-specific password for the account.",
    )(func)
    func = click.option(
        "--email",
        "-e",
        envvar="CONTACT_BRIDGE_EMAIL",
        prompt="Apple ID email",
        help="Apple ID email address.",
    )(func)
    return func


def open_store(settings: BridgeSettings) -> ContactStore:
    """Open and initialize the contact store configured in settings."""
    settings.database_path.parent.mkdir(parents=True, exist_ok=True)
    return ContactStore(str(settings.database_path)).initialize()


@click.group()
@click.version_option(version=__version__, prog_name="contact-bridge")
@click.option(
    "--verbose", "-v", is_flag=True, help="Enable verbose output with detailed logging."
)
@click.option(
    "--config-dir",
    "-c",
    type=click.Path(exists=False, file_okay=False, dir_okay=True),
    envvar="CONTACT_BRIDGE_CONFIG_DIR",
    help="Configuration directory path (default: ~/.contact-bridge).",
)
@click.pass_context
def cli(ctx: click.Context, verbose: bool, config_dir: str | None) -> None:
    """
    Contact store to CardDAV bridge.

    Imports contact records into a local store and uploads them to an
    iCloud (CardDAV) address book, collecting them in a contact group.
    """
    ctx.ensure_object(dict)

    resolved_config_dir = resolve_config_dir(config_dir)

    config: dict[str, Any] = {}
    try:
        loader = ConfigLoader(config_dir=resolved_config_dir)
        config = loader.load()
        if config:
            loader.validate(config)
    except ConfigError as e:
        # Fall back to defaults so the CLI still works with a broken file
        click.echo(
            click.style(f"Warning: Configuration error: {e}", fg="yellow"), err=True
        )
        config = {}

    settings = BridgeSettings.from_config(config, resolved_config_dir)
    effective_verbose = verbose or config.get("verbose", False)

    ctx.obj["config"] = config
    ctx.obj["settings"] = settings
    ctx.obj["verbose"] = effective_verbose

    setup_logging(verbose=effective_verbose, log_file=settings.log_file)


# =============================================================================
# Import Command
# =============================================================================


@cli.command("import")
@click.argument("file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.pass_context
def import_command(ctx: click.Context, file: Path) -> None:
    """
    Import contact records from a JSON file into the contact store.

    FILE must hold a JSON array of objects. Generated record ids are
    printed so they can be passed to the sync command.

    Examples:

        contact-bridge import contacts.json
    """
    logger = get_logger(__name__)
    settings: BridgeSettings = ctx.obj["settings"]

    try:
        records = json.loads(file.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        click.echo(
            click.style(f"Error: Could not read {file}: {e}", fg="red"), err=True
        )
        sys.exit(1)

    if not isinstance(records, list) or not all(isinstance(r, dict) for r in records):
        click.echo(
            click.style("Error: File must contain a JSON array of objects.", fg="red"),
            err=True,
        )
        sys.exit(1)

    try:
        store = open_store(settings)
        count = store.batch_insert(records)
    except ContactStoreError as e:
        logger.error(f"Import failed: {e}")
        click.echo(click.style(f"Error: {e}", fg="red"), err=True)
        sys.exit(1)

    click.echo(click.style(f"Imported {count} contacts.", fg="green"))
    click.echo(f"Contact store: {settings.database_path}")


# =============================================================================
# Sync Command
# =============================================================================


@cli.command("sync")
@click.argument("contact_ids", nargs=-1, required=True)
@credential_options
@click.pass_context
def sync_command(
    ctx: click.Context, contact_ids: tuple[str, ...], email: str, password: str
) -> None:
    """
    Upload stored contacts to the CardDAV account.

    Contacts already present in the account (matched by their contact
    store id) are updated in place; others are created. Uploaded contacts
    are collected in the configured contact group.

    Examples:

        contact-bridge sync 3f2a9c 9b1c07 --email me@icloud.com
    """
    logger = get_logger(__name__)
    settings: BridgeSettings = ctx.obj["settings"]
    verbose = ctx.obj["verbose"]

    try:
        store = open_store(settings)
        records = store.fetch_by_ids(contact_ids)
        missing = len(set(contact_ids)) - len({r["id"] for r in records})
        if missing:
            click.echo(
                click.style(
                    f"Warning: {missing} contact ids not found in the store.",
                    fg="yellow",
                ),
                err=True,
            )

        credentials = CardDAVCredentials(email=email, app_specific_password=password)
        orchestrator = settings.build_orchestrator()

        click.echo(f"Synchronizing {len(records)} contacts to {settings.server_url}...")
        report = orchestrator.run_sync(records, credentials)

    except AuthError as e:
        click.echo(click.style(f"Authentication failed: {e}", fg="red"), err=True)
        sys.exit(1)

    except BatchSyncError as e:
        click.echo(click.style(f"\nSync failed: {e}", fg="red"), err=True)
        if verbose:
            click.echo(e.report.summary(), err=True)
        sys.exit(1)

    except (DirectoryError, ContactStoreError) as e:
        logger.exception(f"Sync failed: {e}")
        click.echo(click.style(f"\nSync failed: {e}", fg="red"), err=True)
        sys.exit(1)

    click.echo("\n" + "=" * 50)
    click.echo(report.summary())
    click.echo("=" * 50)

    if report.failed:
        click.echo(click.style(f"\n{report.message}", fg="yellow"))
    else:
        click.echo(click.style(f"\n{report.message}", fg="green"))

    for warning in report.warnings:
        click.echo(click.style(f"Warning: {warning}", fg="yellow"), err=True)


# =============================================================================
# Fetch Command
# =============================================================================


@cli.command("fetch")
@credential_options
@click.option("--json", "as_json", is_flag=True, help="Print contacts as JSON.")
@click.pass_context
def fetch_command(
    ctx: click.Context, email: str, password: str, as_json: bool
) -> None:
    """
    List the contacts stored in the CardDAV account.

    Examples:

        contact-bridge fetch --email me@icloud.com
        contact-bridge fetch --email me@icloud.com --json
    """
    settings: BridgeSettings = ctx.obj["settings"]
    credentials = CardDAVCredentials(email=email, app_specific_password=password)

    try:
        contacts = settings.build_orchestrator().fetch_contacts(credentials)
    except AuthError as e:
        click.echo(click.style(f"Authentication failed: {e}", fg="red"), err=True)
        sys.exit(1)
    except DirectoryError as e:
        click.echo(click.style(f"Error: {e}", fg="red"), err=True)
        sys.exit(1)

    if as_json:
        click.echo(json.dumps([c.to_dict() for c in contacts], indent=2))
        return

    if not contacts:
        click.echo("No contacts found.")
        return

    click.echo(f"Found {len(contacts)} contacts:\n")
    for contact in contacts:
        details = ", ".join(d for d in (contact.phone, contact.email) if d)
        line = f"  {contact.display_name()}"
        if details:
            line += f" ({details})"
        click.echo(line)


# =============================================================================
# Serve Command
# =============================================================================


@cli.command("serve")
@click.option(
    "--host", "-h", default=None, help="Interface to bind (default: config host)."
)
@click.option(
    "--port", "-p", type=int, default=None, help="Port to bind (default: config port)."
)
@click.pass_context
def serve_command(ctx: click.Context, host: str | None, port: int | None) -> None:
    """
    Serve the HTTP API.

    Examples:

        contact-bridge serve
        contact-bridge serve --host 0.0.0.0 --port 8080
    """
    logger = get_logger(__name__)
    settings: BridgeSettings = ctx.obj["settings"]

    try:
        app = create_app(settings, store=open_store(settings))
    except ContactStoreError as e:
        click.echo(click.style(f"Error: {e}", fg="red"), err=True)
        sys.exit(1)

    effective_host = host or settings.host
    effective_port = port or settings.port
    logger.info(f"Serving on {effective_host}:{effective_port}")
    uvicorn.run(app, host=effective_host, port=effective_port, log_config=None)
