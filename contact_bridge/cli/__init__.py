"""CLI package for contact_bridge."""

from contact_bridge.cli.main import cli, credential_options, open_store

__all__ = [
    "cli",
    "credential_options",
    "open_store",
]
