"""
Entry point for running contact_bridge as a module.

Usage:
    python -m contact_bridge --help
    python -m contact_bridge sync CONTACT_ID --email user@icloud.com
    python -m contact_bridge serve --port 8000
"""

from contact_bridge.cli import cli

if __name__ == "__main__":
    cli()
