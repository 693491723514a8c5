"""
contact_bridge - vCard contact synchronization bridge.

Pushes contacts from a local contact store into a CardDAV address book,
keeping remote entries idempotent across runs and maintaining a named
contact group for everything it uploads.
"""

__version__ = "0.1.0"
