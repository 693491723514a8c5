"""
contact_bridge.web - HTTP surface

FastAPI app exposing contact import, CardDAV fetch and CardDAV sync.
"""

from contact_bridge.web.app import create_app

__all__ = ["create_app"]
