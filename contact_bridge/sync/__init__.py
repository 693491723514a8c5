"""
contact_bridge.sync - Contact synchronization

vCard codec, record normalization, remote reconciliation, group maintenance
and the orchestrator that sequences them.
"""

from contact_bridge.sync.contact import Contact
from contact_bridge.sync.engine import SyncOrchestrator
from contact_bridge.sync.group import GroupMembershipManager, GroupSyncWarning
from contact_bridge.sync.normalizer import normalize_contact, normalize_many
from contact_bridge.sync.reconciler import (
    BatchSyncError,
    RemoteDirectoryReconciler,
    SyncReport,
)
from contact_bridge.sync.vcard import ParseError, decode_contact, encode_contact

__all__ = [
    "BatchSyncError",
    "Contact",
    "GroupMembershipManager",
    "GroupSyncWarning",
    "ParseError",
    "RemoteDirectoryReconciler",
    "SyncOrchestrator",
    "SyncReport",
    "decode_contact",
    "encode_contact",
    "normalize_contact",
    "normalize_many",
]
