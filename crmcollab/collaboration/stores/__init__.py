"""Persistence backends for the collaboration layer."""

from crmcollab.collaboration.stores.base import CollaborationStore, StoreError
from crmcollab.collaboration.stores.sqlite import SQLiteStore

__all__ = ["CollaborationStore", "SQLiteStore", "StoreError"]
