"""Handheld-side sync: local optimistic state plus the server API client."""

from receiving_sync.client.api import ApiResponse, ReceivingApiClient
from receiving_sync.client.config import ClientSettings, generate_device_id
from receiving_sync.client.store import LocalStore
from receiving_sync.client.sync import SyncCoordinator, SyncResult

__all__ = [
    "ApiResponse",
    "ClientSettings",
    "LocalStore",
    "ReceivingApiClient",
    "SyncCoordinator",
    "SyncResult",
    "generate_device_id",
]
