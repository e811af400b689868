"""SQLAlchemy models."""

from receiving_sync.models.shipment import ExpectedItem, Shipment, ShipmentStatus
from receiving_sync.models.ledger import (
    LEDGER_KEY_COLUMNS,
    ReceivedItem,
    ReceivedItemDevice,
    ScanEvent,
)

__all__ = [
    "ExpectedItem",
    "LEDGER_KEY_COLUMNS",
    "ReceivedItem",
    "ReceivedItemDevice",
    "ScanEvent",
    "Shipment",
    "ShipmentStatus",
]
