"""Received-item ledger models.

``ReceivedItem`` holds one reconciled row per ``(shipment_id, upc, document_id)``.
Device provenance and scan events live in their own tables so that both can be
appended with ``INSERT ... ON CONFLICT DO NOTHING`` instead of a read-modify-write
of a JSON column.
"""

from __future__ import annotations

from typing import Optional

from sqlalchemy import BigInteger, ForeignKey, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from receiving_sync.core.clock import now_ms
from receiving_sync.core.ledger_keys import NO_DOCUMENT
from receiving_sync.db.base import Base, TimestampMixin

LEDGER_KEY_COLUMNS = ("shipment_id", "upc", "document_id")


class ReceivedItem(TimestampMixin, Base):
    """Reconciled received quantity for one ledger key."""

    __tablename__ = "received_items"
    __table_args__ = (
        UniqueConstraint(*LEDGER_KEY_COLUMNS, name="uq_received_item_key"),
        Index("ix_received_items_shipment_updated", "shipment_id", "last_updated"),
    )

    # Autoincrement id doubles as creation order for pulls
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    shipment_id: Mapped[str] = mapped_column(
        ForeignKey("shipments.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    upc: Mapped[str] = mapped_column(String(64), nullable=False)
    document_id: Mapped[str] = mapped_column(String(64), default=NO_DOCUMENT, nullable=False)

    qty_received: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    # Most recent contributor, display only
    scanned_by_username: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    scanned_by_name: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)


class ReceivedItemDevice(Base):
    """A device that contributed to a ledger key (the ``scannedBy`` set)."""

    __tablename__ = "received_item_devices"
    __table_args__ = (
        UniqueConstraint(*LEDGER_KEY_COLUMNS, "device_id", name="uq_received_item_device"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    shipment_id: Mapped[str] = mapped_column(
        ForeignKey("shipments.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    upc: Mapped[str] = mapped_column(String(64), nullable=False)
    document_id: Mapped[str] = mapped_column(String(64), default=NO_DOCUMENT, nullable=False)
    device_id: Mapped[str] = mapped_column(String(100), nullable=False)
    first_seen_at: Mapped[int] = mapped_column(BigInteger, default=now_ms, nullable=False)


class ScanEvent(Base):
    """Append-only log of single-scan pushes that carried a client event id.

    The unique ``(shipment_id, event_id)`` pair makes a retried push a no-op.
    """

    __tablename__ = "scan_events"
    __table_args__ = (
        UniqueConstraint("shipment_id", "event_id", name="uq_scan_event"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    shipment_id: Mapped[str] = mapped_column(
        ForeignKey("shipments.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    event_id: Mapped[str] = mapped_column(String(100), nullable=False)
    upc: Mapped[str] = mapped_column(String(64), nullable=False)
    document_id: Mapped[str] = mapped_column(String(64), default=NO_DOCUMENT, nullable=False)
    qty: Mapped[int] = mapped_column(Integer, nullable=False)
    device_id: Mapped[str] = mapped_column(String(100), nullable=False)
    username: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    received_at: Mapped[int] = mapped_column(BigInteger, default=now_ms, nullable=False)
