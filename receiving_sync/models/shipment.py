"""Shipment and expected-item (manifest) models."""

from __future__ import annotations

from enum import Enum
from typing import List, Optional

from sqlalchemy import JSON, BigInteger, Enum as SQLEnum, ForeignKey, Integer, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from receiving_sync.db.base import Base, TimestampMixin


class ShipmentStatus(str, Enum):
    """Lifecycle of a shipment. Transitions only run IN_PROGRESS -> COMPLETED."""

    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"


class Shipment(TimestampMixin, Base):
    """A unit of receiving work tied to one or more packing-list documents."""

    __tablename__ = "shipments"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    date: Mapped[str] = mapped_column(String(10), nullable=False)
    document_ids: Mapped[List[str]] = mapped_column(JSON, default=list, nullable=False)
    status: Mapped[ShipmentStatus] = mapped_column(
        SQLEnum(
            ShipmentStatus,
            name="shipment_status",
            values_callable=lambda enum: [member.value for member in enum],
        ),
        default=ShipmentStatus.IN_PROGRESS,
        nullable=False,
    )
    completed_at: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)
    # Newest last_updated stamp handed to this shipment's received items
    ledger_clock: Mapped[int] = mapped_column(BigInteger, default=0, server_default="0", nullable=False)

    expected_items: Mapped[List["ExpectedItem"]] = relationship(
        "ExpectedItem",
        back_populates="shipment",
        order_by="ExpectedItem.position",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    @property
    def is_completed(self) -> bool:
        return self.status == ShipmentStatus.COMPLETED


class ExpectedItem(Base):
    """One manifest line. Immutable once the shipment exists."""

    __tablename__ = "expected_items"

    id: Mapped[int] = mapped_column(primary_key=True)
    shipment_id: Mapped[str] = mapped_column(
        ForeignKey("shipments.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False)

    item_number: Mapped[str] = mapped_column(String(32), default="", nullable=False)
    legacy_item_number: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    description: Mapped[str] = mapped_column(String(500), default="", nullable=False)
    upc: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    qty_expected: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    document_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)

    shipment: Mapped["Shipment"] = relationship("Shipment", back_populates="expected_items")
