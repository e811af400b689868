"""Manifest Store - shipment identity, manifest and lifecycle persistence.

A shipment's manifest (expected items and document ids) is written once when
the shipment is created. Later upserts only touch lifecycle fields, and the
status can only move forward from in-progress to completed.
"""

import logging
from typing import List, Optional, Tuple

from sqlalchemy import delete
from sqlalchemy.orm import Session, selectinload

from receiving_sync.core.clock import now_ms, today_iso
from receiving_sync.db.upsert import upsert_insert
from receiving_sync.models.ledger import ReceivedItem, ReceivedItemDevice, ScanEvent
from receiving_sync.models.shipment import ExpectedItem, Shipment, ShipmentStatus
from receiving_sync.schemas.shipment import ShipmentIn

logger = logging.getLogger(__name__)


class ManifestStore:
    """CRUD over shipments and their manifests."""

    def __init__(self, db: Session):
        self.db = db

    def get_shipment(self, shipment_id: str) -> Optional[Shipment]:
        return (
            self.db.query(Shipment)
            .options(selectinload(Shipment.expected_items))
            .filter(Shipment.id == shipment_id)
            .first()
        )

    def list_shipments(self) -> List[Shipment]:
        """All shipments, newest created first."""
        return (
            self.db.query(Shipment)
            .options(selectinload(Shipment.expected_items))
            .order_by(Shipment.created_at.desc(), Shipment.id.desc())
            .all()
        )

    def upsert_shipment(self, shipment_id: str, data: ShipmentIn) -> Tuple[Shipment, bool]:
        """Create the shipment, or update the lifecycle of an existing one.

        Creation uses INSERT ... ON CONFLICT DO NOTHING so two devices creating
        the same shipment concurrently cannot both write a manifest.

        Returns:
            (shipment, created)
        """
        now = now_ms()
        stmt = upsert_insert(self.db, Shipment).values(
            id=shipment_id,
            date=data.date or today_iso(),
            document_ids=list(data.document_ids),
            status=ShipmentStatus.IN_PROGRESS,
            created_at=data.created_at or now,
            last_updated=now,
        ).on_conflict_do_nothing(index_elements=["id"])
        created = self.db.execute(stmt).rowcount == 1

        if created:
            for position, item in enumerate(data.expected_items):
                self.db.add(
                    ExpectedItem(
                        shipment_id=shipment_id,
                        position=position,
                        item_number=item.item_number,
                        legacy_item_number=item.legacy_item_number,
                        description=item.description,
                        upc=item.upc,
                        qty_expected=item.qty_expected,
                        document_id=item.document_id,
                    )
                )
            logger.info(
                f"Created shipment {shipment_id} with {len(data.expected_items)} expected items "
                f"across {len(data.document_ids)} documents"
            )

        shipment = (
            self.db.query(Shipment)
            .filter(Shipment.id == shipment_id)
            .with_for_update()
            .one()
        )

        if not created:
            if data.expected_items and len(data.expected_items) != len(shipment.expected_items):
                logger.warning(
                    f"Ignoring manifest change for existing shipment {shipment_id}; "
                    "the manifest is fixed at creation"
                )
            if data.date:
                shipment.date = data.date
            shipment.last_updated = now

        if data.status == ShipmentStatus.COMPLETED and not shipment.is_completed:
            self._mark_completed(shipment, data.completed_at or now)

        self.db.commit()
        self.db.refresh(shipment)
        return shipment, created

    def complete_shipment(self, shipment_id: str) -> Optional[Shipment]:
        """Transition a shipment to completed.

        Idempotent: completing an already completed shipment keeps the
        original ``completed_at``. Returns None when the shipment is unknown.
        """
        # Exclusive row lock on PostgreSQL; scans hold a shared lock on the
        # same row, so a completion and a scan are strictly ordered.
        shipment = (
            self.db.query(Shipment)
            .filter(Shipment.id == shipment_id)
            .with_for_update()
            .first()
        )
        if shipment is None:
            return None

        if not shipment.is_completed:
            self._mark_completed(shipment, now_ms())
            self.db.commit()
        else:
            self.db.rollback()

        return self.get_shipment(shipment_id)

    def delete_shipment(self, shipment_id: str) -> bool:
        """Delete a shipment and cascade to its manifest and ledger.

        Returns False when nothing existed. Deleting an unknown shipment is not
        an error for callers; the end state is the same.
        """
        for model in (ScanEvent, ReceivedItemDevice, ReceivedItem, ExpectedItem):
            self.db.execute(delete(model).where(model.shipment_id == shipment_id))
        deleted = self.db.execute(delete(Shipment).where(Shipment.id == shipment_id)).rowcount
        self.db.commit()

        if deleted:
            logger.info(f"Deleted shipment {shipment_id} and its ledger")
        return bool(deleted)

    def _mark_completed(self, shipment: Shipment, completed_at: int) -> None:
        shipment.status = ShipmentStatus.COMPLETED
        shipment.completed_at = completed_at
        shipment.last_updated = now_ms()
        logger.info(f"Shipment {shipment.id} marked completed")
