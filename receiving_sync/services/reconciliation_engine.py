"""Reconciliation Engine - merges scans from many devices into one ledger.

Operations:
- apply_scan:   additive, one physical scan of ``delta_qty`` units
- set_quantity: absolute correction, does not add provenance
- batch_merge:  last-writer-wins upsert of a device's full local ledger
- pull_since:   records with last_updated > since, creation order
- pull_all:     the full ledger, creation order

Concurrency:
Every quantity write is a single ``INSERT ... ON CONFLICT DO UPDATE`` on the
``(shipment_id, upc, document_id)`` unique key, so two devices scanning the
same UPC at once can never lose an increment. The ``scannedBy`` set is a
separate table appended with ``ON CONFLICT DO NOTHING`` for the same reason.

``last_updated`` is not the wall clock. Each write first claims a per-shipment
stamp under the shipment row lock, strictly greater than every earlier stamp,
so the delta-sync cursor ``max(last_updated)`` never skips a write that
committed later or in the same millisecond.

Expected failures (unknown shipment, completed shipment, bad input) come back
as a ``MergeResult``; database errors propagate to the caller.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from sqlalchemy import func, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, selectinload

from receiving_sync.core.clock import now_ms
from receiving_sync.core.config import settings
from receiving_sync.core.errors import ErrorKind
from receiving_sync.core.ledger_keys import LedgerKey, document_from_key, document_key
from receiving_sync.db.upsert import greatest, upsert_insert
from receiving_sync.models.ledger import (
    LEDGER_KEY_COLUMNS,
    ReceivedItem,
    ReceivedItemDevice,
    ScanEvent,
)
from receiving_sync.models.shipment import Shipment, ShipmentStatus
from receiving_sync.services.discrepancy import ExpectedTotals, discrepancy, index_expected

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LedgerRecord:
    """A reconciled ledger record annotated with its manifest line."""

    shipment_id: str
    upc: str
    document_id: Optional[str]
    qty_received: int
    qty_expected: int = 0
    scanned_by: Tuple[str, ...] = field(default_factory=tuple)
    scanned_by_username: Optional[str] = None
    scanned_by_name: Optional[str] = None
    created_at: Optional[int] = None
    last_updated: Optional[int] = None
    item_number: Optional[str] = None
    legacy_item_number: Optional[str] = None
    description: Optional[str] = None

    @property
    def discrepancy(self) -> int:
        return discrepancy(self.qty_received, self.qty_expected)


@dataclass
class MergeResult:
    """Outcome of an engine mutation."""

    ok: bool
    record: Optional[LedgerRecord] = None
    count: int = 0
    duplicate: bool = False
    error_kind: Optional[ErrorKind] = None
    error: Optional[str] = None

    @classmethod
    def success(cls, record: Optional[LedgerRecord] = None, count: int = 0, duplicate: bool = False) -> "MergeResult":
        return cls(ok=True, record=record, count=count, duplicate=duplicate)

    @classmethod
    def failure(cls, kind: ErrorKind, message: str) -> "MergeResult":
        return cls(ok=False, error_kind=kind, error=message)


def _is_int(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


class ReconciliationEngine:
    """Server-side merge algorithm over the received-item ledger."""

    def __init__(self, db: Session, max_batch_size: Optional[int] = None):
        self.db = db
        self.max_batch_size = max_batch_size or settings.max_batch_size

    # ==================== Mutations ====================

    def apply_scan(
        self,
        shipment_id: str,
        upc: Optional[str],
        delta_qty: Optional[int],
        device_id: Optional[str],
        document_id: Optional[str] = None,
        username: Optional[str] = None,
        name: Optional[str] = None,
        event_id: Optional[str] = None,
    ) -> MergeResult:
        """Add ``delta_qty`` physically scanned units to a ledger key.

        Not idempotent on its own: a retried call counts twice. Callers that
        retry must pass a stable ``event_id``; a repeated event id returns the
        current record without changing it.
        """
        upc = (upc or "").strip()
        device_id = (device_id or "").strip()
        if not upc:
            return MergeResult.failure(ErrorKind.INVALID_INPUT, "upc is required")
        if not device_id:
            return MergeResult.failure(ErrorKind.INVALID_INPUT, "deviceId is required")
        if not _is_int(delta_qty) or delta_qty <= 0:
            return MergeResult.failure(
                ErrorKind.INVALID_INPUT, f"qtyReceived must be a positive integer, got {delta_qty!r}"
            )

        shipment, now, rejection = self._lock_for_mutation(shipment_id)
        if rejection:
            return rejection

        doc = document_key(document_id)
        try:
            if event_id:
                if not self._record_event(shipment_id, event_id, upc, doc, delta_qty, device_id, username, now):
                    self.db.rollback()
                    logger.info(
                        f"Duplicate scan event {event_id} for shipment {shipment_id} upc {upc}; ignored"
                    )
                    return MergeResult.success(
                        record=self._read_record(shipment_id, upc, doc), duplicate=True
                    )

            stmt = upsert_insert(self.db, ReceivedItem).values(
                shipment_id=shipment_id,
                upc=upc,
                document_id=doc,
                qty_received=delta_qty,
                scanned_by_username=username,
                scanned_by_name=name,
                created_at=now,
                last_updated=now,
            )
            stmt = stmt.on_conflict_do_update(
                index_elements=list(LEDGER_KEY_COLUMNS),
                set_={
                    "qty_received": ReceivedItem.qty_received + stmt.excluded.qty_received,
                    "scanned_by_username": _latest(stmt.excluded.scanned_by_username, ReceivedItem.scanned_by_username),
                    "scanned_by_name": _latest(stmt.excluded.scanned_by_name, ReceivedItem.scanned_by_name),
                    "last_updated": stmt.excluded.last_updated,
                },
            )
            self.db.execute(stmt)
            self._add_devices(shipment_id, upc, doc, [device_id], now)
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            logger.exception(f"Scan write failed for shipment {shipment_id} upc {upc}")
            raise

        logger.debug(f"Scan +{delta_qty} upc={upc} doc={doc!r} device={device_id} shipment={shipment_id}")
        return MergeResult.success(record=self._read_record(shipment_id, upc, doc, shipment))

    def set_quantity(
        self,
        shipment_id: str,
        upc: Optional[str],
        absolute_qty: Optional[int],
        document_id: Optional[str] = None,
    ) -> MergeResult:
        """Overwrite the received quantity of a key (manual correction).

        Zero is allowed so a mis-scan can be cleared. ``scannedBy`` is left
        untouched; the record is created if it does not exist yet.
        """
        upc = (upc or "").strip()
        if not upc:
            return MergeResult.failure(ErrorKind.INVALID_INPUT, "upc is required")
        if not _is_int(absolute_qty) or absolute_qty < 0:
            return MergeResult.failure(
                ErrorKind.INVALID_INPUT, f"qtyReceived must be a non-negative integer, got {absolute_qty!r}"
            )

        shipment, now, rejection = self._lock_for_mutation(shipment_id)
        if rejection:
            return rejection

        doc = document_key(document_id)
        try:
            stmt = upsert_insert(self.db, ReceivedItem).values(
                shipment_id=shipment_id,
                upc=upc,
                document_id=doc,
                qty_received=absolute_qty,
                created_at=now,
                last_updated=now,
            )
            stmt = stmt.on_conflict_do_update(
                index_elements=list(LEDGER_KEY_COLUMNS),
                set_={
                    "qty_received": stmt.excluded.qty_received,
                    "last_updated": stmt.excluded.last_updated,
                },
            )
            self.db.execute(stmt)
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            logger.exception(f"Quantity correction failed for shipment {shipment_id} upc {upc}")
            raise

        logger.info(f"Quantity for upc={upc} doc={doc!r} on shipment {shipment_id} set to {absolute_qty}")
        return MergeResult.success(record=self._read_record(shipment_id, upc, doc, shipment))

    def batch_merge(self, shipment_id: str, records: Sequence) -> MergeResult:
        """Upsert a device's whole local ledger, last writer wins per key.

        Not additive: the uploading device already holds
        the cumulative count for its own scans. When two devices upload the
        same key, whichever upload lands last wins. Within one batch the later
        record for a key wins. Device provenance is unioned, never replaced.

        Records are duck-typed: anything with upc, document_id, qty_received,
        scanned_by, scanned_by_username and scanned_by_name.
        """
        if len(records) > self.max_batch_size:
            return MergeResult.failure(
                ErrorKind.INVALID_INPUT,
                f"Batch of {len(records)} records exceeds the limit of {self.max_batch_size}",
            )

        merged: Dict[LedgerKey, object] = {}
        for record in records:
            upc = (record.upc or "").strip()
            qty = record.qty_received
            if not upc:
                return MergeResult.failure(ErrorKind.INVALID_INPUT, "Every record needs a upc")
            if not _is_int(qty) or qty < 0:
                return MergeResult.failure(
                    ErrorKind.INVALID_INPUT, f"Invalid qtyReceived {qty!r} for upc {upc}"
                )
            key = (upc, document_key(record.document_id))
            # Re-insert so a later duplicate moves to the end and overwrites
            merged.pop(key, None)
            merged[key] = record

        shipment, now, rejection = self._lock_for_mutation(shipment_id)
        if rejection:
            return rejection

        try:
            for (upc, doc), record in merged.items():
                username = getattr(record, "scanned_by_username", None)
                name = getattr(record, "scanned_by_name", None)
                stmt = upsert_insert(self.db, ReceivedItem).values(
                    shipment_id=shipment_id,
                    upc=upc,
                    document_id=doc,
                    qty_received=record.qty_received,
                    scanned_by_username=username,
                    scanned_by_name=name,
                    created_at=now,
                    last_updated=now,
                )
                stmt = stmt.on_conflict_do_update(
                    index_elements=list(LEDGER_KEY_COLUMNS),
                    set_={
                        "qty_received": stmt.excluded.qty_received,
                        "scanned_by_username": _latest(stmt.excluded.scanned_by_username, ReceivedItem.scanned_by_username),
                        "scanned_by_name": _latest(stmt.excluded.scanned_by_name, ReceivedItem.scanned_by_name),
                        "last_updated": stmt.excluded.last_updated,
                    },
                )
                self.db.execute(stmt)
                self._add_devices(shipment_id, upc, doc, getattr(record, "scanned_by", None) or [], now)
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            logger.exception(f"Batch merge failed for shipment {shipment_id}")
            raise

        logger.info(
            f"Batch merged {len(merged)} keys ({len(records)} records uploaded) into shipment {shipment_id}"
        )
        return MergeResult.success(count=len(merged))

    # ==================== Reads ====================

    def pull_since(self, shipment_id: str, since: Optional[int] = None) -> List[LedgerRecord]:
        """Records updated strictly after ``since``; the full ledger when it is falsy."""
        return self._read_records(shipment_id, since=since or None)

    def pull_all(self, shipment_id: str) -> List[LedgerRecord]:
        return self._read_records(shipment_id)

    def get_record(self, shipment_id: str, upc: str, document_id: Optional[str] = None) -> Optional[LedgerRecord]:
        return self._read_record(shipment_id, upc.strip(), document_key(document_id))

    # ==================== Internals ====================

    def _lock_for_mutation(
        self, shipment_id: str
    ) -> Tuple[Optional[Shipment], int, Optional[MergeResult]]:
        """Claim the next ledger stamp for a shipment that still accepts writes.

        The stamp is ``max(previous stamp + 1, now)``. Bumping it is an UPDATE
        on the shipment row, which holds the row lock (the database write lock
        on SQLite) until commit. Ledger writes for one shipment therefore
        commit one at a time in stamp order, and a reader that has seen stamp
        ``n`` can never later find a committed write stamped ``n`` or lower.
        Completion locks the same row, so whichever arrives first wins.
        """
        claimed = self.db.execute(
            update(Shipment)
            .where(Shipment.id == shipment_id, Shipment.status != ShipmentStatus.COMPLETED)
            .values(ledger_clock=greatest(self.db, Shipment.ledger_clock + 1, now_ms()))
            .execution_options(synchronize_session=False)
        ).rowcount
        if not claimed:
            self.db.rollback()
            shipment = self.db.query(Shipment).filter(Shipment.id == shipment_id).first()
            if shipment is None:
                return None, 0, MergeResult.failure(ErrorKind.NOT_FOUND, f"Shipment not found: {shipment_id}")
            logger.info(f"Rejected ledger mutation on completed shipment {shipment_id}")
            return shipment, 0, MergeResult.failure(
                ErrorKind.CONFLICT,
                f"Shipment {shipment_id} is completed; received items can no longer change",
            )

        stamp = self.db.query(Shipment.ledger_clock).filter(Shipment.id == shipment_id).scalar()
        shipment = (
            self.db.query(Shipment)
            .options(selectinload(Shipment.expected_items))
            .filter(Shipment.id == shipment_id)
            .one()
        )
        return shipment, stamp, None

    def _record_event(
        self,
        shipment_id: str,
        event_id: str,
        upc: str,
        doc: str,
        qty: int,
        device_id: str,
        username: Optional[str],
        now: int,
    ) -> bool:
        """Append a scan event; False when the event id was already seen."""
        stmt = upsert_insert(self.db, ScanEvent).values(
            shipment_id=shipment_id,
            event_id=event_id,
            upc=upc,
            document_id=doc,
            qty=qty,
            device_id=device_id,
            username=username,
            received_at=now,
        ).on_conflict_do_nothing(index_elements=["shipment_id", "event_id"])
        return self.db.execute(stmt).rowcount == 1

    def _add_devices(self, shipment_id: str, upc: str, doc: str, device_ids: Iterable[str], now: int) -> None:
        for device_id in dict.fromkeys(d for d in device_ids if d):
            stmt = upsert_insert(self.db, ReceivedItemDevice).values(
                shipment_id=shipment_id,
                upc=upc,
                document_id=doc,
                device_id=device_id,
                first_seen_at=now,
            ).on_conflict_do_nothing(index_elements=[*LEDGER_KEY_COLUMNS, "device_id"])
            self.db.execute(stmt)

    def _read_record(
        self,
        shipment_id: str,
        upc: str,
        doc: str,
        shipment: Optional[Shipment] = None,
    ) -> Optional[LedgerRecord]:
        records = self._read_records(shipment_id, key=(upc, doc), shipment=shipment)
        return records[0] if records else None

    def _read_records(
        self,
        shipment_id: str,
        since: Optional[int] = None,
        key: Optional[LedgerKey] = None,
        shipment: Optional[Shipment] = None,
    ) -> List[LedgerRecord]:
        query = self.db.query(ReceivedItem).filter(ReceivedItem.shipment_id == shipment_id)
        device_query = self.db.query(ReceivedItemDevice).filter(ReceivedItemDevice.shipment_id == shipment_id)
        if since is not None:
            query = query.filter(ReceivedItem.last_updated > since)
        if key is not None:
            query = query.filter(ReceivedItem.upc == key[0], ReceivedItem.document_id == key[1])
            device_query = device_query.filter(
                ReceivedItemDevice.upc == key[0], ReceivedItemDevice.document_id == key[1]
            )

        rows = query.order_by(ReceivedItem.id).all()
        if not rows:
            return []

        devices: Dict[LedgerKey, List[str]] = {}
        for device in device_query.order_by(ReceivedItemDevice.id).all():
            devices.setdefault((device.upc, device.document_id), []).append(device.device_id)

        if shipment is None:
            shipment = (
                self.db.query(Shipment)
                .options(selectinload(Shipment.expected_items))
                .filter(Shipment.id == shipment_id)
                .first()
            )
        expected = index_expected(shipment.expected_items) if shipment is not None else {}

        return [self._to_record(row, devices, expected) for row in rows]

    @staticmethod
    def _to_record(
        row: ReceivedItem,
        devices: Dict[LedgerKey, List[str]],
        expected: Dict[LedgerKey, ExpectedTotals],
    ) -> LedgerRecord:
        key = (row.upc, row.document_id)
        totals = expected.get(key)
        return LedgerRecord(
            shipment_id=row.shipment_id,
            upc=row.upc,
            document_id=document_from_key(row.document_id),
            qty_received=row.qty_received,
            qty_expected=totals.qty_expected if totals else 0,
            scanned_by=tuple(devices.get(key, ())),
            scanned_by_username=row.scanned_by_username,
            scanned_by_name=row.scanned_by_name,
            created_at=row.created_at,
            last_updated=row.last_updated,
            item_number=totals.item_number if totals else None,
            legacy_item_number=totals.legacy_item_number if totals else None,
            description=totals.description if totals else None,
        )


def _latest(incoming, current):
    """SQL expression keeping the newest non-null contributor name."""
    return func.coalesce(incoming, current)
