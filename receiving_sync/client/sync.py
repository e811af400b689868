"""Sync Coordinator - bridges the local optimistic tier and the server ledger.

Push-on-scan is fire-and-forget: the local state changes first, the push runs
in a background task and a failure is only logged. Batch upload, pull,
completion and history restore are user-initiated and report a
``SyncResult`` the caller shows to the user.

A failed push never changes local state. Server data only enters local state
through dispatched merge actions.
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass
from typing import Dict, Iterable, Optional, Set

from receiving_sync.client.api import ApiResponse, ReceivingApiClient
from receiving_sync.client.state import (
    AddReceivedItem,
    CompleteShipment,
    CreateShipment,
    DeleteShipment,
    ExpectedLine,
    LoadShipmentsFromServer,
    LocalRecord,
    LocalShipment,
    MergeServerRecords,
    UpdateReceivedQuantity,
    resolve_document,
)
from receiving_sync.client.store import LocalStore
from receiving_sync.core.clock import now_ms, today_iso
from receiving_sync.core.errors import ErrorKind
from receiving_sync.schemas.ledger import LedgerRecordIn, LedgerRecordOut, QuantityUpdate, ScanCreate
from receiving_sync.schemas.shipment import ShipmentIn, ShipmentOut

logger = logging.getLogger(__name__)


@dataclass
class SyncResult:
    success: bool
    error: Optional[str] = None
    error_kind: Optional[ErrorKind] = None
    item_count: int = 0
    shipment_id: Optional[str] = None

    @classmethod
    def from_response(cls, response: ApiResponse, **kwargs) -> "SyncResult":
        return cls(success=response.success, error=response.error, error_kind=response.error_kind, **kwargs)

    @classmethod
    def failure(cls, kind: ErrorKind, error: str, **kwargs) -> "SyncResult":
        return cls(success=False, error=error, error_kind=kind, **kwargs)


def record_from_wire(item: dict) -> LocalRecord:
    """Server ledger record (camelCase) -> local record."""
    record = LedgerRecordOut.model_validate(item)
    return LocalRecord(
        upc=record.upc,
        qty_received=record.qty_received,
        document_id=record.document_id,
        qty_expected=record.qty_expected,
        item_number=record.item_number or "",
        legacy_item_number=record.legacy_item_number,
        description=record.description or "",
        scanned_by=tuple(record.scanned_by),
        scanned_by_username=record.scanned_by_username,
        scanned_by_name=record.scanned_by_name,
        last_updated=record.last_updated,
    )


def shipment_from_wire(item: dict) -> LocalShipment:
    shipment = ShipmentOut.model_validate(item)
    return LocalShipment(
        id=shipment.id,
        date=shipment.date,
        document_ids=tuple(shipment.document_ids),
        expected_items=tuple(
            ExpectedLine(
                upc=line.upc,
                qty_expected=line.qty_expected,
                item_number=line.item_number,
                legacy_item_number=line.legacy_item_number,
                description=line.description,
                document_id=line.document_id,
            )
            for line in shipment.expected_items
        ),
        status=shipment.status,
        created_at=shipment.created_at,
        completed_at=shipment.completed_at,
    )


def shipment_to_wire(shipment: LocalShipment) -> dict:
    body = ShipmentIn(
        id=shipment.id,
        date=shipment.date,
        document_ids=list(shipment.document_ids),
        expected_items=[
            {
                "item_number": line.item_number,
                "legacy_item_number": line.legacy_item_number,
                "description": line.description,
                "upc": line.upc,
                "qty_expected": line.qty_expected,
                "document_id": line.document_id,
            }
            for line in shipment.expected_items
        ],
        status=shipment.status,
        created_at=shipment.created_at,
        completed_at=shipment.completed_at,
    )
    return body.model_dump(by_alias=True, mode="json", exclude_none=True)


def record_to_wire(record: LocalRecord) -> dict:
    return LedgerRecordIn(
        upc=record.upc,
        document_id=record.document_id,
        qty_received=record.qty_received,
        scanned_by=list(record.scanned_by),
        scanned_by_username=record.scanned_by_username,
        scanned_by_name=record.scanned_by_name,
    ).model_dump(by_alias=True)


class SyncCoordinator:
    """Client-side sync workflow for one device."""

    def __init__(
        self,
        api: ReceivingApiClient,
        store: LocalStore,
        device_id: str,
        username: Optional[str] = None,
        name: Optional[str] = None,
    ):
        self.api = api
        self.store = store
        self.device_id = device_id
        self.username = username
        self.name = name
        self._cursors: Dict[str, int] = {}
        self._pending: Set[asyncio.Task] = set()

    # ==================== Shipment lifecycle ====================

    async def create_shipment(
        self,
        document_ids: Iterable[str],
        expected_items: Iterable[ExpectedLine],
        shipment_id: Optional[str] = None,
    ) -> SyncResult:
        """Start receiving a new shipment locally, then register it on the server.

        The shipment stays usable offline when the server call fails.
        """
        created_at = now_ms()
        shipment = LocalShipment(
            id=shipment_id or str(created_at),
            date=today_iso(),
            document_ids=tuple(dict.fromkeys(document_ids)),
            expected_items=tuple(expected_items),
            created_at=created_at,
        )
        self.store.dispatch(CreateShipment(shipment))

        response = await self.api.upsert_shipment(shipment.id, shipment_to_wire(shipment))
        if not response.success:
            logger.warning(f"Shipment {shipment.id} created locally only: {response.error}")
        return SyncResult.from_response(response, shipment_id=shipment.id)

    async def complete(self) -> SyncResult:
        """Upload the local ledger, complete on the server, then locally.

        Nothing changes locally unless both server calls succeed.
        """
        shipment = self.store.state.current
        if shipment is None:
            return SyncResult.failure(ErrorKind.INVALID_INPUT, "No shipment in progress")

        upload = await self.upload_batch(shipment.id)
        if not upload.success:
            return upload

        response = await self.api.complete_shipment(shipment.id)
        if not response.success:
            logger.warning(f"Completing shipment {shipment.id} failed: {response.error}")
            return SyncResult.from_response(response, shipment_id=shipment.id)

        # Pick up scans other devices landed before the completion
        await self.pull(shipment.id, full=True)

        completed_at = response.data.get("shipment", {}).get("completedAt") or now_ms()
        self.store.dispatch(CompleteShipment(completed_at=completed_at))
        logger.info(f"Shipment {shipment.id} completed with {upload.item_count} records uploaded")
        return SyncResult(success=True, item_count=upload.item_count, shipment_id=shipment.id)

    async def delete_shipment(self, shipment_id: str) -> SyncResult:
        """Delete on the server, and locally whatever the server answered."""
        response = await self.api.delete_shipment(shipment_id)
        if not response.success:
            logger.warning(f"Server delete of shipment {shipment_id} failed: {response.error}")
        self.store.dispatch(DeleteShipment(shipment_id))
        self._cursors.pop(shipment_id, None)
        return SyncResult.from_response(response, shipment_id=shipment_id)

    async def restore_history(self) -> SyncResult:
        """Load every server shipment into local history."""
        response = await self.api.list_shipments()
        if not response.success:
            logger.warning(f"Could not restore shipment history: {response.error}")
            return SyncResult.from_response(response)

        shipments = tuple(shipment_from_wire(s) for s in response.data.get("shipments", []))
        self.store.dispatch(LoadShipmentsFromServer(shipments))
        return SyncResult(success=True, item_count=len(shipments))

    # ==================== Received items ====================

    async def scan(self, upc: str, qty: int = 1, document_id: Optional[str] = None) -> Optional[LocalRecord]:
        """Count a scan locally and push it in the background.

        Returns the updated local record, or None when no shipment is open.
        """
        shipment = self.store.state.current
        if shipment is None or shipment.is_completed:
            logger.warning(f"Scan of {upc} ignored: no shipment in progress")
            return None

        document_id = resolve_document(shipment, upc, document_id)
        at = now_ms()
        state = self.store.dispatch(
            AddReceivedItem(
                upc=upc,
                qty=qty,
                document_id=document_id,
                device_id=self.device_id,
                username=self.username,
                name=self.name,
                at=at,
            )
        )

        scan = ScanCreate(
            upc=upc,
            qty_received=qty,
            device_id=self.device_id,
            document_id=document_id,
            username=self.username,
            name=self.name,
            event_id=uuid.uuid4().hex,
        )
        task = asyncio.get_running_loop().create_task(self._push_scan(shipment.id, scan))
        self._pending.add(task)
        task.add_done_callback(self._push_done)

        return state.current.record(upc, document_id) if state.current else None

    async def correct_quantity(self, upc: str, qty: int, document_id: Optional[str] = None) -> SyncResult:
        """Set an absolute quantity locally and on the server."""
        shipment = self.store.state.current
        if shipment is None:
            return SyncResult.failure(ErrorKind.INVALID_INPUT, "No shipment in progress")

        document_id = resolve_document(shipment, upc, document_id)
        self.store.dispatch(UpdateReceivedQuantity(upc=upc, qty=qty, document_id=document_id, at=now_ms()))
        # A pending delta landing after the absolute value would add on top of it
        await self.drain()

        update = QuantityUpdate(upc=upc, qty_received=qty, document_id=document_id)
        response = await self.api.set_quantity(shipment.id, update.model_dump(by_alias=True, exclude_none=True))
        if not response.success:
            logger.warning(f"Quantity correction for {upc} not synced: {response.error}")
        return SyncResult.from_response(response, shipment_id=shipment.id)

    async def upload_batch(self, shipment_id: Optional[str] = None) -> SyncResult:
        """Send the whole local ledger of a shipment in one request."""
        shipment = self._shipment(shipment_id)
        if shipment is None:
            return SyncResult.failure(ErrorKind.NOT_FOUND, f"Unknown shipment: {shipment_id}")

        # In-flight pushes must land first or they would add on top of the batch
        await self.drain()

        records = [record_to_wire(r) for r in shipment.received_items]
        response = await self.api.upload_batch(shipment.id, records)
        if not response.success:
            logger.warning(f"Batch upload for shipment {shipment.id} failed: {response.error}")
            return SyncResult.from_response(response, shipment_id=shipment.id)
        return SyncResult(success=True, item_count=response.data.get("itemCount", 0), shipment_id=shipment.id)

    async def pull(self, shipment_id: Optional[str] = None, full: bool = False) -> SyncResult:
        """Fetch server records and merge them, server wins on quantity.

        Delta pulls resume from the last ``serverTime`` seen for the shipment.
        """
        shipment = self._shipment(shipment_id)
        if shipment is None:
            return SyncResult.failure(ErrorKind.NOT_FOUND, f"Unknown shipment: {shipment_id}")

        cursor = self._cursors.get(shipment.id)
        if full or cursor is None:
            response = await self.api.pull_all(shipment.id)
            items = response.data.get("receivedItems", [])
        else:
            response = await self.api.pull_since(shipment.id, cursor)
            items = response.data.get("items", [])

        if not response.success:
            logger.warning(f"Pull for shipment {shipment.id} failed: {response.error}")
            return SyncResult.from_response(response, shipment_id=shipment.id)

        records = tuple(record_from_wire(item) for item in items)
        if records:
            self.store.dispatch(MergeServerRecords(shipment.id, records))

        server_time = response.data.get("serverTime")
        if server_time is None:
            server_time = max([cursor or 0] + [r.last_updated or 0 for r in records])
        self._cursors[shipment.id] = int(server_time)

        return SyncResult(success=True, item_count=len(records), shipment_id=shipment.id)

    def cursor(self, shipment_id: str) -> Optional[int]:
        return self._cursors.get(shipment_id)

    async def drain(self) -> None:
        """Wait for every in-flight scan push."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    # ==================== Internals ====================

    def _shipment(self, shipment_id: Optional[str]) -> Optional[LocalShipment]:
        state = self.store.state
        if shipment_id is None:
            return state.current
        return state.find(shipment_id)

    async def _push_scan(self, shipment_id: str, scan: ScanCreate) -> ApiResponse:
        response = await self.api.push_scan(shipment_id, scan.model_dump(by_alias=True, exclude_none=True))
        if not response.success:
            logger.warning(
                f"Scan push for {scan.upc} on shipment {shipment_id} failed "
                f"({response.error_kind.value if response.error_kind else 'error'}): {response.error}"
            )
        return response

    def _push_done(self, task: asyncio.Task) -> None:
        self._pending.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(f"Scan push crashed: {error!r}")

