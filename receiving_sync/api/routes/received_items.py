"""Received-item routes: scan push, correction, batch upload and sync pulls."""

import logging
from typing import Optional

from fastapi import APIRouter, Query, Request

from receiving_sync.core.config import settings
from receiving_sync.core.errors import error_for_kind
from receiving_sync.core.rate_limit import limiter
from receiving_sync.core.responses import ok_response
from receiving_sync.db.session import DbSession
from receiving_sync.schemas.ledger import BatchUpload, LedgerRecordOut, QuantityUpdate, ScanCreate
from receiving_sync.services.reconciliation_engine import MergeResult, ReconciliationEngine

logger = logging.getLogger(__name__)

router = APIRouter()


def _record_out(record) -> dict:
    return LedgerRecordOut.model_validate(record).model_dump(by_alias=True, mode="json")


def _unwrap(result: MergeResult) -> MergeResult:
    if not result.ok:
        raise error_for_kind(result.error_kind, result.error)
    return result


def _parse_last_sync(value: Optional[str]) -> int:
    """Lenient cursor parsing: anything that is not an integer means 'from the start'."""
    try:
        return max(int(value), 0)
    except (TypeError, ValueError):
        return 0


@router.post("/{shipment_id}/received-items")
@limiter.limit(settings.scan_rate_limit)
def add_received_item(request: Request, shipment_id: str, body: ScanCreate, db: DbSession):
    """
    Push one scan. ``qtyReceived`` is a delta added to the server total.

    Send a stable ``eventId`` when retrying; a repeated event is acknowledged
    without counting twice.
    """
    result = _unwrap(
        ReconciliationEngine(db).apply_scan(
            shipment_id,
            upc=body.upc,
            delta_qty=body.qty_received,
            device_id=body.device_id,
            document_id=body.document_id,
            username=body.username,
            name=body.name,
            event_id=body.event_id,
        )
    )
    return ok_response(item=_record_out(result.record), duplicate=result.duplicate)


@router.put("/{shipment_id}/received-items")
@limiter.limit(settings.write_rate_limit)
def set_received_quantity(request: Request, shipment_id: str, body: QuantityUpdate, db: DbSession):
    """Manual correction: overwrite the received quantity of one UPC."""
    result = _unwrap(
        ReconciliationEngine(db).set_quantity(
            shipment_id,
            upc=body.upc,
            absolute_qty=body.qty_received,
            document_id=body.document_id,
        )
    )
    return ok_response(item=_record_out(result.record))


@router.post("/{shipment_id}/received-items/batch")
@limiter.limit(settings.write_rate_limit)
def upload_received_items(request: Request, shipment_id: str, body: BatchUpload, db: DbSession):
    """
    Upload a device's full local ledger.

    Last writer wins per key: each record replaces the server quantity.
    """
    result = _unwrap(ReconciliationEngine(db).batch_merge(shipment_id, body.received_items))
    return ok_response(itemCount=result.count)


@router.get("/{shipment_id}/received-items")
@limiter.limit(settings.read_rate_limit)
def get_received_items(request: Request, shipment_id: str, db: DbSession):
    records = ReconciliationEngine(db).pull_all(shipment_id)
    return ok_response(receivedItems=[_record_out(r) for r in records])


@router.get("/{shipment_id}/received-items/sync")
@limiter.limit(settings.read_rate_limit)
def sync_received_items(
    request: Request,
    shipment_id: str,
    db: DbSession,
    last_sync: Optional[str] = Query(None, alias="lastSync"),
):
    """
    Records changed since ``lastSync`` (epoch ms).

    ``serverTime`` is the cursor for the next call: the newest ``lastUpdated``
    returned, or ``lastSync`` itself when nothing changed.
    """
    since = _parse_last_sync(last_sync)
    records = ReconciliationEngine(db).pull_since(shipment_id, since)
    server_time = max([since] + [r.last_updated or 0 for r in records])
    return ok_response(items=[_record_out(r) for r in records], serverTime=server_time)
