"""Shipment routes: manifest upsert, lifecycle and the aggregated view."""

import logging

from fastapi import APIRouter, Query, Request

from receiving_sync.core.config import settings
from receiving_sync.core.errors import InvalidInputError, ShipmentNotFound
from receiving_sync.core.rate_limit import limiter
from receiving_sync.core.responses import ok_response
from receiving_sync.db.session import DbSession
from receiving_sync.schemas.ledger import CombinedLineOut, DiscrepancySummaryOut
from receiving_sync.schemas.shipment import LegacyShipmentCreate, ShipmentIn, ShipmentOut
from receiving_sync.services.discrepancy import (
    LINE_FILTERS,
    combine,
    combine_by_item_number,
    summarize,
)
from receiving_sync.services.manifest_store import ManifestStore
from receiving_sync.services.reconciliation_engine import ReconciliationEngine

logger = logging.getLogger(__name__)

router = APIRouter()


def _shipment_out(shipment) -> dict:
    return ShipmentOut.model_validate(shipment).model_dump(by_alias=True, mode="json")


def _upsert(db, shipment_id: str, data: ShipmentIn) -> dict:
    shipment_id = (shipment_id or "").strip()
    if not shipment_id:
        raise InvalidInputError("Shipment id is required")
    if data.id and data.id.strip() != shipment_id:
        raise InvalidInputError(f"Shipment id mismatch: path {shipment_id}, body {data.id}")

    shipment, created = ManifestStore(db).upsert_shipment(shipment_id, data)
    return ok_response(shipment=_shipment_out(shipment), created=created)


@router.get("")
@limiter.limit(settings.read_rate_limit)
def list_shipments(request: Request, db: DbSession):
    """All shipments, newest created first."""
    shipments = ManifestStore(db).list_shipments()
    return ok_response(shipments=[_shipment_out(s) for s in shipments])


@router.post("")
@limiter.limit(settings.write_rate_limit)
def create_shipment_legacy(request: Request, body: LegacyShipmentCreate, db: DbSession):
    """Create-or-update with the older ``{shipmentId, shipmentData}`` body."""
    if body.shipment_data is None:
        raise InvalidInputError("shipmentData is required")
    shipment_id = body.shipment_id or body.shipment_data.id
    return _upsert(db, shipment_id, body.shipment_data)


@router.put("/{shipment_id}")
@limiter.limit(settings.write_rate_limit)
def upsert_shipment(request: Request, shipment_id: str, body: ShipmentIn, db: DbSession):
    """
    Create a shipment or update its lifecycle.

    The manifest (expected items, document ids) is fixed when the shipment is
    first created; repeated PUTs from other devices are harmless.
    """
    return _upsert(db, shipment_id, body)


@router.get("/{shipment_id}")
@limiter.limit(settings.read_rate_limit)
def get_shipment(request: Request, shipment_id: str, db: DbSession):
    shipment = ManifestStore(db).get_shipment(shipment_id)
    if shipment is None:
        raise ShipmentNotFound(shipment_id)
    return ok_response(shipment=_shipment_out(shipment))


@router.post("/{shipment_id}/complete")
@limiter.limit(settings.write_rate_limit)
def complete_shipment(request: Request, shipment_id: str, db: DbSession):
    """Mark a shipment completed. Received items are frozen afterwards."""
    shipment = ManifestStore(db).complete_shipment(shipment_id)
    if shipment is None:
        raise ShipmentNotFound(shipment_id)
    return ok_response(shipment=_shipment_out(shipment))


@router.delete("/{shipment_id}")
@limiter.limit(settings.write_rate_limit)
def delete_shipment(request: Request, shipment_id: str, db: DbSession):
    """Delete a shipment with its manifest and ledger. Unknown ids succeed."""
    deleted = ManifestStore(db).delete_shipment(shipment_id)
    return ok_response(deleted=deleted)


@router.get("/{shipment_id}/summary")
@limiter.limit(settings.read_rate_limit)
def get_shipment_summary(
    request: Request,
    shipment_id: str,
    db: DbSession,
    line_filter_name: str = Query("all", alias="filter", description="all, discrepancies, overages or shortages"),
    combine_by_item: bool = Query(False, alias="combineByItem"),
):
    """
    Combined expected + received view for one shipment.

    Totals always cover every line; the filter only narrows the returned lines.
    """
    line_filter = LINE_FILTERS.get(line_filter_name)
    if line_filter is None:
        raise InvalidInputError(
            f"Unknown filter {line_filter_name!r}; expected one of {', '.join(LINE_FILTERS)}"
        )

    shipment = ManifestStore(db).get_shipment(shipment_id)
    if shipment is None:
        raise ShipmentNotFound(shipment_id)

    records = ReconciliationEngine(db).pull_all(shipment_id)
    lines = combine(shipment.expected_items, records)
    if combine_by_item:
        lines = combine_by_item_number(lines)
    summary = summarize(lines)

    return ok_response(
        shipmentId=shipment.id,
        status=shipment.status.value,
        summary=DiscrepancySummaryOut.model_validate(summary).model_dump(by_alias=True),
        lines=[_line_out(line) for line in line_filter(lines)],
    )


def _line_out(line) -> dict:
    return CombinedLineOut(
        upc=line.upc,
        document_id=line.document_id,
        item_number=line.item_number,
        legacy_item_number=line.legacy_item_number,
        description=line.description,
        qty_expected=line.qty_expected,
        qty_received=line.qty_received,
        discrepancy=line.discrepancy,
        expected=line.expected,
        scanned_by=list(line.scanned_by),
        scanned_by_username=line.scanned_by_username,
        scanned_by_name=line.scanned_by_name,
        last_updated=line.last_updated,
    ).model_dump(by_alias=True)

