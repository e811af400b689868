"""Ledger record wire schemas.

The wire format is camelCase. Older clients uploaded snake_case records, a
single ``scannedByDevice`` instead of the ``scannedBy`` list, and sometimes a
list of usernames. These schemas normalise every variant into one shape so the
reconciliation engine never sees a legacy record.
"""

from __future__ import annotations

from typing import Any, List, Optional

from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

WIRE_CONFIG = {
    "alias_generator": to_camel,
    "populate_by_name": True,
    "from_attributes": True,
}


class LedgerShape(BaseModel):
    """Fields and normalisation shared by inbound and outbound records."""

    upc: str = Field(min_length=1)
    document_id: Optional[str] = None
    qty_received: int = Field(ge=0)
    scanned_by: List[str] = Field(default_factory=list)
    scanned_by_username: Optional[str] = None
    scanned_by_name: Optional[str] = None

    model_config = WIRE_CONFIG

    @model_validator(mode="before")
    @classmethod
    def normalize_legacy_shape(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        if "scannedBy" in data or "scanned_by" in data:
            return data
        legacy_device = (
            data.get("scannedByDevice")
            or data.get("scanned_by_device")
            or data.get("deviceId")
            or data.get("device_id")
        )
        if legacy_device:
            data = {**data, "scannedBy": [legacy_device]}
        return data

    @field_validator("upc", mode="before")
    @classmethod
    def strip_upc(cls, v: Any) -> Any:
        return v.strip() if isinstance(v, str) else v

    @field_validator("document_id", mode="before")
    @classmethod
    def empty_document_is_none(cls, v: Any) -> Any:
        if v is None:
            return None
        v = str(v).strip()
        return v or None

    @field_validator("scanned_by", mode="before")
    @classmethod
    def coerce_device_list(cls, v: Any) -> Any:
        if v is None:
            return []
        if isinstance(v, str):
            v = [v]
        if isinstance(v, (list, tuple, set)):
            return list(dict.fromkeys(str(d) for d in v if d))
        return v

    @field_validator("scanned_by_username", "scanned_by_name", mode="before")
    @classmethod
    def latest_contributor(cls, v: Any) -> Any:
        # Aggregated views used to send every contributor; keep the latest.
        if isinstance(v, (list, tuple)):
            present = [item for item in v if item]
            return present[-1] if present else None
        return v


class LedgerRecordIn(LedgerShape):
    """A record uploaded by a client in a batch merge."""


class LedgerRecordOut(LedgerShape):
    """A reconciled ledger record as served to clients."""

    qty_expected: int = 0
    discrepancy: int = 0
    last_updated: Optional[int] = None
    created_at: Optional[int] = None
    item_number: Optional[str] = None
    legacy_item_number: Optional[str] = None
    description: Optional[str] = None

    @model_validator(mode="after")
    def derive_discrepancy(self) -> "LedgerRecordOut":
        # Never trust a stored or transmitted discrepancy
        self.discrepancy = self.qty_received - self.qty_expected
        return self


class ScanCreate(BaseModel):
    """Single scan push. ``qty_received`` is a delta added to the ledger."""

    upc: Optional[str] = None
    qty_received: Optional[int] = None
    device_id: Optional[str] = None
    document_id: Optional[str] = None
    username: Optional[str] = None
    name: Optional[str] = None
    event_id: Optional[str] = None

    model_config = WIRE_CONFIG


class QuantityUpdate(BaseModel):
    """Manual correction: sets ``qty_received`` to an absolute value."""

    upc: Optional[str] = None
    document_id: Optional[str] = None
    qty_received: Optional[int] = None

    model_config = WIRE_CONFIG


class BatchUpload(BaseModel):
    """A device's full local ledger."""

    received_items: List[LedgerRecordIn] = Field(default_factory=list)

    model_config = WIRE_CONFIG


class CombinedLineOut(BaseModel):
    """One line of the aggregated expected + received view."""

    upc: str
    document_id: Optional[str] = None
    item_number: str = ""
    legacy_item_number: Optional[str] = None
    description: str = ""
    qty_expected: int
    qty_received: int
    discrepancy: int
    expected: bool
    scanned_by: List[str] = Field(default_factory=list)
    scanned_by_username: Optional[str] = None
    scanned_by_name: Optional[str] = None
    last_updated: Optional[int] = None

    model_config = WIRE_CONFIG


class DiscrepancySummaryOut(BaseModel):
    total_expected: int
    total_received: int
    total_discrepancy: int
    line_count: int
    overage_count: int
    shortage_count: int
    match_count: int
    unexpected_count: int

    model_config = WIRE_CONFIG
