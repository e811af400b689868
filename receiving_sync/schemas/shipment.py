"""Shipment and manifest wire schemas."""

from __future__ import annotations

from typing import Any, List, Optional

from pydantic import AliasChoices, BaseModel, Field, field_validator

from receiving_sync.models.shipment import ShipmentStatus
from receiving_sync.schemas.ledger import WIRE_CONFIG


class ExpectedItemIn(BaseModel):
    """Manifest line as sent by a client or produced by the manifest parser."""

    item_number: str = ""
    legacy_item_number: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("legacyItemNumber", "legacy_item_number", "legacyNumber"),
    )
    description: str = ""
    upc: str = Field(min_length=1)
    qty_expected: int = Field(
        default=0,
        ge=0,
        validation_alias=AliasChoices("qtyExpected", "qty_expected", "qtyShipped"),
    )
    document_id: Optional[str] = None

    model_config = WIRE_CONFIG

    @field_validator("upc", "item_number", "description", mode="before")
    @classmethod
    def strip_text(cls, v: Any) -> Any:
        return v.strip() if isinstance(v, str) else v

    @field_validator("document_id", "legacy_item_number", mode="before")
    @classmethod
    def empty_is_none(cls, v: Any) -> Any:
        if v is None:
            return None
        v = str(v).strip()
        return v or None


class ExpectedItemOut(BaseModel):
    item_number: str
    legacy_item_number: Optional[str] = None
    description: str
    upc: str
    qty_expected: int
    document_id: Optional[str] = None

    model_config = WIRE_CONFIG


class ShipmentIn(BaseModel):
    """Shipment metadata for create-or-update.

    Unknown fields (for example a client's embedded ``receivedItems``) are
    ignored; received quantities only travel through the ledger endpoints.
    """

    id: Optional[str] = None
    date: Optional[str] = None
    document_ids: List[str] = Field(default_factory=list)
    expected_items: List[ExpectedItemIn] = Field(default_factory=list)
    status: ShipmentStatus = ShipmentStatus.IN_PROGRESS
    created_at: Optional[int] = None
    completed_at: Optional[int] = None

    model_config = WIRE_CONFIG

    @field_validator("document_ids", mode="before")
    @classmethod
    def unique_document_ids(cls, v: Any) -> Any:
        if v is None:
            return []
        if isinstance(v, (list, tuple)):
            cleaned = (str(d).strip() for d in v if d is not None)
            return list(dict.fromkeys(d for d in cleaned if d))
        return v


class ShipmentOut(BaseModel):
    id: str
    date: str
    document_ids: List[str]
    expected_items: List[ExpectedItemOut]
    status: ShipmentStatus
    created_at: int
    completed_at: Optional[int] = None
    last_updated: int

    model_config = WIRE_CONFIG


class LegacyShipmentCreate(BaseModel):
    """Body of the original ``POST /shipments`` endpoint."""

    shipment_id: Optional[str] = None
    shipment_data: Optional[ShipmentIn] = None

    model_config = WIRE_CONFIG
