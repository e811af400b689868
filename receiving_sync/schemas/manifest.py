"""Manifest parsing schemas."""

from __future__ import annotations

from typing import List

from pydantic import BaseModel, Field

from receiving_sync.schemas.ledger import WIRE_CONFIG
from receiving_sync.schemas.shipment import ExpectedItemOut


class ManifestParseRequest(BaseModel):
    """Packing-list text, already extracted from the PDF."""

    text: str = Field(min_length=1)

    model_config = WIRE_CONFIG


class ManifestMetadata(BaseModel):
    parsed_at: str
    text_length: int
    total_packing_lists: int
    total_items: int
    total_quantity: int

    model_config = WIRE_CONFIG


class ManifestParseResponse(BaseModel):
    metadata: ManifestMetadata
    document_ids: List[str]
    expected_items: List[ExpectedItemOut]

    model_config = WIRE_CONFIG
