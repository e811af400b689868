"""Manifest extraction routes."""

from fastapi import APIRouter, Request

from receiving_sync.core.config import settings
from receiving_sync.core.errors import InvalidInputError
from receiving_sync.core.rate_limit import limiter
from receiving_sync.core.responses import ok_response
from receiving_sync.schemas.manifest import (
    ManifestMetadata,
    ManifestParseRequest,
    ManifestParseResponse,
)
from receiving_sync.schemas.shipment import ExpectedItemOut
from receiving_sync.services.manifest_parser import parse_packing_list

router = APIRouter()


@router.post("/parse")
@limiter.limit(settings.write_rate_limit)
def parse_manifest(request: Request, body: ManifestParseRequest):
    """
    Parse packing-list text into document ids and expected items.

    The text layer must already be extracted from the PDF.
    """
    manifest = parse_packing_list(body.text)
    if not manifest.items:
        raise InvalidInputError("No packing-list items found in the text")

    response = ManifestParseResponse(
        metadata=ManifestMetadata(
            parsed_at=manifest.parsed_at,
            text_length=manifest.text_length,
            total_packing_lists=len(manifest.document_ids),
            total_items=len(manifest.items),
            total_quantity=manifest.total_quantity,
        ),
        document_ids=manifest.document_ids,
        expected_items=[
            ExpectedItemOut(
                item_number=item.item_number,
                legacy_item_number=item.legacy_number,
                description=item.description,
                upc=item.upc,
                qty_expected=item.qty_shipped,
                document_id=item.document_id,
            )
            for item in manifest.items
        ],
    )
    return ok_response(data=response.model_dump(by_alias=True))
