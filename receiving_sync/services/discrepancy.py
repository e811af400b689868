"""Discrepancy Calculator - pure functions over manifests and ledgers.

discrepancy = qty_received - qty_expected
  positive -> overage, negative -> shortage, zero -> match

The combined view joins every expected item with every ledger record on the
``(upc, document_id)`` key:
- expected and scanned      -> one line with both quantities
- expected, never scanned   -> shortage line with qty_received = 0
- scanned, not on manifest  -> pure overage line with qty_expected = 0

Every key appears exactly once, so the sum of line discrepancies always
equals total_received - total_expected.

Inputs are duck-typed: ORM rows, engine records and client-side records all
expose the same snake_case attributes.
"""

from dataclasses import dataclass, field, replace
from typing import Dict, Iterable, List, Optional, Tuple

from receiving_sync.core.ledger_keys import LedgerKey, document_from_key, ledger_key


def discrepancy(qty_received: int, qty_expected: int) -> int:
    """Received minus expected."""
    return qty_received - qty_expected


@dataclass(frozen=True)
class ExpectedTotals:
    """Manifest data for one ledger key, duplicates already summed."""

    upc: str
    document_id: Optional[str]
    item_number: str = ""
    legacy_item_number: Optional[str] = None
    description: str = ""
    qty_expected: int = 0


@dataclass(frozen=True)
class CombinedLine:
    """One row of the combined expected + received view."""

    upc: str
    document_id: Optional[str]
    qty_expected: int
    qty_received: int
    item_number: str = ""
    legacy_item_number: Optional[str] = None
    description: str = ""
    expected: bool = True
    scanned_by: Tuple[str, ...] = field(default_factory=tuple)
    scanned_by_username: Optional[str] = None
    scanned_by_name: Optional[str] = None
    last_updated: Optional[int] = None

    @property
    def discrepancy(self) -> int:
        return discrepancy(self.qty_received, self.qty_expected)

    @property
    def is_overage(self) -> bool:
        return self.discrepancy > 0

    @property
    def is_shortage(self) -> bool:
        return self.discrepancy < 0


@dataclass(frozen=True)
class DiscrepancySummary:
    """Shipment-level aggregates over a combined view."""

    total_expected: int
    total_received: int
    total_discrepancy: int
    line_count: int
    overage_count: int
    shortage_count: int
    match_count: int
    unexpected_count: int


def index_expected(expected_items: Iterable) -> Dict[LedgerKey, ExpectedTotals]:
    """Index manifest lines by ledger key, summing duplicate keys.

    The first line seen for a key provides the descriptive fields.
    Insertion order follows the manifest.
    """
    index: Dict[LedgerKey, ExpectedTotals] = {}
    for item in expected_items:
        key = ledger_key(item.upc, item.document_id)
        qty = int(item.qty_expected or 0)
        existing = index.get(key)
        if existing is None:
            index[key] = ExpectedTotals(
                upc=key[0],
                document_id=document_from_key(key[1]),
                item_number=item.item_number or "",
                legacy_item_number=item.legacy_item_number,
                description=item.description or "",
                qty_expected=qty,
            )
        else:
            index[key] = replace(existing, qty_expected=existing.qty_expected + qty)
    return index


def combine(expected_items: Iterable, ledger_records: Iterable) -> List[CombinedLine]:
    """Build the combined view: manifest order first, then unexpected scans."""
    expected = index_expected(expected_items)

    received: Dict[LedgerKey, object] = {}
    for record in ledger_records:
        received[ledger_key(record.upc, record.document_id)] = record

    lines: List[CombinedLine] = []
    for key, totals in expected.items():
        record = received.get(key)
        lines.append(
            CombinedLine(
                upc=totals.upc,
                document_id=totals.document_id,
                qty_expected=totals.qty_expected,
                qty_received=int(record.qty_received) if record is not None else 0,
                item_number=totals.item_number,
                legacy_item_number=totals.legacy_item_number,
                description=totals.description,
                expected=True,
                **_provenance(record),
            )
        )

    for key, record in received.items():
        if key in expected:
            continue
        lines.append(
            CombinedLine(
                upc=key[0],
                document_id=document_from_key(key[1]),
                qty_expected=0,
                qty_received=int(record.qty_received),
                item_number=getattr(record, "item_number", None) or "",
                legacy_item_number=getattr(record, "legacy_item_number", None),
                description=getattr(record, "description", None) or "",
                expected=False,
                **_provenance(record),
            )
        )
    return lines


def _provenance(record) -> dict:
    if record is None:
        return {}
    return {
        "scanned_by": tuple(getattr(record, "scanned_by", None) or ()),
        "scanned_by_username": getattr(record, "scanned_by_username", None),
        "scanned_by_name": getattr(record, "scanned_by_name", None),
        "last_updated": getattr(record, "last_updated", None),
    }


def summarize(lines: Iterable[CombinedLine]) -> DiscrepancySummary:
    lines = list(lines)
    total_expected = sum(line.qty_expected for line in lines)
    total_received = sum(line.qty_received for line in lines)
    return DiscrepancySummary(
        total_expected=total_expected,
        total_received=total_received,
        total_discrepancy=discrepancy(total_received, total_expected),
        line_count=len(lines),
        overage_count=sum(1 for line in lines if line.is_overage),
        shortage_count=sum(1 for line in lines if line.is_shortage),
        match_count=sum(1 for line in lines if line.discrepancy == 0),
        unexpected_count=sum(1 for line in lines if not line.expected),
    )


def only_discrepancies(lines: Iterable[CombinedLine]) -> List[CombinedLine]:
    return [line for line in lines if line.discrepancy != 0]


def only_overages(lines: Iterable[CombinedLine]) -> List[CombinedLine]:
    return [line for line in lines if line.is_overage]


def only_shortages(lines: Iterable[CombinedLine]) -> List[CombinedLine]:
    return [line for line in lines if line.is_shortage]


LINE_FILTERS = {
    "all": list,
    "discrepancies": only_discrepancies,
    "overages": only_overages,
    "shortages": only_shortages,
}


def combine_by_item_number(lines: Iterable[CombinedLine]) -> List[CombinedLine]:
    """Fold lines sharing an item number across documents.

    Quantities are summed and the document id is dropped. Lines without an
    item number (unexpected scans) are folded by UPC instead.
    """
    folded: Dict[str, CombinedLine] = {}
    for line in lines:
        key = line.item_number or f"upc:{line.upc}"
        existing = folded.get(key)
        if existing is None:
            folded[key] = replace(line, document_id=None)
            continue
        folded[key] = replace(
            existing,
            qty_expected=existing.qty_expected + line.qty_expected,
            qty_received=existing.qty_received + line.qty_received,
            expected=existing.expected or line.expected,
            scanned_by=tuple(dict.fromkeys(existing.scanned_by + line.scanned_by)),
        )
    return list(folded.values())
