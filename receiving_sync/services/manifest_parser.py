"""Packing-list parser.

Turns the text layer of a vendor packing list into manifest lines. A line
item looks like::

    100234540508-217-9Chef's Knife 8in 40092640212116

i.e. a 7-digit item number, an optional legacy number glued to it, the
description, then a 13-digit UPC (4009264021211) immediately followed by
the shipped quantity (6). PDF text extraction often wraps long descriptions, so a line that
does not parse alone is retried joined with up to four following lines.

Each "Packing List" header starts a new document; items below it carry that
document id.
"""

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import List, Optional, Tuple

logger = logging.getLogger(__name__)

ITEM_NUMBER_RE = re.compile(r"^([0-9]{7})")

# Most specific first; the first match wins.
LEGACY_NUMBER_PATTERNS = (
    re.compile(r"^([0-9]{5}-[0-9]{3}-[0-9A-Z])"),   # 40508-217-9
    re.compile(r"^([0-9]{5}-[0-9]{3})"),            # 07041-830
    re.compile(r"^([0-9]{5}-[A-Z]{1,2})(?=\s)"),    # 40151-MG
    re.compile(r"^([0-9]{4}-[0-9A-Z])"),            # 4219-R
)

UPC_LENGTH = 13
MAX_QTY_DIGITS = 4
UPC_PREFIXES = ("4", "3", "038")
MAX_CONTINUATION_LINES = 4

PACKING_LIST_MARKER = "Packing List"
PACKING_LIST_SAME_LINE_RE = re.compile(r"Packing List\s+([0-9]+)")
PACKING_LIST_NEXT_LINE_RE = re.compile(r"^([0-9]{8})$")

SKIP_MARKERS = (
    "Item Number",
    "Numéro D'item",
    "NumÃ©ro D'item",
    "Page number",
    "ZWILLING J.A. HENCKELS",
    PACKING_LIST_MARKER,
)

_ASCII_DIGITS_RE = re.compile(r"^[0-9]+$")


@dataclass
class ParsedItem:
    item_number: str
    description: str
    upc: str
    qty_shipped: int
    legacy_number: Optional[str] = None
    document_id: Optional[str] = None


@dataclass
class ParsedManifest:
    document_ids: List[str] = field(default_factory=list)
    items: List[ParsedItem] = field(default_factory=list)
    text_length: int = 0
    parsed_at: str = ""

    @property
    def total_quantity(self) -> int:
        return sum(item.qty_shipped for item in self.items)


def parse_item_line(line: str) -> Optional[ParsedItem]:
    """Parse one (possibly re-joined) item line, None when it is not an item."""
    if not line or not line.strip():
        return None

    trimmed = line.strip()
    match = ITEM_NUMBER_RE.match(trimmed)
    if not match:
        return None
    item_number = match.group(1)
    remaining = trimmed[len(item_number):]

    legacy_number = None
    for pattern in LEGACY_NUMBER_PATTERNS:
        legacy = pattern.match(remaining)
        if legacy:
            legacy_number = legacy.group(1)
            remaining = remaining[len(legacy_number):]
            break

    found = _find_upc(remaining)
    if found is None:
        return None
    upc, start, qty = found

    return ParsedItem(
        item_number=item_number,
        description=remaining[:start].strip(),
        upc=upc,
        qty_shipped=int(qty or "0"),
        legacy_number=legacy_number,
    )


def _find_upc(text: str) -> Optional[Tuple[str, int, str]]:
    """Locate the trailing UPC + quantity run.

    Returns (upc, start index, quantity digits) for the right-most UPC
    candidate, so the shortest quantity suffix wins.
    """
    for qty_digits in range(MAX_QTY_DIGITS + 1):
        start = len(text) - UPC_LENGTH - qty_digits
        if start < 0:
            break
        tail = text[start:]
        if not _ASCII_DIGITS_RE.match(tail):
            continue
        upc = tail[:UPC_LENGTH]
        if upc.startswith(UPC_PREFIXES):
            return upc, start, tail[UPC_LENGTH:]
    return None


def _parse_wrapped_item(lines: List[str], start: int) -> Tuple[Optional[ParsedItem], int]:
    """Parse an item starting at ``lines[start]``.

    Returns (item, lines consumed). A joined candidate with a positive quantity
    is preferred over one that parsed with quantity 0.
    """
    if not ITEM_NUMBER_RE.match(lines[start].strip()):
        return None, 1

    single = parse_item_line(lines[start])
    if single:
        return single, 1

    best: Optional[ParsedItem] = None
    consumed = 1
    for extra in range(1, MAX_CONTINUATION_LINES + 1):
        if start + extra >= len(lines):
            break
        parsed = parse_item_line("".join(lines[start:start + extra + 1]))
        if parsed is None:
            continue
        if best is None or (parsed.qty_shipped > 0 and best.qty_shipped == 0):
            best = parsed
            consumed = extra + 1
        if parsed.qty_shipped > 0:
            break

    return best, consumed if best else 1


def _packing_list_number(lines: List[str], index: int) -> Optional[str]:
    line = lines[index].strip()
    same_line = PACKING_LIST_SAME_LINE_RE.search(line)
    if same_line:
        return same_line.group(1)
    if index + 1 < len(lines):
        next_line = PACKING_LIST_NEXT_LINE_RE.match(lines[index + 1].strip())
        if next_line:
            return next_line.group(1)
    return None


def parse_packing_list(text: str) -> ParsedManifest:
    """Extract document ids and expected items from packing-list text."""
    lines = text.splitlines()
    document_ids: List[str] = []
    items: List[ParsedItem] = []
    current_document: Optional[str] = None

    i = 0
    while i < len(lines):
        line = lines[i].strip()

        if PACKING_LIST_MARKER in line:
            number = _packing_list_number(lines, i)
            if number:
                current_document = number
                if number not in document_ids:
                    document_ids.append(number)
                # The id on its own line is not an item line
                if not PACKING_LIST_SAME_LINE_RE.search(line):
                    i += 1
            i += 1
            continue

        if not line or any(marker in line for marker in SKIP_MARKERS):
            i += 1
            continue

        item, consumed = _parse_wrapped_item(lines, i)
        if item:
            item.document_id = current_document
            items.append(item)
        i += consumed

    manifest = ParsedManifest(
        document_ids=document_ids,
        items=items,
        text_length=len(text),
        parsed_at=datetime.now(timezone.utc).isoformat(),
    )
    logger.info(
        f"Parsed packing list: {len(items)} items, {manifest.total_quantity} units, "
        f"{len(document_ids)} documents"
    )
    return manifest
