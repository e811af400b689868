"""Composite ledger key helpers.

A ledger record is identified by ``(upc, document_id)`` within a shipment.
A missing document id is stored as the empty string so the composite unique
key can be enforced by the database (NULLs never collide in a unique index).
"""

from typing import Optional, Tuple

LedgerKey = Tuple[str, str]

NO_DOCUMENT = ""


def document_key(document_id: Optional[str]) -> str:
    """Normalize a document id for storage and key comparison."""
    if document_id is None:
        return NO_DOCUMENT
    return str(document_id).strip()


def document_from_key(document_key_value: Optional[str]) -> Optional[str]:
    """Inverse of ``document_key``: the empty key is reported as ``None``."""
    if not document_key_value:
        return None
    return document_key_value


def ledger_key(upc: str, document_id: Optional[str]) -> LedgerKey:
    return (str(upc).strip(), document_key(document_id))
