"""Client-side receiving state: immutable snapshots and pure reducers.

The handheld keeps an optimistic local tier that is always writable, even
offline. Every change is an action reduced into a new frozen ``ClientState``;
nothing mutates a snapshot in place. Server responses enter the same way,
as ``MergeServerRecords`` / ``LoadShipmentsFromServer`` actions.

Merge rule for server records: the server wins on quantity for every key it
reports; local records the server has not seen yet are kept.
"""

from dataclasses import dataclass, field, replace
from typing import Callable, Dict, Optional, Sequence, Tuple

from receiving_sync.core.ledger_keys import LedgerKey, ledger_key
from receiving_sync.models.shipment import ShipmentStatus
from receiving_sync.services.discrepancy import discrepancy, index_expected


@dataclass(frozen=True)
class ExpectedLine:
    upc: str
    qty_expected: int
    item_number: str = ""
    legacy_item_number: Optional[str] = None
    description: str = ""
    document_id: Optional[str] = None


@dataclass(frozen=True)
class LocalRecord:
    upc: str
    qty_received: int
    document_id: Optional[str] = None
    qty_expected: int = 0
    item_number: str = ""
    legacy_item_number: Optional[str] = None
    description: str = ""
    scanned_by: Tuple[str, ...] = ()
    scanned_by_username: Optional[str] = None
    scanned_by_name: Optional[str] = None
    last_updated: Optional[int] = None

    @property
    def key(self) -> LedgerKey:
        return ledger_key(self.upc, self.document_id)

    @property
    def discrepancy(self) -> int:
        return discrepancy(self.qty_received, self.qty_expected)


@dataclass(frozen=True)
class LocalShipment:
    id: str
    date: str
    document_ids: Tuple[str, ...] = ()
    expected_items: Tuple[ExpectedLine, ...] = ()
    received_items: Tuple[LocalRecord, ...] = ()
    status: ShipmentStatus = ShipmentStatus.IN_PROGRESS
    created_at: Optional[int] = None
    completed_at: Optional[int] = None

    @property
    def is_completed(self) -> bool:
        return self.status == ShipmentStatus.COMPLETED

    def record(self, upc: str, document_id: Optional[str] = None) -> Optional[LocalRecord]:
        key = ledger_key(upc, document_id)
        for item in self.received_items:
            if item.key == key:
                return item
        return None


@dataclass(frozen=True)
class ClientState:
    """``current`` is the shipment being received; ``shipments`` is history, newest first."""

    shipments: Tuple[LocalShipment, ...] = ()
    current: Optional[LocalShipment] = None

    def find(self, shipment_id: str) -> Optional[LocalShipment]:
        if self.current is not None and self.current.id == shipment_id:
            return self.current
        for shipment in self.shipments:
            if shipment.id == shipment_id:
                return shipment
        return None


# ==================== Actions ====================


@dataclass(frozen=True)
class CreateShipment:
    shipment: LocalShipment


@dataclass(frozen=True)
class AddReceivedItem:
    upc: str
    qty: int
    document_id: Optional[str] = None
    device_id: Optional[str] = None
    username: Optional[str] = None
    name: Optional[str] = None
    at: Optional[int] = None


@dataclass(frozen=True)
class UpdateReceivedQuantity:
    upc: str
    qty: int
    document_id: Optional[str] = None
    at: Optional[int] = None


@dataclass(frozen=True)
class CompleteShipment:
    completed_at: int


@dataclass(frozen=True)
class CancelShipment:
    pass


@dataclass(frozen=True)
class LoadShipment:
    shipment_id: str


@dataclass(frozen=True)
class DeleteShipment:
    shipment_id: str


@dataclass(frozen=True)
class LoadPersistedShipments:
    shipments: Tuple[LocalShipment, ...]


@dataclass(frozen=True)
class LoadShipmentsFromServer:
    shipments: Tuple[LocalShipment, ...]


@dataclass(frozen=True)
class MergeServerRecords:
    shipment_id: str
    records: Tuple[LocalRecord, ...] = field(default_factory=tuple)


# ==================== Helpers ====================


def resolve_document(shipment: LocalShipment, upc: str, document_id: Optional[str]) -> Optional[str]:
    """Pick the document a scan counts against.

    An explicit document id is kept. Otherwise the first manifest document
    listing the UPC is used, so the local key matches the server key.
    """
    if document_id:
        return document_id
    upc = upc.strip()
    for line in shipment.expected_items:
        if line.upc == upc:
            return line.document_id
    return None


def annotate(shipment: LocalShipment, record: LocalRecord) -> LocalRecord:
    """Fill manifest fields of ``record`` from the shipment's expected items."""
    totals = index_expected(shipment.expected_items).get(record.key)
    if totals is None:
        return replace(record, qty_expected=0)
    return replace(
        record,
        qty_expected=totals.qty_expected,
        item_number=totals.item_number,
        legacy_item_number=totals.legacy_item_number,
        description=totals.description,
    )


def _replace_record(shipment: LocalShipment, record: LocalRecord) -> LocalShipment:
    items = list(shipment.received_items)
    for index, existing in enumerate(items):
        if existing.key == record.key:
            items[index] = record
            break
    else:
        items.append(record)
    return replace(shipment, received_items=tuple(items))


def _update_shipment(state: ClientState, shipment_id: str, fn: Callable[[LocalShipment], LocalShipment]) -> ClientState:
    current = state.current
    if current is not None and current.id == shipment_id:
        current = fn(current)
    shipments = tuple(fn(s) if s.id == shipment_id else s for s in state.shipments)
    return replace(state, current=current, shipments=shipments)


def _newest_first(shipments) -> Tuple[LocalShipment, ...]:
    return tuple(sorted(shipments, key=lambda s: s.created_at or 0, reverse=True))


# ==================== Reducers ====================


def _create_shipment(state: ClientState, action: CreateShipment) -> ClientState:
    return replace(state, current=action.shipment)


def _add_received_item(state: ClientState, action: AddReceivedItem) -> ClientState:
    shipment = state.current
    if shipment is None or shipment.is_completed or action.qty <= 0:
        return state

    document_id = resolve_document(shipment, action.upc, action.document_id)
    existing = shipment.record(action.upc, document_id)
    if existing is None:
        record = annotate(
            shipment,
            LocalRecord(upc=action.upc.strip(), qty_received=action.qty, document_id=document_id),
        )
    else:
        record = replace(existing, qty_received=existing.qty_received + action.qty)

    scanned_by = record.scanned_by
    if action.device_id and action.device_id not in scanned_by:
        scanned_by = scanned_by + (action.device_id,)
    record = replace(
        record,
        scanned_by=scanned_by,
        scanned_by_username=action.username or record.scanned_by_username,
        scanned_by_name=action.name or record.scanned_by_name,
        last_updated=action.at or record.last_updated,
    )
    return replace(state, current=_replace_record(shipment, record))


def _update_received_quantity(state: ClientState, action: UpdateReceivedQuantity) -> ClientState:
    shipment = state.current
    if shipment is None or shipment.is_completed or action.qty < 0:
        return state

    document_id = resolve_document(shipment, action.upc, action.document_id)
    existing = shipment.record(action.upc, document_id)
    if existing is None:
        record = annotate(
            shipment,
            LocalRecord(upc=action.upc.strip(), qty_received=action.qty, document_id=document_id),
        )
    else:
        record = replace(existing, qty_received=action.qty)
    record = replace(record, last_updated=action.at or record.last_updated)
    return replace(state, current=_replace_record(shipment, record))


def _complete_shipment(state: ClientState, action: CompleteShipment) -> ClientState:
    shipment = state.current
    if shipment is None:
        return state
    completed = replace(
        shipment,
        status=ShipmentStatus.COMPLETED,
        completed_at=shipment.completed_at or action.completed_at,
    )
    history = tuple(s for s in state.shipments if s.id != completed.id)
    return ClientState(shipments=(completed,) + history, current=None)


def _cancel_shipment(state: ClientState, action: CancelShipment) -> ClientState:
    return replace(state, current=None)


def _load_shipment(state: ClientState, action: LoadShipment) -> ClientState:
    for shipment in state.shipments:
        if shipment.id == action.shipment_id:
            return replace(state, current=shipment)
    return state


def _delete_shipment(state: ClientState, action: DeleteShipment) -> ClientState:
    current = state.current
    if current is not None and current.id == action.shipment_id:
        current = None
    return ClientState(
        shipments=tuple(s for s in state.shipments if s.id != action.shipment_id),
        current=current,
    )


def _load_persisted_shipments(state: ClientState, action: LoadPersistedShipments) -> ClientState:
    return replace(state, shipments=_newest_first(action.shipments))


def _load_shipments_from_server(state: ClientState, action: LoadShipmentsFromServer) -> ClientState:
    """Merge server history into local history.

    Server lifecycle fields win. Local received items are kept for shipments
    already known locally; local-only shipments stay.
    """
    merged: Dict[str, LocalShipment] = {s.id: s for s in state.shipments}
    for remote in action.shipments:
        local = merged.get(remote.id)
        if local is None:
            merged[remote.id] = remote
            continue
        merged[remote.id] = replace(
            local,
            status=remote.status,
            completed_at=remote.completed_at,
            date=remote.date or local.date,
            created_at=local.created_at or remote.created_at,
        )
    return replace(state, shipments=_newest_first(merged.values()))


def _merge_server_records(state: ClientState, action: MergeServerRecords) -> ClientState:
    def merge(shipment: LocalShipment) -> LocalShipment:
        for remote in action.records:
            local = shipment.record(remote.upc, remote.document_id)
            if local is not None:
                remote = replace(
                    remote,
                    scanned_by=tuple(dict.fromkeys(remote.scanned_by + local.scanned_by)),
                )
            shipment = _replace_record(shipment, annotate(shipment, remote))
        return shipment

    return _update_shipment(state, action.shipment_id, merge)


_REDUCERS: Dict[type, Callable] = {
    CreateShipment: _create_shipment,
    AddReceivedItem: _add_received_item,
    UpdateReceivedQuantity: _update_received_quantity,
    CompleteShipment: _complete_shipment,
    CancelShipment: _cancel_shipment,
    LoadShipment: _load_shipment,
    DeleteShipment: _delete_shipment,
    LoadPersistedShipments: _load_persisted_shipments,
    LoadShipmentsFromServer: _load_shipments_from_server,
    MergeServerRecords: _merge_server_records,
}


def reduce(state: ClientState, action) -> ClientState:
    """Apply one action, returning a new snapshot."""
    try:
        reducer = _REDUCERS[type(action)]
    except KeyError:
        raise TypeError(f"Unknown client action: {type(action).__name__}") from None
    return reducer(state, action)


def reduce_all(state: ClientState, actions: Sequence) -> ClientState:
    for action in actions:
        state = reduce(state, action)
    return state
