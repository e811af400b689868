# Services module

from receiving_sync.services.discrepancy import (
    CombinedLine,
    DiscrepancySummary,
    combine,
    combine_by_item_number,
    discrepancy,
    summarize,
)
from receiving_sync.services.manifest_parser import ParsedManifest, parse_packing_list
from receiving_sync.services.manifest_store import ManifestStore
from receiving_sync.services.reconciliation_engine import (
    LedgerRecord,
    MergeResult,
    ReconciliationEngine,
)
