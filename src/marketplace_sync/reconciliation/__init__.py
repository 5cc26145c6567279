"""Reconciliation of the gateway ledgers into marketplace records.

This module merges Paystack transactions into payments (and, where needed,
orders) and Paystack transfers into vendor payouts.

Features:
- Per-record fault isolation with one store transaction per record
- Buyer, vendor and order resolution with explicit vendor policies
- Sequential stage orchestration with an abort or continue policy
- Per-run deadline and cooperative cancellation
- JSON, text and CSV run reports
"""

from .control import RunControl
from .models import (
    SyncStage,
    StageStatus,
    SyncOutcome,
    IssueKind,
    StageFailurePolicy,
    RunStatus,
    RecordIssue,
    StageResult,
    SyncRunReport,
)
from .resolver import (
    VendorResolutionPolicy,
    VendorResolution,
    UserSnapshot,
    EntityResolver,
    to_major_units,
)
from .engine import ReconciliationEngine
from .orchestrator import SyncOrchestrator
from .service import SyncService
from .report import ReportGenerator

__all__ = [
    # Models
    "SyncStage",
    "StageStatus",
    "SyncOutcome",
    "IssueKind",
    "StageFailurePolicy",
    "RunStatus",
    "RecordIssue",
    "StageResult",
    "SyncRunReport",
    # Resolution
    "VendorResolutionPolicy",
    "VendorResolution",
    "UserSnapshot",
    "EntityResolver",
    "to_major_units",
    # Core Components
    "RunControl",
    "ReconciliationEngine",
    "SyncOrchestrator",
    "SyncService",
    "ReportGenerator",
]
