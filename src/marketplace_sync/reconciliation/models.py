"""Result models for reconciliation runs."""

import enum
from datetime import datetime
from typing import Optional, Dict, Any, List

from pydantic import BaseModel, Field


class SyncStage(str, enum.Enum):
    """The two reconciliation passes, in run order."""
    TRANSACTIONS = "transactions"
    TRANSFERS = "transfers"


class StageStatus(str, enum.Enum):
    """How a stage ended."""
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    INTERRUPTED = "interrupted"
    SKIPPED = "skipped"


class SyncOutcome(str, enum.Enum):
    """What happened to one gateway record."""
    CREATED = "created"
    UPDATED = "updated"
    UNCHANGED = "unchanged"
    SKIPPED = "skipped"
    FAILED = "failed"


class IssueKind(str, enum.Enum):
    """Why a record was skipped or failed."""
    INVALID_RECORD = "invalid_record"
    RESOLUTION = "resolution"
    PERSISTENCE = "persistence"
    UNEXPECTED = "unexpected"


class StageFailurePolicy(str, enum.Enum):
    """What the orchestrator does after a stage fails."""
    ABORT = "abort"
    CONTINUE = "continue"


class RunStatus(str, enum.Enum):
    """Overall status of a sync run."""
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"
    INTERRUPTED = "interrupted"


class RecordIssue(BaseModel):
    """A gateway record that was skipped or failed."""
    reference: str = Field(..., description="Gateway reference, or a placeholder if unreadable")
    kind: IssueKind
    message: str
    detected_at: datetime = Field(default_factory=datetime.utcnow)


class StageResult(BaseModel):
    """Counts and issues for one stage of a run."""
    stage: SyncStage
    status: StageStatus = Field(default=StageStatus.PENDING)
    started_at: datetime = Field(default_factory=datetime.utcnow)
    completed_at: Optional[datetime] = None

    # Statistics
    fetched: int = 0
    created: int = 0
    updated: int = 0
    unchanged: int = 0
    skipped: int = 0
    failed: int = 0
    orders_created: int = 0
    truncated: bool = Field(default=False, description="The gateway drain stopped early")
    vendor_policy_counts: Dict[str, int] = Field(default_factory=dict)

    issues: List[RecordIssue] = Field(default_factory=list)
    error_message: Optional[str] = None

    def record(self, outcome: SyncOutcome) -> None:
        if outcome == SyncOutcome.CREATED:
            self.created += 1
        elif outcome == SyncOutcome.UPDATED:
            self.updated += 1
        elif outcome == SyncOutcome.UNCHANGED:
            self.unchanged += 1
        elif outcome == SyncOutcome.SKIPPED:
            self.skipped += 1
        else:
            self.failed += 1

    def add_issue(self, reference: str, kind: IssueKind, message: str) -> None:
        self.issues.append(RecordIssue(reference=reference, kind=kind, message=message))

    def count_policy(self, policy: str) -> None:
        self.vendor_policy_counts[policy] = self.vendor_policy_counts.get(policy, 0) + 1

    def finish(self, status: StageStatus, error_message: Optional[str] = None) -> None:
        self.status = status
        self.error_message = error_message
        self.completed_at = datetime.utcnow()

    @property
    def processed(self) -> int:
        return self.created + self.updated + self.unchanged + self.skipped + self.failed

    @property
    def has_issues(self) -> bool:
        return self.skipped > 0 or self.failed > 0 or self.truncated

    def to_summary_dict(self) -> Dict[str, Any]:
        """Return the stage summary without per-record issues."""
        return {
            "stage": self.stage.value,
            "status": self.status.value,
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "statistics": {
                "fetched": self.fetched,
                "created": self.created,
                "updated": self.updated,
                "unchanged": self.unchanged,
                "skipped": self.skipped,
                "failed": self.failed,
                "orders_created": self.orders_created,
                "truncated": self.truncated,
                "vendor_policy_counts": dict(self.vendor_policy_counts),
            },
            "error_message": self.error_message,
        }


class SyncRunReport(BaseModel):
    """Outcome of one orchestrated run across stages."""
    id: str = Field(..., description="Run ID")
    status: RunStatus = Field(default=RunStatus.IN_PROGRESS)
    failure_policy: StageFailurePolicy = Field(default=StageFailurePolicy.ABORT)
    provider: str = Field(default="paystack")
    created_at: datetime = Field(default_factory=datetime.utcnow)
    completed_at: Optional[datetime] = None
    stages: List[StageResult] = Field(default_factory=list)

    def stage(self, stage: SyncStage) -> Optional[StageResult]:
        for result in self.stages:
            if result.stage == stage:
                return result
        return None

    @property
    def succeeded(self) -> bool:
        return self.status == RunStatus.COMPLETED

    @property
    def has_issues(self) -> bool:
        return any(s.has_issues for s in self.stages)

    @property
    def failed_stages(self) -> List[StageResult]:
        return [s for s in self.stages if s.status == StageStatus.FAILED]

    def raise_for_failure(self) -> None:
        """Re-raise the first stage failure, for callers that want exceptions.

        Raises:
            StageFailure: If any stage failed.
        """
        from ..errors import StageFailure

        failed = self.failed_stages
        if failed:
            first = failed[0]
            raise StageFailure(first.stage.value, first.error_message or "unknown error", first)

    def to_summary_dict(self) -> Dict[str, Any]:
        """Return a summary of the run without per-record issues."""
        return {
            "id": self.id,
            "status": self.status.value,
            "failure_policy": self.failure_policy.value,
            "provider": self.provider,
            "created_at": self.created_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "stages": [s.to_summary_dict() for s in self.stages],
        }

    def to_full_dict(self) -> Dict[str, Any]:
        """Return the complete report including record issues."""
        result = self.to_summary_dict()
        for summary, stage in zip(result["stages"], self.stages):
            summary["issues"] = [i.model_dump(mode="json") for i in stage.issues]
        return result
