"""Runs the reconciliation stages in order and collects a run report."""

import logging
import uuid
from datetime import datetime
from typing import Awaitable, Callable, Optional, Sequence, Union

from ..errors import StageFailure
from .control import RunControl
from .engine import ReconciliationEngine
from .models import (
    RunStatus,
    StageFailurePolicy,
    StageResult,
    StageStatus,
    SyncRunReport,
    SyncStage,
)

logger = logging.getLogger(__name__)


class SyncOrchestrator:
    """
    Sequential transactions-then-transfers run.

    Every stage gets an entry in the report. With ``ABORT`` a failed stage
    marks the remaining stages skipped; with ``CONTINUE`` they still run.
    An interrupted stage always ends the run.
    """

    def __init__(
        self,
        engine: ReconciliationEngine,
        failure_policy: Union[StageFailurePolicy, str] = StageFailurePolicy.ABORT,
    ):
        self.engine = engine
        self.failure_policy = StageFailurePolicy(failure_policy)

    def _stage_runner(self, stage: SyncStage) -> Callable[[Optional[RunControl]], Awaitable[StageResult]]:
        if stage == SyncStage.TRANSACTIONS:
            return self.engine.sync_transactions_to_payments
        return self.engine.sync_transfers_to_payouts

    async def sync_all(self, control: Optional[RunControl] = None) -> SyncRunReport:
        """Run both stages, transactions first."""
        return await self._run((SyncStage.TRANSACTIONS, SyncStage.TRANSFERS), control)

    async def sync_transactions(self, control: Optional[RunControl] = None) -> SyncRunReport:
        return await self._run((SyncStage.TRANSACTIONS,), control)

    async def sync_transfers(self, control: Optional[RunControl] = None) -> SyncRunReport:
        return await self._run((SyncStage.TRANSFERS,), control)

    async def _run(self, stages: Sequence[SyncStage], control: Optional[RunControl]) -> SyncRunReport:
        report = SyncRunReport(
            id=str(uuid.uuid4()),
            failure_policy=self.failure_policy,
            provider=self.engine.gateway.provider,
        )
        logger.info(
            f"Starting sync run {report.id}: stages={[s.value for s in stages]}, "
            f"failure_policy={self.failure_policy.value}"
        )

        stop_reason: Optional[str] = None
        for stage in stages:
            if stop_reason is not None:
                skipped = StageResult(stage=stage)
                skipped.finish(StageStatus.SKIPPED, stop_reason)
                report.stages.append(skipped)
                logger.warning(f"Skipping {stage.value} stage: {stop_reason}")
                continue

            try:
                result = await self._stage_runner(stage)(control)
            except StageFailure as e:
                result = e.result if isinstance(e.result, StageResult) else StageResult(stage=stage)
                if result.status != StageStatus.FAILED:
                    result.finish(StageStatus.FAILED, str(e))
                logger.error(f"Sync run {report.id}: {e}")
                if self.failure_policy == StageFailurePolicy.ABORT:
                    stop_reason = f"{stage.value} stage failed"

            report.stages.append(result)
            if result.status == StageStatus.INTERRUPTED:
                stop_reason = f"run interrupted during {stage.value} stage"

        report.status = self._overall_status(report)
        report.completed_at = datetime.utcnow()
        logger.info(f"Sync run {report.id} finished with status {report.status.value}")
        return report

    @staticmethod
    def _overall_status(report: SyncRunReport) -> RunStatus:
        statuses = {s.status for s in report.stages}
        if StageStatus.FAILED in statuses:
            return RunStatus.FAILED
        if StageStatus.INTERRUPTED in statuses:
            return RunStatus.INTERRUPTED
        return RunStatus.COMPLETED
