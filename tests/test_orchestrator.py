"""Tests for stage orchestration and run reports."""

from unittest.mock import AsyncMock, patch

import pytest
from sqlalchemy import select, func

from marketplace_sync.database import Payment, Payout
from marketplace_sync.errors import StageFailure
from marketplace_sync.reconciliation import (
    EntityResolver,
    ReconciliationEngine,
    RunControl,
    RunStatus,
    StageFailurePolicy,
    StageStatus,
    SyncOrchestrator,
    SyncStage,
)

from conftest import make_transaction, make_transfer


@pytest.fixture
def engine(store, gateway, marketplace):
    gateway.add_transaction(make_transaction("O_1", txn_id=1))
    gateway.add_transaction(make_transaction("O_2", txn_id=2, email="stranger@gmail.com"))
    gateway.add_transfer(make_transfer("OT_1"))
    return ReconciliationEngine(store, gateway, EntityResolver(store))


def failing_transactions_stage(engine):
    """Patch the transaction stage to fail outside per-record handling."""
    return patch.object(
        engine,
        "sync_transactions_to_payments",
        AsyncMock(side_effect=StageFailure("transactions", "users table unreachable")),
    )


class TestSyncOrchestrator:
    """Tests for SyncOrchestrator."""

    async def test_sync_all_runs_both_stages_in_order(self, engine, db_session):
        report = await SyncOrchestrator(engine).sync_all()

        assert report.status == RunStatus.COMPLETED
        assert report.succeeded
        assert [s.stage for s in report.stages] == [SyncStage.TRANSACTIONS, SyncStage.TRANSFERS]
        transactions = report.stage(SyncStage.TRANSACTIONS)
        transfers = report.stage(SyncStage.TRANSFERS)
        assert transactions.created == 1
        assert transactions.skipped == 1
        assert transfers.created == 1
        assert report.has_issues is True
        assert report.completed_at is not None
        assert report.provider == "simulator"

        payouts = (await db_session.execute(select(func.count()).select_from(Payout))).scalar_one()
        assert payouts == 1

    async def test_abort_policy_skips_later_stages(self, engine, db_session):
        with failing_transactions_stage(engine):
            report = await SyncOrchestrator(engine, StageFailurePolicy.ABORT).sync_all()

        assert report.status == RunStatus.FAILED
        assert report.stage(SyncStage.TRANSACTIONS).status == StageStatus.FAILED
        transfers = report.stage(SyncStage.TRANSFERS)
        assert transfers.status == StageStatus.SKIPPED
        assert "transactions stage failed" in transfers.error_message
        payouts = (await db_session.execute(select(func.count()).select_from(Payout))).scalar_one()
        assert payouts == 0

    async def test_continue_policy_runs_later_stages(self, engine, db_session):
        with failing_transactions_stage(engine):
            report = await SyncOrchestrator(engine, "continue").sync_all()

        assert report.status == RunStatus.FAILED
        assert report.failure_policy == StageFailurePolicy.CONTINUE
        assert report.stage(SyncStage.TRANSFERS).status == StageStatus.COMPLETED
        assert report.stage(SyncStage.TRANSFERS).created == 1

    async def test_stage_failure_keeps_partial_result(self, engine, store):
        with patch.object(store, "get_users", AsyncMock(side_effect=RuntimeError("db down"))):
            report = await SyncOrchestrator(engine).sync_all()

        failed = report.stage(SyncStage.TRANSACTIONS)
        assert failed.status == StageStatus.FAILED
        assert failed.fetched == 2
        assert "db down" in failed.error_message

    async def test_raise_for_failure(self, engine):
        with failing_transactions_stage(engine):
            report = await SyncOrchestrator(engine).sync_all()

        with pytest.raises(StageFailure) as exc_info:
            report.raise_for_failure()
        assert exc_info.value.stage == "transactions"

    async def test_raise_for_failure_noop_on_success(self, engine):
        report = await SyncOrchestrator(engine).sync_transfers()

        report.raise_for_failure()
        assert len(report.stages) == 1

    async def test_interruption_stops_run_under_continue(self, engine, db_session):
        control = RunControl()
        control.cancel("maintenance window")

        report = await SyncOrchestrator(engine, StageFailurePolicy.CONTINUE).sync_all(control)

        assert report.status == RunStatus.INTERRUPTED
        assert report.stage(SyncStage.TRANSACTIONS).status == StageStatus.INTERRUPTED
        assert report.stage(SyncStage.TRANSFERS).status == StageStatus.SKIPPED
        payments = (await db_session.execute(select(func.count()).select_from(Payment))).scalar_one()
        assert payments == 0

    async def test_deadline_interrupts_run(self, engine):
        report = await SyncOrchestrator(engine).sync_all(RunControl(deadline_seconds=0))

        assert report.status == RunStatus.INTERRUPTED
        assert "deadline" in report.stage(SyncStage.TRANSACTIONS).error_message

    async def test_single_stage_entry_points(self, engine):
        orchestrator = SyncOrchestrator(engine)

        transactions = await orchestrator.sync_transactions()
        transfers = await orchestrator.sync_transfers()

        assert [s.stage for s in transactions.stages] == [SyncStage.TRANSACTIONS]
        assert [s.stage for s in transfers.stages] == [SyncStage.TRANSFERS]
        assert transactions.id != transfers.id

    async def test_summary_and_full_dicts(self, engine):
        report = await SyncOrchestrator(engine).sync_all()

        summary = report.to_summary_dict()
        full = report.to_full_dict()

        assert summary["status"] == "completed"
        assert summary["stages"][0]["statistics"]["skipped"] == 1
        assert "issues" not in summary["stages"][0]
        assert full["stages"][0]["issues"][0]["reference"] == "O_2"
        assert full["stages"][0]["issues"][0]["kind"] == "resolution"
        assert full["stages"][1]["issues"] == []
