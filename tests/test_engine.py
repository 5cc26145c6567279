"""Tests for the reconciliation engine."""

from decimal import Decimal
from unittest.mock import AsyncMock, patch

import pytest
from sqlalchemy import select, func

from marketplace_sync.database import Order, Payment, Payout, OrderInput
from marketplace_sync.errors import PersistenceError, StageFailure
from marketplace_sync.reconciliation import (
    EntityResolver,
    IssueKind,
    ReconciliationEngine,
    RunControl,
    StageStatus,
)

from conftest import (
    BUYER_EMAIL,
    VENDOR_A_SUBACCOUNT,
    VENDOR_B_EMAIL,
    VENDOR_B_SUBACCOUNT,
    make_transaction,
    make_transfer,
)


@pytest.fixture
def engine(store, gateway, marketplace):
    """Engine over the seeded marketplace and the simulated gateway."""
    return ReconciliationEngine(store, gateway, EntityResolver(store))


async def count(db_session, model) -> int:
    result = await db_session.execute(select(func.count()).select_from(model))
    return result.scalar_one()


async def payment_for(db_session, reference: str) -> Payment:
    result = await db_session.execute(
        select(Payment).where(Payment.paystack_reference == reference)
    )
    return result.scalar_one()


class TestTransactionSync:
    """Tests for syncing transactions into payments."""

    async def test_creates_payment_with_synthesized_order(self, engine, gateway, db_session, marketplace):
        """A transaction without order metadata gets a pending order from the vendor's first product."""
        gateway.add_transaction(make_transaction(
            "T_100",
            amount=8000,
            subaccount={"subaccount_code": VENDOR_A_SUBACCOUNT},
            metadata={"delivery_address": "Unity Hall, Room 12", "phone": "0559876543"},
        ))

        result = await engine.sync_transactions_to_payments()

        assert result.status == StageStatus.COMPLETED
        assert result.fetched == 1
        assert result.created == 1
        assert result.orders_created == 1
        assert result.vendor_policy_counts == {"subaccount": 1}

        payment = await payment_for(db_session, "T_100")
        assert payment.reference == "PS_T_100"
        assert payment.vendor_id == marketplace["vendor_a_id"]
        assert payment.buyer_id == marketplace["buyer_id"]
        assert payment.payment_method == "mobile_money"
        assert payment.currency == "GHS"
        assert payment.status == "success"
        assert payment.paid_at is not None and payment.paid_at.tzinfo is None

        order = await db_session.get(Order, payment.order_id)
        assert order.product_id == marketplace["product_id"]
        assert order.quantity == 1
        assert order.total_amount == Decimal("80.00")
        assert order.status == "pending"
        assert order.shipping_address == "Unity Hall, Room 12"
        assert order.phone == "0559876543"
        assert order.notes == "Synced from Paystack transaction T_100"

    async def test_create_uses_metadata_vendor_and_order(self, engine, gateway, store, db_session, marketplace):
        """Metadata vendor and order win and no order is synthesized."""
        order = await store.create_order(OrderInput(
            buyer_id=marketplace["buyer_id"],
            vendor_id=marketplace["vendor_b_id"],
            product_id=marketplace["product_id"],
            total_amount=Decimal("50.00"),
        ))
        await db_session.commit()
        order_id = order.id

        gateway.add_transaction(make_transaction(
            "T_101",
            subaccount={"subaccount_code": VENDOR_A_SUBACCOUNT},
            metadata={
                "vendor_id": marketplace["vendor_b_id"],
                "order_id": order_id,
                "mobile_number": "0244000111",
                "network_provider": "MTN",
            },
        ))

        result = await engine.sync_transactions_to_payments()

        assert result.created == 1
        assert result.orders_created == 0
        assert result.vendor_policy_counts == {"metadata": 1}
        payment = await payment_for(db_session, "T_101")
        assert payment.vendor_id == marketplace["vendor_b_id"]
        assert payment.order_id == order_id
        assert payment.mobile_number == "0244000111"
        assert payment.network_provider == "MTN"
        assert await count(db_session, Order) == 1

    async def test_amount_converted_to_major_units(self, engine, gateway, db_session):
        gateway.add_transaction(make_transaction("T_102", amount=12345))

        await engine.sync_transactions_to_payments()

        payment = await payment_for(db_session, "T_102")
        assert payment.amount == Decimal("123.45")

    async def test_second_run_is_idempotent(self, engine, gateway, db_session):
        """Re-running over an unchanged ledger writes nothing new."""
        gateway.add_transaction(make_transaction("T_103", txn_id=1))
        gateway.add_transaction(make_transaction("T_104", txn_id=2))
        gateway.add_transaction(make_transaction("T_105", txn_id=3))

        first = await engine.sync_transactions_to_payments()
        second = await engine.sync_transactions_to_payments()

        assert first.created == 3
        assert second.created == 0
        assert second.unchanged == 3
        assert second.orders_created == 0
        assert await count(db_session, Payment) == 3
        assert await count(db_session, Order) == 3

    async def test_status_change_updates_only_status_fields(self, engine, gateway, db_session):
        gateway.add_transaction(make_transaction("T_106", status="pending", amount=5000))
        await engine.sync_transactions_to_payments()
        before = await payment_for(db_session, "T_106")
        order_id, amount, reference = before.order_id, before.amount, before.reference
        vendor_id, buyer_id = before.vendor_id, before.buyer_id

        gateway.set_status(
            "transaction", "T_106", "success",
            amount=999999,
            gateway_response="Successful",
            customer={"email": VENDOR_B_EMAIL},
            subaccount={"subaccount_code": VENDOR_B_SUBACCOUNT},
        )
        result = await engine.sync_transactions_to_payments()

        assert result.updated == 1
        assert result.created == 0
        after = await payment_for(db_session, "T_106")
        await db_session.refresh(after)
        assert after.status == "success"
        assert after.gateway_response == "Successful"
        assert after.amount == amount
        assert after.order_id == order_id
        assert after.reference == reference
        assert after.vendor_id == vendor_id
        assert after.buyer_id == buyer_id

    async def test_status_change_without_paid_at_keeps_stored_timestamp(self, engine, gateway, db_session):
        gateway.add_transaction(make_transaction("T_106B", status="success"))
        await engine.sync_transactions_to_payments()
        before = await payment_for(db_session, "T_106B")
        paid_at = before.paid_at
        assert paid_at is not None

        gateway.set_status("transaction", "T_106B", "reversed", paid_at=None, gateway_response=None)
        result = await engine.sync_transactions_to_payments()

        assert result.updated == 1
        after = await payment_for(db_session, "T_106B")
        await db_session.refresh(after)
        assert after.status == "reversed"
        assert after.paid_at == paid_at
        assert after.gateway_response == "Approved"

    async def test_duplicate_sighting_in_one_drain_converges(self, engine, gateway, db_session):
        """The same reference seen twice in one run yields a single payment."""
        gateway.add_transaction(make_transaction("T_107", status="pending", txn_id=1))
        gateway.add_transaction(make_transaction("T_107", status="success", txn_id=1))

        result = await engine.sync_transactions_to_payments()

        assert result.created == 1
        assert result.updated == 1
        assert await count(db_session, Payment) == 1
        payment = await payment_for(db_session, "T_107")
        assert payment.status == "success"

    async def test_unknown_buyer_is_skipped_and_batch_continues(self, engine, gateway, db_session):
        gateway.add_transaction(make_transaction("T_108", email="stranger@gmail.com", txn_id=1))
        gateway.add_transaction(make_transaction("T_109", txn_id=2))

        result = await engine.sync_transactions_to_payments()

        assert result.status == StageStatus.COMPLETED
        assert result.skipped == 1
        assert result.created == 1
        assert result.issues[0].reference == "T_108"
        assert result.issues[0].kind == IssueKind.RESOLUTION
        assert await count(db_session, Payment) == 1
        assert await count(db_session, Order) == 1

    async def test_buyer_email_match_is_case_sensitive(self, engine, gateway):
        gateway.add_transaction(make_transaction("T_110", email="AMA.BUYER@st.knust.edu.gh"))

        result = await engine.sync_transactions_to_payments()

        assert result.skipped == 1

    async def test_fallback_vendor_is_counted(self, engine, gateway, db_session, marketplace):
        gateway.add_transaction(make_transaction("T_111", subaccount={"subaccount_code": "ACCT_unknown"}))

        result = await engine.sync_transactions_to_payments()

        assert result.vendor_policy_counts == {"fallback_first": 1}
        payment = await payment_for(db_session, "T_111")
        assert payment.vendor_id == marketplace["vendor_a_id"]

    async def test_vendor_without_products_uses_platform_product(self, engine, gateway, db_session, marketplace):
        gateway.add_transaction(make_transaction("T_112", subaccount={"subaccount_code": VENDOR_B_SUBACCOUNT}))

        result = await engine.sync_transactions_to_payments()

        assert result.created == 1
        payment = await payment_for(db_session, "T_112")
        order = await db_session.get(Order, payment.order_id)
        assert payment.vendor_id == marketplace["vendor_b_id"]
        assert order.vendor_id == marketplace["vendor_b_id"]
        assert order.product_id == marketplace["product_id"]

    async def test_no_products_skips_transaction(self, store, gateway, db_session, marketplace):
        engine = ReconciliationEngine(store, gateway)
        gateway.add_transaction(make_transaction("T_113"))

        with patch.object(store, "get_products", AsyncMock(return_value=[])), \
                patch.object(store, "get_products_by_vendor", AsyncMock(return_value=[])):
            result = await engine.sync_transactions_to_payments()

        assert result.skipped == 1
        assert "order" in result.issues[0].message
        assert await count(db_session, Payment) == 0

    async def test_invalid_record_counted_as_failed(self, engine, gateway, db_session):
        gateway.add_transaction({"id": 1, "reference": "T_114", "status": "success"})
        gateway.add_transaction(make_transaction("T_115", txn_id=2))

        result = await engine.sync_transactions_to_payments()

        assert result.failed == 1
        assert result.created == 1
        assert result.issues[0].reference == "T_114"
        assert result.issues[0].kind == IssueKind.INVALID_RECORD

    async def test_persistence_failure_rolls_back_record_only(self, engine, gateway, store, db_session):
        """A failed insert leaves neither payment nor synthesized order behind."""
        gateway.add_transaction(make_transaction("T_116", txn_id=1))
        gateway.add_transaction(make_transaction("T_117", txn_id=2))
        real_create = store.create_payment

        async def flaky_create(data):
            if data.paystack_reference == "T_116":
                raise PersistenceError("disk full")
            return await real_create(data)

        with patch.object(store, "create_payment", side_effect=flaky_create):
            result = await engine.sync_transactions_to_payments()

        assert result.failed == 1
        assert result.created == 1
        assert result.issues[0].kind == IssueKind.PERSISTENCE
        assert await count(db_session, Payment) == 1
        assert await count(db_session, Order) == 1

    async def test_concurrent_insert_is_retried_as_update(self, engine, gateway, store, db_session):
        """A unique violation from an overlapping run converges to an update."""
        gateway.add_transaction(make_transaction("T_118", status="pending"))
        await engine.sync_transactions_to_payments()
        gateway.set_status("transaction", "T_118", "success")

        real_lookup = store.get_payment_by_paystack_reference
        calls = []

        async def stale_lookup(reference):
            calls.append(reference)
            if len(calls) == 1:
                # The other run's row is not visible to the first lookup
                return None
            return await real_lookup(reference)

        with patch.object(store, "get_payment_by_paystack_reference", side_effect=stale_lookup):
            result = await engine.sync_transactions_to_payments()

        assert result.updated == 1
        assert result.failed == 0
        assert result.orders_created == 0
        assert await count(db_session, Payment) == 1
        assert await count(db_session, Order) == 1
        payment = await payment_for(db_session, "T_118")
        assert payment.status == "success"

    async def test_user_load_failure_raises_stage_failure(self, engine, gateway, store):
        gateway.add_transaction(make_transaction("T_119"))

        with patch.object(store, "get_users", AsyncMock(side_effect=RuntimeError("db down"))):
            with pytest.raises(StageFailure) as exc_info:
                await engine.sync_transactions_to_payments()

        assert exc_info.value.stage == "transactions"
        assert exc_info.value.result.status == StageStatus.FAILED
        assert exc_info.value.result.fetched == 1

    async def test_truncated_drain_keeps_partial_data(self, engine, gateway, db_session):
        for i in range(5):
            gateway.add_transaction(make_transaction(f"T_12{i}", txn_id=i))
        gateway.fail_page("transaction", 2)

        result = await engine.sync_transactions_to_payments()

        assert result.status == StageStatus.COMPLETED
        assert result.truncated is True
        assert result.fetched == 2
        assert result.created == 2
        assert "truncated" in result.error_message
        assert await count(db_session, Payment) == 2

    async def test_cancel_interrupts_between_records(self, engine, gateway, db_session):
        for i in range(3):
            gateway.add_transaction(make_transaction(f"T_13{i}", txn_id=i))
        control = RunControl()
        real_reconcile = engine._reconcile_transaction

        async def reconcile_then_cancel(txn):
            applied = await real_reconcile(txn)
            control.cancel("operator stop")
            return applied

        with patch.object(engine, "_reconcile_transaction", side_effect=reconcile_then_cancel):
            result = await engine.sync_transactions_to_payments(control)

        assert result.status == StageStatus.INTERRUPTED
        assert result.created == 1
        assert "operator stop" in result.error_message
        assert await count(db_session, Payment) == 1

    async def test_expired_deadline_interrupts_before_fetch(self, engine, gateway):
        gateway.add_transaction(make_transaction("T_140"))
        control = RunControl(deadline_seconds=0)

        result = await engine.sync_transactions_to_payments(control)

        assert result.status == StageStatus.INTERRUPTED
        assert result.fetched == 0
        assert gateway.requests == []


class TestTransferSync:
    """Tests for syncing transfers into payouts."""

    async def test_creates_payout(self, engine, gateway, db_session, marketplace):
        gateway.add_transfer(make_transfer("TRF_1", amount=20050))

        result = await engine.sync_transfers_to_payouts()

        assert result.created == 1
        assert result.vendor_policy_counts == {"email_only": 1}
        payout = (await db_session.execute(select(Payout))).scalar_one()
        assert payout.transaction_id == "TRF_1"
        assert payout.vendor_id == marketplace["vendor_a_id"]
        assert payout.amount == Decimal("200.50")
        assert payout.momo_number == "0241234567"
        assert payout.status == "success"

    async def test_missing_account_number_stores_empty_momo(self, engine, gateway, db_session):
        gateway.add_transfer(make_transfer("TRF_2", account_number=None))

        await engine.sync_transfers_to_payouts()

        payout = (await db_session.execute(select(Payout))).scalar_one()
        assert payout.momo_number == ""

    async def test_status_update_and_idempotence(self, engine, gateway, db_session):
        gateway.add_transfer(make_transfer("TRF_3", status="pending"))
        await engine.sync_transfers_to_payouts()

        gateway.set_status("transfer", "TRF_3", "success", amount=1)
        updated = await engine.sync_transfers_to_payouts()
        again = await engine.sync_transfers_to_payouts()

        assert updated.updated == 1
        assert again.unchanged == 1
        payout = (await db_session.execute(select(Payout))).scalar_one()
        await db_session.refresh(payout)
        assert payout.status == "success"
        assert payout.amount == Decimal("200.00")
        assert await count(db_session, Payout) == 1

    async def test_concurrent_payout_insert_is_retried_as_update(self, engine, gateway, store, db_session):
        """A payout another run inserted first converges to an update."""
        gateway.add_transfer(make_transfer("TRF_7", status="pending"))
        await engine.sync_transfers_to_payouts()
        gateway.set_status("transfer", "TRF_7", "success")

        real_lookup = store.get_payout_by_transaction_id
        calls = []

        async def stale_lookup(reference):
            calls.append(reference)
            if len(calls) == 1:
                return None
            return await real_lookup(reference)

        with patch.object(store, "get_payout_by_transaction_id", side_effect=stale_lookup):
            result = await engine.sync_transfers_to_payouts()

        assert len(calls) == 2
        assert result.updated == 1
        assert result.created == 0
        assert result.failed == 0
        assert await count(db_session, Payout) == 1
        payout = (await db_session.execute(select(Payout))).scalar_one()
        await db_session.refresh(payout)
        assert payout.status == "success"

    async def test_unknown_recipient_is_skipped(self, engine, gateway, db_session):
        gateway.add_transfer(make_transfer("TRF_4", email="someone@else.com", transfer_id=1))
        gateway.add_transfer(make_transfer("TRF_5", email=VENDOR_B_EMAIL, transfer_id=2))

        result = await engine.sync_transfers_to_payouts()

        assert result.skipped == 1
        assert result.created == 1
        assert result.issues[0].reference == "TRF_4"

    async def test_buyer_email_is_not_a_vendor(self, engine, gateway):
        """Transfers only match vendor accounts."""
        gateway.add_transfer(make_transfer("TRF_6", email=BUYER_EMAIL))

        result = await engine.sync_transfers_to_payouts()

        assert result.skipped == 1
        assert result.vendor_policy_counts == {}
