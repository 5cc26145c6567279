"""Merges the gateway ledgers into marketplace payments and payouts."""

import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional

from pydantic import ValidationError

from ..database.schemas import PaymentInput, PaymentPatch, PayoutInput, PayoutPatch
from ..database.store import MarketplaceStore
from ..errors import (
    DuplicateReferenceError,
    EntityResolutionFailure,
    PersistenceError,
    StageFailure,
    SyncInterrupted,
)
from ..gateway.base import GatewayClientBase
from ..gateway.models import GatewayResource, GatewayTransaction, GatewayTransfer
from .control import RunControl
from .models import IssueKind, StageResult, StageStatus, SyncOutcome, SyncStage
from .resolver import EntityResolver, VendorResolutionPolicy, to_major_units

logger = logging.getLogger(__name__)

PAYMENT_REFERENCE_PREFIX = "PS_"
UNKNOWN_REFERENCE = "<unknown>"


@dataclass
class _Applied:
    """What a committed record changed, counted only after the commit."""
    outcome: SyncOutcome
    policy: Optional[VendorResolutionPolicy] = None
    order_synthesized: bool = False


class ReconciliationEngine:
    """
    One sync pass per gateway resource.

    Each record is reconciled in its own store transaction. A record that
    cannot be resolved or saved is rolled back, recorded as an issue on the
    stage result, and the pass moves on to the next record.

    Example:
        >>> engine = ReconciliationEngine(store, gateway, EntityResolver(store))
        >>> result = await engine.sync_transactions_to_payments()
        >>> print(result.created, result.skipped)
    """

    def __init__(
        self,
        store: MarketplaceStore,
        gateway: GatewayClientBase,
        resolver: Optional[EntityResolver] = None,
        default_currency: str = "GHS",
    ):
        """Initialize the engine.

        Args:
            store: Persistence the payments, orders and payouts are written to.
            gateway: Client the ledgers are drained from.
            resolver: Entity resolver. Built over ``store`` if omitted.
            default_currency: Currency used when a record carries none.
        """
        self.store = store
        self.gateway = gateway
        self.resolver = resolver or EntityResolver(store)
        self.default_currency = default_currency

    async def sync_transactions_to_payments(self, control: Optional[RunControl] = None) -> StageResult:
        """Create or update a Payment for every gateway transaction.

        Args:
            control: Optional run control checked between pages and records.

        Returns:
            StageResult with status completed or interrupted.

        Raises:
            StageFailure: If the pass fails outside per-record handling.
        """
        return await self._run_stage(
            SyncStage.TRANSACTIONS,
            GatewayResource.TRANSACTION,
            self._process_transaction,
            control,
        )

    async def sync_transfers_to_payouts(self, control: Optional[RunControl] = None) -> StageResult:
        """Create or update a Payout for every gateway transfer.

        Args:
            control: Optional run control checked between pages and records.

        Returns:
            StageResult with status completed or interrupted.

        Raises:
            StageFailure: If the pass fails outside per-record handling.
        """
        return await self._run_stage(
            SyncStage.TRANSFERS,
            GatewayResource.TRANSFER,
            self._process_transfer,
            control,
        )

    async def _run_stage(
        self,
        stage: SyncStage,
        resource: GatewayResource,
        process: Callable[[Dict[str, Any], StageResult], Awaitable[SyncOutcome]],
        control: Optional[RunControl],
    ) -> StageResult:
        result = StageResult(stage=stage)
        logger.info(f"Starting {stage.value} sync from {self.gateway.provider}")

        try:
            drain = await self.gateway.fetch_all(resource, control=control)
            result.fetched = len(drain)
            result.truncated = drain.truncated
            if drain.truncated:
                result.error_message = f"gateway drain truncated: {drain.error}"

            # Users are read before the first record so a store outage fails the stage
            await self.resolver.snapshot()

            for raw in drain.items:
                if control is not None:
                    control.check()
                result.record(await process(raw, result))

        except SyncInterrupted as e:
            logger.warning(f"{stage.value} sync interrupted after {result.processed} records: {e}")
            result.finish(StageStatus.INTERRUPTED, str(e))
            return result
        except Exception as e:
            logger.exception(f"{stage.value} sync failed: {e}")
            result.finish(StageStatus.FAILED, str(e))
            raise StageFailure(stage.value, str(e), result) from e

        result.finish(StageStatus.COMPLETED, result.error_message)
        logger.info(
            f"{stage.value} sync completed: {result.created} created, {result.updated} updated, "
            f"{result.unchanged} unchanged, {result.skipped} skipped, {result.failed} failed"
        )
        return result

    async def _isolate(
        self,
        reference: str,
        reconcile: Callable[[], Awaitable[_Applied]],
        result: StageResult,
    ) -> SyncOutcome:
        """Run one record's reconciliation and turn its errors into outcomes."""
        for attempt in (1, 2):
            try:
                applied = await reconcile()
            except DuplicateReferenceError as e:
                if attempt == 1:
                    # Another run inserted the same reference; the retry finds it and updates
                    logger.warning(f"{e}; retrying {reference} as an update")
                    continue
                logger.error(f"Record {reference} still conflicts after retry: {e}")
                result.add_issue(reference, IssueKind.PERSISTENCE, str(e))
                return SyncOutcome.FAILED
            except EntityResolutionFailure as e:
                logger.warning(f"Skipping {reference}: {e}")
                result.add_issue(reference, IssueKind.RESOLUTION, str(e))
                return SyncOutcome.SKIPPED
            except PersistenceError as e:
                logger.error(f"Failed to save {reference}: {e}")
                result.add_issue(reference, IssueKind.PERSISTENCE, str(e))
                return SyncOutcome.FAILED
            except Exception as e:
                logger.exception(f"Unexpected error reconciling {reference}: {e}")
                result.add_issue(reference, IssueKind.UNEXPECTED, f"{type(e).__name__}: {e}")
                return SyncOutcome.FAILED

            if applied.policy is not None:
                result.count_policy(applied.policy.value)
            if applied.order_synthesized:
                result.orders_created += 1
            return applied.outcome

        return SyncOutcome.FAILED

    def _invalid(self, raw: Any, kind: str, error: ValidationError, result: StageResult) -> SyncOutcome:
        reference = raw.get("reference") if isinstance(raw, dict) else None
        reference = str(reference or UNKNOWN_REFERENCE)
        logger.error(f"Invalid {kind} {reference}: {error.error_count()} validation errors")
        result.add_issue(reference, IssueKind.INVALID_RECORD, str(error))
        return SyncOutcome.FAILED

    # Transactions -> payments

    async def _process_transaction(self, raw: Dict[str, Any], result: StageResult) -> SyncOutcome:
        try:
            txn = GatewayTransaction.model_validate(raw)
        except ValidationError as e:
            return self._invalid(raw, "transaction", e, result)
        return await self._isolate(txn.reference, lambda: self._reconcile_transaction(txn), result)

    async def _reconcile_transaction(self, txn: GatewayTransaction) -> _Applied:
        async with self.store.transaction():
            existing = await self.store.get_payment_by_paystack_reference(txn.reference)
            if existing is not None:
                if existing.status == txn.status:
                    return _Applied(SyncOutcome.UNCHANGED)
                previous = existing.status
                await self.store.update_payment(existing.id, PaymentPatch(
                    status=txn.status,
                    paid_at=txn.paid_at,
                    gateway_response=txn.gateway_response,
                ))
                logger.info(f"Updated payment for {txn.reference}: {previous} -> {txn.status}")
                return _Applied(SyncOutcome.UPDATED)

            buyer_id = await self.resolver.resolve_buyer(txn)
            vendor = await self.resolver.resolve_transaction_vendor(txn)
            order_id, synthesized = await self.resolver.resolve_order(txn, buyer_id, vendor.vendor_id)

            await self.store.create_payment(PaymentInput(
                reference=f"{PAYMENT_REFERENCE_PREFIX}{txn.reference}",
                paystack_reference=txn.reference,
                order_id=order_id,
                vendor_id=vendor.vendor_id,
                buyer_id=buyer_id,
                amount=to_major_units(txn.amount),
                currency=txn.currency or self.default_currency,
                payment_method=txn.channel or "unknown",
                status=txn.status,
                paid_at=txn.paid_at,
                gateway_response=txn.gateway_response,
                mobile_number=txn.metadata.mobile_number,
                network_provider=txn.metadata.network_provider,
            ))
            logger.info(
                f"Created payment for {txn.reference} (vendor {vendor.vendor_id} via {vendor.policy.value})"
            )
            return _Applied(SyncOutcome.CREATED, vendor.policy, synthesized)

    # Transfers -> payouts

    async def _process_transfer(self, raw: Dict[str, Any], result: StageResult) -> SyncOutcome:
        try:
            transfer = GatewayTransfer.model_validate(raw)
        except ValidationError as e:
            return self._invalid(raw, "transfer", e, result)
        return await self._isolate(transfer.reference, lambda: self._reconcile_transfer(transfer), result)

    async def _reconcile_transfer(self, transfer: GatewayTransfer) -> _Applied:
        async with self.store.transaction():
            existing = await self.store.get_payout_by_transaction_id(transfer.reference)
            if existing is not None:
                if existing.status == transfer.status:
                    return _Applied(SyncOutcome.UNCHANGED)
                previous = existing.status
                await self.store.update_payout(existing.id, PayoutPatch(status=transfer.status))
                logger.info(f"Updated payout for {transfer.reference}: {previous} -> {transfer.status}")
                return _Applied(SyncOutcome.UPDATED)

            vendor = await self.resolver.resolve_transfer_vendor(transfer)
            await self.store.create_payout(PayoutInput(
                vendor_id=vendor.vendor_id,
                amount=to_major_units(transfer.amount),
                status=transfer.status,
                momo_number=transfer.recipient.details.account_number or "",
                transaction_id=transfer.reference,
            ))
            logger.info(f"Created payout for {transfer.reference} (vendor {vendor.vendor_id})")
            return _Applied(SyncOutcome.CREATED, vendor.policy)
