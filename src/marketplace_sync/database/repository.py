"""Repository layer for marketplace persistence operations."""

import logging
from datetime import datetime, timezone
from typing import Optional, List

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from ..errors import DuplicateReferenceError, PersistenceError
from .models import User, Product, Order, Payment, Payout
from .schemas import OrderInput, PaymentInput, PaymentPatch, PayoutInput, PayoutPatch

logger = logging.getLogger(__name__)


def _to_naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Columns store naive UTC timestamps."""
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def _is_unique_violation(error: IntegrityError) -> bool:
    message = str(error.orig).lower()
    return "unique" in message or "duplicate key" in message


class UserRepository:
    """Read access to marketplace users."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def list_all(self) -> List[User]:
        """List every user in creation order."""
        result = await self.session.execute(
            select(User).order_by(User.created_at, User.id)
        )
        return list(result.scalars().all())

    async def get_by_id(self, user_id: str) -> Optional[User]:
        """Get a user by ID."""
        return await self.session.get(User, user_id)


class ProductRepository:
    """Read access to catalog products."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def list_by_vendor(self, vendor_id: str) -> List[Product]:
        """List a vendor's products, oldest first."""
        result = await self.session.execute(
            select(Product)
            .where(Product.vendor_id == vendor_id)
            .order_by(Product.created_at, Product.id)
        )
        return list(result.scalars().all())

    async def list_all(self) -> List[Product]:
        """List every product, oldest first."""
        result = await self.session.execute(
            select(Product).order_by(Product.created_at, Product.id)
        )
        return list(result.scalars().all())


class OrderRepository:
    """Repository for Order writes."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, data: OrderInput) -> Order:
        """Create a new order.

        Args:
            data: Order fields.

        Returns:
            Created Order instance.

        Raises:
            PersistenceError: If the insert fails.
        """
        order = Order(**data.model_dump())
        self.session.add(order)
        try:
            await self.session.flush()
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to create order: {e}") from e

        logger.info(f"Created order {order.id} for buyer {order.buyer_id}")
        return order

    async def get_by_id(self, order_id: str) -> Optional[Order]:
        """Get an order by ID."""
        return await self.session.get(Order, order_id)


class PaymentRepository:
    """Repository for Payment CRUD operations."""

    def __init__(self, session: AsyncSession):
        """Initialize the repository with a database session.

        Args:
            session: AsyncSession instance for database operations.
        """
        self.session = session

    async def create(self, data: PaymentInput) -> Payment:
        """Create a new payment record.

        Args:
            data: Payment fields, amount in major units.

        Returns:
            Created Payment instance.

        Raises:
            DuplicateReferenceError: If the Paystack reference is already stored.
            PersistenceError: If the insert fails for any other reason.
        """
        fields = data.model_dump()
        fields["paid_at"] = _to_naive_utc(fields["paid_at"])
        fields["currency"] = fields["currency"].upper()
        payment = Payment(**fields)
        self.session.add(payment)
        try:
            await self.session.flush()
        except IntegrityError as e:
            if _is_unique_violation(e):
                raise DuplicateReferenceError("payments", data.paystack_reference) from e
            raise PersistenceError(f"Failed to create payment: {e}") from e
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to create payment: {e}") from e

        logger.info(f"Created payment {payment.id} with status {payment.status}")
        return payment

    async def get_by_id(self, payment_id: str) -> Optional[Payment]:
        """Get a payment by its ID."""
        return await self.session.get(Payment, payment_id)

    async def get_by_paystack_reference(self, paystack_reference: str) -> Optional[Payment]:
        """Get a payment by the gateway reference it was synced from.

        Args:
            paystack_reference: Gateway transaction reference.

        Returns:
            Payment instance if found, None otherwise.
        """
        result = await self.session.execute(
            select(Payment).where(Payment.paystack_reference == paystack_reference)
        )
        return result.scalar_one_or_none()

    async def update(self, payment_id: str, patch: PaymentPatch) -> Payment:
        """Apply a status patch to a payment.

        Args:
            payment_id: Payment ID.
            patch: New status, plus paid_at and gateway_response when present.

        Returns:
            Updated Payment instance.

        Raises:
            PersistenceError: If the payment is missing or the update fails.
        """
        payment = await self.get_by_id(payment_id)
        if payment is None:
            raise PersistenceError(f"Payment {payment_id} not found")

        previous_status = payment.status
        payment.status = patch.status
        # A status change without a timestamp or response keeps the stored one
        if patch.paid_at is not None:
            payment.paid_at = _to_naive_utc(patch.paid_at)
        if patch.gateway_response is not None:
            payment.gateway_response = patch.gateway_response
        payment.updated_at = datetime.utcnow()
        try:
            await self.session.flush()
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to update payment {payment_id}: {e}") from e

        logger.info(f"Updated payment {payment.id} status {previous_status} -> {patch.status}")
        return payment

    async def list_by_vendor(self, vendor_id: str) -> List[Payment]:
        """List a vendor's payments, newest first."""
        result = await self.session.execute(
            select(Payment)
            .where(Payment.vendor_id == vendor_id)
            .order_by(Payment.created_at.desc())
        )
        return list(result.scalars().all())


class PayoutRepository:
    """Repository for Payout CRUD operations."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, data: PayoutInput) -> Payout:
        """Create a new payout record.

        Raises:
            DuplicateReferenceError: If the transfer reference is already stored.
            PersistenceError: If the insert fails for any other reason.
        """
        payout = Payout(**data.model_dump())
        self.session.add(payout)
        try:
            await self.session.flush()
        except IntegrityError as e:
            if _is_unique_violation(e):
                raise DuplicateReferenceError("payouts", data.transaction_id) from e
            raise PersistenceError(f"Failed to create payout: {e}") from e
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to create payout: {e}") from e

        logger.info(f"Created payout {payout.id} for vendor {payout.vendor_id}")
        return payout

    async def get_by_id(self, payout_id: str) -> Optional[Payout]:
        """Get a payout by its ID."""
        return await self.session.get(Payout, payout_id)

    async def get_by_transaction_id(self, transaction_id: str) -> Optional[Payout]:
        """Get a payout by the gateway transfer reference."""
        result = await self.session.execute(
            select(Payout).where(Payout.transaction_id == transaction_id)
        )
        return result.scalar_one_or_none()

    async def list_by_vendor(self, vendor_id: str) -> List[Payout]:
        """List a vendor's payouts, newest first."""
        result = await self.session.execute(
            select(Payout)
            .where(Payout.vendor_id == vendor_id)
            .order_by(Payout.created_at.desc())
        )
        return list(result.scalars().all())

    async def update(self, payout_id: str, patch: PayoutPatch) -> Payout:
        """Apply a status patch to a payout.

        Raises:
            PersistenceError: If the payout is missing or the update fails.
        """
        payout = await self.get_by_id(payout_id)
        if payout is None:
            raise PersistenceError(f"Payout {payout_id} not found")

        previous_status = payout.status
        payout.status = patch.status
        payout.updated_at = datetime.utcnow()
        try:
            await self.session.flush()
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to update payout {payout_id}: {e}") from e

        logger.info(f"Updated payout {payout.id} status {previous_status} -> {patch.status}")
        return payout
