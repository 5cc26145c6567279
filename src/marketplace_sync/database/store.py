"""Persistence contract consumed by the reconciliation engine.

The engine only talks to ``MarketplaceStore``. ``SQLAlchemyStore`` is the
implementation backed by the repositories in this package.
"""

from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from typing import AsyncIterator, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from .models import User, Product, Order, Payment, Payout
from .repository import (
    UserRepository,
    ProductRepository,
    OrderRepository,
    PaymentRepository,
    PayoutRepository,
)
from .schemas import OrderInput, PaymentInput, PaymentPatch, PayoutInput, PayoutPatch


class MarketplaceStore(ABC):
    """Idempotent reads and writes over users, products, orders, payments and payouts."""

    @abstractmethod
    def transaction(self):
        """Async context manager scoping one unit of work.

        Commits when the block exits cleanly and rolls back when it raises.
        """
        raise NotImplementedError

    @abstractmethod
    async def get_users(self) -> List[User]:
        raise NotImplementedError

    @abstractmethod
    async def get_user(self, user_id: str) -> Optional[User]:
        raise NotImplementedError

    @abstractmethod
    async def get_products_by_vendor(self, vendor_id: str) -> List[Product]:
        raise NotImplementedError

    @abstractmethod
    async def get_products(self) -> List[Product]:
        raise NotImplementedError

    @abstractmethod
    async def create_order(self, data: OrderInput) -> Order:
        raise NotImplementedError

    @abstractmethod
    async def get_payment_by_paystack_reference(self, reference: str) -> Optional[Payment]:
        raise NotImplementedError

    @abstractmethod
    async def create_payment(self, data: PaymentInput) -> Payment:
        """Insert a payment.

        Raises:
            DuplicateReferenceError: If ``data.paystack_reference`` is already stored.
        """
        raise NotImplementedError

    @abstractmethod
    async def update_payment(self, payment_id: str, patch: PaymentPatch) -> Payment:
        raise NotImplementedError

    @abstractmethod
    async def get_payouts_by_vendor(self, vendor_id: str) -> List[Payout]:
        raise NotImplementedError

    @abstractmethod
    async def get_payout_by_transaction_id(self, transaction_id: str) -> Optional[Payout]:
        raise NotImplementedError

    @abstractmethod
    async def create_payout(self, data: PayoutInput) -> Payout:
        """Insert a payout.

        Raises:
            DuplicateReferenceError: If ``data.transaction_id`` is already stored.
        """
        raise NotImplementedError

    @abstractmethod
    async def update_payout(self, payout_id: str, patch: PayoutPatch) -> Payout:
        raise NotImplementedError


class SQLAlchemyStore(MarketplaceStore):
    """MarketplaceStore over a single async SQLAlchemy session."""

    def __init__(self, session: AsyncSession):
        """Initialize the store with a database session.

        Args:
            session: AsyncSession instance for database operations.
        """
        self.session = session
        self.users = UserRepository(session)
        self.products = ProductRepository(session)
        self.orders = OrderRepository(session)
        self.payments = PaymentRepository(session)
        self.payouts = PayoutRepository(session)

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator["SQLAlchemyStore"]:
        try:
            yield self
            await self.session.commit()
        except Exception:
            await self.session.rollback()
            raise

    async def get_users(self) -> List[User]:
        return await self.users.list_all()

    async def get_user(self, user_id: str) -> Optional[User]:
        return await self.users.get_by_id(user_id)

    async def get_products_by_vendor(self, vendor_id: str) -> List[Product]:
        return await self.products.list_by_vendor(vendor_id)

    async def get_products(self) -> List[Product]:
        return await self.products.list_all()

    async def create_order(self, data: OrderInput) -> Order:
        return await self.orders.create(data)

    async def get_payment_by_paystack_reference(self, reference: str) -> Optional[Payment]:
        return await self.payments.get_by_paystack_reference(reference)

    async def create_payment(self, data: PaymentInput) -> Payment:
        return await self.payments.create(data)

    async def update_payment(self, payment_id: str, patch: PaymentPatch) -> Payment:
        return await self.payments.update(payment_id, patch)

    async def get_payouts_by_vendor(self, vendor_id: str) -> List[Payout]:
        return await self.payouts.list_by_vendor(vendor_id)

    async def get_payout_by_transaction_id(self, transaction_id: str) -> Optional[Payout]:
        return await self.payouts.get_by_transaction_id(transaction_id)

    async def create_payout(self, data: PayoutInput) -> Payout:
        return await self.payouts.create(data)

    async def update_payout(self, payout_id: str, patch: PayoutPatch) -> Payout:
        return await self.payouts.update(payout_id, patch)
