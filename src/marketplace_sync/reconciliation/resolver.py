"""Matching gateway records to marketplace users, vendors and orders."""

import enum
import logging
import time
from dataclasses import dataclass, field
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, List, Optional, Sequence, Tuple

from ..database.models import UserRole, OrderStatus
from ..database.schemas import OrderInput
from ..database.store import MarketplaceStore
from ..errors import EntityResolutionFailure
from ..gateway.models import GatewayTransaction, GatewayTransfer

logger = logging.getLogger(__name__)

MINOR_UNITS_PER_MAJOR = 100
DEFAULT_SHIPPING_ADDRESS = "Address not provided"


def to_major_units(amount: int) -> Decimal:
    """Convert a gateway amount in minor units (pesewas) to major units (cedis)."""
    return (Decimal(amount) / MINOR_UNITS_PER_MAJOR).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


class VendorResolutionPolicy(str, enum.Enum):
    """Ways a vendor can be matched to a gateway record."""
    METADATA = "metadata"
    SUBACCOUNT = "subaccount"
    FALLBACK_FIRST = "fallback_first"
    EMAIL_ONLY = "email_only"


DEFAULT_TRANSACTION_POLICIES: Tuple[VendorResolutionPolicy, ...] = (
    VendorResolutionPolicy.METADATA,
    VendorResolutionPolicy.SUBACCOUNT,
    VendorResolutionPolicy.FALLBACK_FIRST,
)
DEFAULT_TRANSFER_POLICIES: Tuple[VendorResolutionPolicy, ...] = (
    VendorResolutionPolicy.EMAIL_ONLY,
)


@dataclass(frozen=True)
class VendorResolution:
    """A resolved vendor and the policy that matched it."""
    vendor_id: str
    policy: VendorResolutionPolicy


@dataclass
class UserSnapshot:
    """Lookup tables built from one read of the users table.

    Holds plain ids only, never ORM instances, so it stays valid across
    commits and rollbacks of the session it was read from.
    """
    buyer_ids_by_email: Dict[str, str] = field(default_factory=dict)
    vendor_ids_by_subaccount: Dict[str, str] = field(default_factory=dict)
    vendor_ids_by_email: Dict[str, str] = field(default_factory=dict)
    vendor_ids: List[str] = field(default_factory=list)
    taken_at: float = field(default_factory=time.monotonic)

    @classmethod
    def from_users(cls, users) -> "UserSnapshot":
        snapshot = cls()
        for user in users:
            snapshot.buyer_ids_by_email.setdefault(user.email, user.id)
            if user.role != UserRole.VENDOR.value:
                continue
            snapshot.vendor_ids.append(user.id)
            snapshot.vendor_ids_by_email.setdefault(user.email, user.id)
            if user.paystack_subaccount:
                snapshot.vendor_ids_by_subaccount.setdefault(user.paystack_subaccount, user.id)
        return snapshot

    def age(self) -> float:
        return time.monotonic() - self.taken_at


class EntityResolver:
    """
    Resolves buyer, vendor and order for gateway records.

    Vendor matching walks a policy chain and stops at the first hit.
    Transactions and transfers have separate chains:

    - transactions: checkout metadata, then the split subaccount, then the
      first vendor on the platform
    - transfers: the recipient email against vendor accounts only

    Example:
        >>> resolver = EntityResolver(store)
        >>> buyer_id = await resolver.resolve_buyer(txn)
    """

    def __init__(
        self,
        store: MarketplaceStore,
        snapshot_ttl: float = 300.0,
        transaction_policies: Sequence[VendorResolutionPolicy] = DEFAULT_TRANSACTION_POLICIES,
        transfer_policies: Sequence[VendorResolutionPolicy] = DEFAULT_TRANSFER_POLICIES,
    ):
        """Initialize the resolver.

        Args:
            store: Store the users, products and orders are read from.
            snapshot_ttl: Seconds the user snapshot is reused before re-reading.
            transaction_policies: Vendor policy chain for transactions.
            transfer_policies: Vendor policy chain for transfers.
        """
        self.store = store
        self.snapshot_ttl = snapshot_ttl
        self.transaction_policies = tuple(transaction_policies)
        self.transfer_policies = tuple(transfer_policies)
        self._snapshot: Optional[UserSnapshot] = None

    async def snapshot(self, refresh: bool = False) -> UserSnapshot:
        """Return the user snapshot, re-reading users once it is stale."""
        if refresh or self._snapshot is None or self._snapshot.age() > self.snapshot_ttl:
            users = await self.store.get_users()
            self._snapshot = UserSnapshot.from_users(users)
            logger.info(
                f"Loaded user snapshot: {len(self._snapshot.buyer_ids_by_email)} users, "
                f"{len(self._snapshot.vendor_ids)} vendors"
            )
        return self._snapshot

    def invalidate(self) -> None:
        self._snapshot = None

    async def resolve_buyer(self, txn: GatewayTransaction) -> str:
        """Match the transaction's customer email to a user.

        Raises:
            EntityResolutionFailure: If no user has that email.
        """
        snapshot = await self.snapshot()
        buyer_id = snapshot.buyer_ids_by_email.get(txn.customer.email)
        if buyer_id is None:
            raise EntityResolutionFailure(
                txn.reference, "buyer", f"no user with email {txn.customer.email}"
            )
        return buyer_id

    async def resolve_transaction_vendor(self, txn: GatewayTransaction) -> VendorResolution:
        """Walk the transaction policy chain.

        Raises:
            EntityResolutionFailure: If every policy in the chain misses.
        """
        snapshot = await self.snapshot()
        for policy in self.transaction_policies:
            vendor_id = self._apply_transaction_policy(policy, txn, snapshot)
            if vendor_id is not None:
                return VendorResolution(vendor_id=vendor_id, policy=policy)
        raise EntityResolutionFailure(txn.reference, "vendor", "no vendor matched")

    def _apply_transaction_policy(
        self,
        policy: VendorResolutionPolicy,
        txn: GatewayTransaction,
        snapshot: UserSnapshot,
    ) -> Optional[str]:
        if policy == VendorResolutionPolicy.METADATA:
            return txn.metadata.vendor_id
        if policy == VendorResolutionPolicy.SUBACCOUNT:
            code = txn.subaccount_code
            return snapshot.vendor_ids_by_subaccount.get(code) if code else None
        if policy == VendorResolutionPolicy.FALLBACK_FIRST:
            if not snapshot.vendor_ids:
                return None
            logger.warning(
                f"Transaction {txn.reference} has no vendor in metadata or subaccount; "
                f"falling back to first vendor {snapshot.vendor_ids[0]}"
            )
            return snapshot.vendor_ids[0]
        # EMAIL_ONLY has no meaning for transactions: the customer is the buyer
        return None

    async def resolve_transfer_vendor(self, transfer: GatewayTransfer) -> VendorResolution:
        """Walk the transfer policy chain.

        Raises:
            EntityResolutionFailure: If every policy in the chain misses.
        """
        snapshot = await self.snapshot()
        email = transfer.recipient.email
        for policy in self.transfer_policies:
            vendor_id: Optional[str] = None
            if policy == VendorResolutionPolicy.EMAIL_ONLY and email:
                vendor_id = snapshot.vendor_ids_by_email.get(email)
            elif policy == VendorResolutionPolicy.FALLBACK_FIRST and snapshot.vendor_ids:
                logger.warning(
                    f"Transfer {transfer.reference} recipient not matched; "
                    f"falling back to first vendor {snapshot.vendor_ids[0]}"
                )
                vendor_id = snapshot.vendor_ids[0]
            if vendor_id is not None:
                return VendorResolution(vendor_id=vendor_id, policy=policy)
        raise EntityResolutionFailure(
            transfer.reference, "vendor", f"no vendor with recipient email {email}"
        )

    async def resolve_order(
        self,
        txn: GatewayTransaction,
        buyer_id: str,
        vendor_id: str,
    ) -> Tuple[str, bool]:
        """Return the order for a transaction, creating one if it has none.

        Uses ``metadata.order_id`` when present. Otherwise an order is
        synthesized from the vendor's first product, or the platform's first
        product when the vendor has none.

        Returns:
            Tuple of (order_id, synthesized).

        Raises:
            EntityResolutionFailure: If the platform has no products at all.
        """
        if txn.metadata.order_id:
            return txn.metadata.order_id, False

        products = await self.store.get_products_by_vendor(vendor_id)
        if not products:
            products = await self.store.get_products()
        if not products:
            raise EntityResolutionFailure(txn.reference, "order", "no products to build an order from")

        product = products[0]
        order = await self.store.create_order(OrderInput(
            buyer_id=buyer_id,
            vendor_id=vendor_id,
            product_id=product.id,
            quantity=1,
            total_amount=to_major_units(txn.amount),
            status=OrderStatus.PENDING.value,
            shipping_address=txn.metadata.delivery_address or DEFAULT_SHIPPING_ADDRESS,
            phone=txn.metadata.phone or "",
            notes=f"Synced from Paystack transaction {txn.reference}",
        ))
        logger.info(f"Synthesized order {order.id} for transaction {txn.reference}")
        return order.id, True
