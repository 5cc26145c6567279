"""Shared test fixtures and configuration."""

import os
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Dict, Any, Optional

import pytest

# Set up test environment variables before importing modules
os.environ.setdefault("API_KEY", "test_api_key_12345")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("PAYSTACK_SECRET_KEY", "sk_test_dummy_key_for_testing")
os.environ.setdefault("SYNC_RATE_LIMIT", "1000/minute")

from marketplace_sync.database import (
    User,
    Product,
    UserRole,
    SQLAlchemyStore,
    create_async_engine,
    create_schema,
    get_async_session_factory,
)
from marketplace_sync.gateway import SimulatedGateway

BUYER_EMAIL = "ama.buyer@st.knust.edu.gh"
VENDOR_A_EMAIL = "kofi.vendor@st.knust.edu.gh"
VENDOR_B_EMAIL = "esi.vendor@st.knust.edu.gh"
VENDOR_A_SUBACCOUNT = "ACCT_kofi001"
VENDOR_B_SUBACCOUNT = "ACCT_esi002"


@pytest.fixture
async def db_engine():
    """Create an in-memory SQLite database for testing."""
    engine = create_async_engine(
        database_url="sqlite+aiosqlite:///:memory:",
        echo=False
    )
    await create_schema(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
async def db_session(db_engine):
    """Create a database session for testing."""
    session_factory = get_async_session_factory(db_engine)
    async with session_factory() as session:
        yield session


@pytest.fixture
async def marketplace(db_session) -> Dict[str, str]:
    """Seed a buyer, two vendors and vendor A's products; return their ids.

    Vendor A is listed before vendor B, so it is the fallback vendor.
    """
    base = datetime(2024, 1, 1, 8, 0, 0)
    buyer = User(
        email=BUYER_EMAIL,
        full_name="Ama Buyer",
        role=UserRole.BUYER.value,
        created_at=base,
    )
    vendor_a = User(
        email=VENDOR_A_EMAIL,
        full_name="Kofi Vendor",
        role=UserRole.VENDOR.value,
        paystack_subaccount=VENDOR_A_SUBACCOUNT,
        momo_number="0241234567",
        created_at=base + timedelta(minutes=1),
    )
    vendor_b = User(
        email=VENDOR_B_EMAIL,
        full_name="Esi Vendor",
        role=UserRole.VENDOR.value,
        paystack_subaccount=VENDOR_B_SUBACCOUNT,
        momo_number="0207654321",
        created_at=base + timedelta(minutes=2),
    )
    db_session.add_all([buyer, vendor_a, vendor_b])
    await db_session.flush()

    textbook = Product(
        vendor_id=vendor_a.id,
        title="Engineering Maths Textbook",
        price=Decimal("80.00"),
        created_at=base + timedelta(minutes=3),
    )
    lamp = Product(
        vendor_id=vendor_a.id,
        title="Desk Lamp",
        price=Decimal("45.50"),
        created_at=base + timedelta(minutes=4),
    )
    db_session.add_all([textbook, lamp])
    await db_session.commit()

    return {
        "buyer_id": buyer.id,
        "vendor_a_id": vendor_a.id,
        "vendor_b_id": vendor_b.id,
        "product_id": textbook.id,
    }


@pytest.fixture
def store(db_session) -> SQLAlchemyStore:
    """Store over the test session."""
    return SQLAlchemyStore(db_session)


@pytest.fixture
def gateway() -> SimulatedGateway:
    """Empty simulated gateway with small pages to exercise pagination."""
    return SimulatedGateway(page_size=2, max_pages=50)


def make_transaction(
    reference: str,
    amount: int = 5000,
    status: str = "success",
    email: str = BUYER_EMAIL,
    metadata: Optional[Dict[str, Any]] = None,
    subaccount: Optional[Dict[str, Any]] = None,
    txn_id: int = 1,
    **extra: Any,
) -> Dict[str, Any]:
    """Build a raw transaction as listed by the gateway."""
    txn = {
        "id": txn_id,
        "reference": reference,
        "amount": amount,
        "currency": "GHS",
        "status": status,
        "channel": "mobile_money",
        "customer": {"email": email},
        "metadata": metadata if metadata is not None else {},
        "subaccount": subaccount or {},
        "paid_at": "2024-03-01T10:15:00.000Z",
        "gateway_response": "Approved",
    }
    txn.update(extra)
    return txn


def make_transfer(
    reference: str,
    amount: int = 20000,
    status: str = "success",
    email: Optional[str] = VENDOR_A_EMAIL,
    account_number: Optional[str] = "0241234567",
    transfer_id: int = 1,
) -> Dict[str, Any]:
    """Build a raw transfer as listed by the gateway."""
    return {
        "id": transfer_id,
        "reference": reference,
        "amount": amount,
        "currency": "GHS",
        "status": status,
        "reason": "Weekly vendor payout",
        "recipient": {
            "name": "Kofi Vendor",
            "email": email,
            "details": {"account_number": account_number, "bank_name": "MTN"},
        },
    }
