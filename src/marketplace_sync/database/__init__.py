"""Database module for marketplace persistence."""

from .models import (
    Base,
    User,
    Product,
    Order,
    Payment,
    Payout,
    UserRole,
    OrderStatus,
)
from .schemas import (
    OrderInput,
    PaymentInput,
    PaymentPatch,
    PayoutInput,
    PayoutPatch,
)
from .session import (
    get_db,
    get_database_url,
    init_db,
    close_db,
    create_async_engine,
    create_schema,
    get_async_session_factory,
    normalize_database_url,
)
from .repository import (
    UserRepository,
    ProductRepository,
    OrderRepository,
    PaymentRepository,
    PayoutRepository,
)
from .store import MarketplaceStore, SQLAlchemyStore

__all__ = [
    # Models
    "Base",
    "User",
    "Product",
    "Order",
    "Payment",
    "Payout",
    "UserRole",
    "OrderStatus",
    # Write models
    "OrderInput",
    "PaymentInput",
    "PaymentPatch",
    "PayoutInput",
    "PayoutPatch",
    # Session management
    "get_db",
    "get_database_url",
    "init_db",
    "close_db",
    "create_async_engine",
    "create_schema",
    "get_async_session_factory",
    "normalize_database_url",
    # Repositories
    "UserRepository",
    "ProductRepository",
    "OrderRepository",
    "PaymentRepository",
    "PayoutRepository",
    # Store contract
    "MarketplaceStore",
    "SQLAlchemyStore",
]
