# marketplace_sync package
__version__ = "0.1.0"

from .config import SyncSettings, get_settings
from .errors import (
    SyncError,
    NetworkError,
    EntityResolutionFailure,
    PersistenceError,
    DuplicateReferenceError,
    StageFailure,
    SyncInterrupted,
    SyncCancelled,
    SyncDeadlineExceeded,
)
from .database import (
    User,
    Product,
    Order,
    Payment,
    Payout,
    MarketplaceStore,
    SQLAlchemyStore,
    init_db,
    close_db,
    get_db,
)
from .gateway import (
    GatewayClientBase,
    PaystackClient,
    SimulatedGateway,
    get_gateway_client,
)

# Reconciliation exports
from .reconciliation import (
    RunControl,
    EntityResolver,
    ReconciliationEngine,
    SyncOrchestrator,
    SyncService,
    SyncRunReport,
    StageResult,
    StageFailurePolicy,
    VendorResolutionPolicy,
    ReportGenerator,
)
