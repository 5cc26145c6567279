"""Service layer for sync operations."""

import logging
from typing import List, Optional, Union

from sqlalchemy.ext.asyncio import AsyncSession

from ..config import SyncSettings
from ..database.store import MarketplaceStore, SQLAlchemyStore
from ..gateway import GatewayClientBase, GatewayBalance, GatewaySettlement, get_gateway_client
from .control import RunControl
from .engine import ReconciliationEngine
from .models import StageFailurePolicy, SyncRunReport
from .orchestrator import SyncOrchestrator
from .report import ReportGenerator
from .resolver import EntityResolver

logger = logging.getLogger(__name__)


class SyncService:
    """Wires a database session and a gateway client into a sync run."""

    def __init__(
        self,
        session: Optional[AsyncSession] = None,
        gateway_client: Optional[GatewayClientBase] = None,
        settings: Optional[SyncSettings] = None,
        store: Optional[MarketplaceStore] = None,
        provider: str = "paystack",
    ):
        """Initialize the sync service.

        Args:
            session: Async database session. Ignored when ``store`` is given.
            gateway_client: Optional gateway client. Will create one for ``provider`` if not provided.
            settings: Sync settings. Read from the environment if omitted.
            store: Optional store overriding the session-backed one.
            provider: Gateway provider used when no client is given.
        """
        if store is None and session is None:
            raise ValueError("SyncService needs a session or a store")
        self.settings = settings or SyncSettings.from_env()
        self.store = store or SQLAlchemyStore(session)
        self.provider = provider
        self._gateway_client = gateway_client

    def _get_gateway_client(self) -> GatewayClientBase:
        if self._gateway_client is None:
            self._gateway_client = get_gateway_client(self.provider, self.settings)
        return self._gateway_client

    def _build_orchestrator(
        self,
        failure_policy: Optional[Union[StageFailurePolicy, str]] = None,
    ) -> SyncOrchestrator:
        resolver = EntityResolver(self.store, snapshot_ttl=self.settings.user_snapshot_ttl)
        engine = ReconciliationEngine(
            self.store,
            self._get_gateway_client(),
            resolver,
            default_currency=self.settings.default_currency,
        )
        return SyncOrchestrator(engine, failure_policy or self.settings.failure_policy)

    def _control(self, control: Optional[RunControl], deadline_seconds: Optional[float]) -> RunControl:
        if control is not None:
            return control
        return RunControl(deadline_seconds if deadline_seconds is not None else self.settings.deadline_seconds)

    async def sync_all(
        self,
        failure_policy: Optional[Union[StageFailurePolicy, str]] = None,
        deadline_seconds: Optional[float] = None,
        control: Optional[RunControl] = None,
    ) -> SyncRunReport:
        """Run the transaction stage, then the transfer stage.

        Args:
            failure_policy: Stage failure policy; defaults to the configured one.
            deadline_seconds: Per-run deadline; defaults to the configured one.
            control: Run control to use instead of a fresh one.

        Returns:
            SyncRunReport with one entry per stage.
        """
        orchestrator = self._build_orchestrator(failure_policy)
        return await orchestrator.sync_all(self._control(control, deadline_seconds))

    async def sync_transactions(
        self,
        deadline_seconds: Optional[float] = None,
        control: Optional[RunControl] = None,
    ) -> SyncRunReport:
        """Run only the transaction stage."""
        orchestrator = self._build_orchestrator()
        return await orchestrator.sync_transactions(self._control(control, deadline_seconds))

    async def sync_transfers(
        self,
        deadline_seconds: Optional[float] = None,
        control: Optional[RunControl] = None,
    ) -> SyncRunReport:
        """Run only the transfer stage."""
        orchestrator = self._build_orchestrator()
        return await orchestrator.sync_transfers(self._control(control, deadline_seconds))

    async def fetch_balance(self) -> List[GatewayBalance]:
        """Fetch the gateway balance per currency."""
        balances = await self._get_gateway_client().fetch_balance()
        logger.info(f"Fetched {len(balances)} balances from {self.provider}")
        return balances

    async def fetch_settlements(self, page: int = 1, per_page: Optional[int] = None) -> List[GatewaySettlement]:
        """Fetch one page of settlements. Reporting only; settlements are never reconciled."""
        return await self._get_gateway_client().fetch_settlements(page=page, per_page=per_page)

    async def close(self) -> None:
        if self._gateway_client is not None:
            await self._gateway_client.close()

    def generate_report(
        self,
        report: SyncRunReport,
        format: str = "json",
        include_details: bool = True,
    ) -> str:
        """Generate a formatted report from sync results.

        Args:
            report: SyncRunReport to format.
            format: Output format ('json', 'csv', 'text').
            include_details: Include record issues (for JSON format).

        Returns:
            Formatted report string.
        """
        generator = ReportGenerator(report)

        if format == "json":
            return generator.to_json(include_details=include_details)
        elif format == "csv":
            return generator.to_csv()
        elif format == "text":
            return generator.to_summary_text()
        else:
            raise ValueError(f"Unsupported report format: {format}")
