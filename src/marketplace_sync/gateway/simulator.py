"""In-memory gateway for tests and dry runs without real Paystack calls."""

import asyncio
import copy
import logging
from dataclasses import dataclass, field
from typing import Dict, Any, List, Optional, Set, Tuple, Union

from ..errors import NetworkError
from .base import GatewayClientBase, DEFAULT_PAGE_SIZE, DEFAULT_MAX_PAGES
from .models import GatewayBalance, GatewayResource

logger = logging.getLogger(__name__)


@dataclass
class SimulatorConfig:
    """Configuration for simulator behavior."""
    delay_ms: int = 0  # Simulated response delay in ms
    failing_pages: Set[Tuple[str, int]] = field(default_factory=set)  # (resource, page) pairs that error
    failure_status: Optional[int] = 503


class SimulatedGateway(GatewayClientBase):
    """
    Gateway client serving ledgers held in memory.

    Features:
    - Transactions, transfers, settlements and balances as raw gateway dicts
    - Same pagination contract as the real gateway
    - Per-page failure injection
    - In-place status changes to mimic the gateway settling a record later
    """

    provider = "simulator"

    def __init__(
        self,
        transactions: Optional[List[Dict[str, Any]]] = None,
        transfers: Optional[List[Dict[str, Any]]] = None,
        settlements: Optional[List[Dict[str, Any]]] = None,
        balances: Optional[List[Dict[str, Any]]] = None,
        config: Optional[SimulatorConfig] = None,
        page_size: int = DEFAULT_PAGE_SIZE,
        max_pages: int = DEFAULT_MAX_PAGES,
    ):
        super().__init__(page_size=page_size, max_pages=max_pages)
        self.config = config or SimulatorConfig()
        self._ledgers: Dict[GatewayResource, List[Dict[str, Any]]] = {
            GatewayResource.TRANSACTION: list(transactions or []),
            GatewayResource.TRANSFER: list(transfers or []),
            GatewayResource.SETTLEMENT: list(settlements or []),
        }
        self._balances = list(balances or [])
        self.requests: List[Tuple[str, int, int]] = []
        logger.info("SimulatedGateway initialized")

    def add_transaction(self, transaction: Dict[str, Any]) -> None:
        self._ledgers[GatewayResource.TRANSACTION].append(transaction)

    def add_transfer(self, transfer: Dict[str, Any]) -> None:
        self._ledgers[GatewayResource.TRANSFER].append(transfer)

    def set_status(
        self,
        resource: Union[GatewayResource, str],
        reference: str,
        status: str,
        **changes: Any,
    ) -> None:
        """Change the status (and any other fields) of every record with ``reference``."""
        found = False
        for item in self._ledgers[GatewayResource(resource)]:
            if item.get("reference") == reference:
                item["status"] = status
                item.update(changes)
                found = True
        if not found:
            raise KeyError(f"No {GatewayResource(resource).value} with reference {reference}")

    def fail_page(self, resource: Union[GatewayResource, str], page: int) -> None:
        """Make a page answer with a NetworkError."""
        self.config.failing_pages.add((GatewayResource(resource).value, page))

    async def _apply_delay(self) -> None:
        if self.config.delay_ms > 0:
            await asyncio.sleep(self.config.delay_ms / 1000.0)

    async def fetch_page(
        self,
        resource: Union[GatewayResource, str],
        page: int = 1,
        per_page: Optional[int] = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> List[Dict[str, Any]]:
        resource = GatewayResource(resource)
        per_page = per_page or self.page_size
        self.requests.append((resource.value, page, per_page))
        await self._apply_delay()

        if (resource.value, page) in self.config.failing_pages:
            raise NetworkError(
                f"Simulated failure on {resource.value} page {page}",
                status_code=self.config.failure_status,
            )

        items = self._ledgers[resource]
        if params and "subaccount" in params:
            items = [
                i for i in items
                if (i.get("subaccount") or {}).get("subaccount_code") == params["subaccount"]
            ]
        start = (page - 1) * per_page
        return copy.deepcopy(items[start:start + per_page])

    async def fetch_balance(self) -> List[GatewayBalance]:
        await self._apply_delay()
        return [GatewayBalance.model_validate(b) for b in self._balances]
