"""Gateway client interface and the shared page drain."""

import logging
from abc import ABC, abstractmethod
from typing import List, Optional, Dict, Any, Union

from ..errors import NetworkError
from .models import (
    DrainResult,
    GatewayBalance,
    GatewayResource,
    GatewaySettlement,
    GatewayTransaction,
)

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 100
DEFAULT_MAX_PAGES = 1000


class GatewayClientBase(ABC):
    """Read-only access to a payment gateway's ledgers."""

    provider: str = "base"

    def __init__(self, page_size: int = DEFAULT_PAGE_SIZE, max_pages: int = DEFAULT_MAX_PAGES):
        """Initialize the client.

        Args:
            page_size: Items requested per page; a shorter page ends a drain.
            max_pages: Upper bound on pages fetched by one drain.
        """
        self.page_size = page_size
        self.max_pages = max_pages

    @abstractmethod
    async def fetch_page(
        self,
        resource: Union[GatewayResource, str],
        page: int = 1,
        per_page: Optional[int] = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> List[Dict[str, Any]]:
        """Fetch one page of a list endpoint.

        Args:
            resource: The list endpoint to read.
            page: 1-based page number.
            per_page: Page size; defaults to the client's page size.
            params: Extra query parameters.

        Returns:
            The raw items of the page, at most ``per_page`` long.

        Raises:
            NetworkError: If the gateway is unreachable or answers non-2xx.
        """
        raise NotImplementedError

    @abstractmethod
    async def fetch_balance(self) -> List[GatewayBalance]:
        """Fetch the integration balance per currency.

        Raises:
            NetworkError: If the gateway is unreachable or answers non-2xx.
        """
        raise NotImplementedError

    async def close(self) -> None:
        """Release any held connections."""

    async def __aenter__(self) -> "GatewayClientBase":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def fetch_all(
        self,
        resource: Union[GatewayResource, str],
        control=None,
        params: Optional[Dict[str, Any]] = None,
    ) -> DrainResult:
        """Drain every page of a list endpoint, one page at a time.

        The drain stops at the first page shorter than the page size. A page
        that fails after its retries ends the drain early: the error is
        logged and the items gathered so far are returned with
        ``truncated=True``.

        Args:
            resource: The list endpoint to drain.
            control: Optional RunControl checked before every page.
            params: Extra query parameters sent with every page.

        Returns:
            DrainResult with the accumulated raw items.

        Raises:
            SyncInterrupted: If the run is cancelled or past its deadline.
        """
        resource = GatewayResource(resource)
        result = DrainResult(resource=resource)
        page = 1

        while page <= self.max_pages:
            if control is not None:
                control.check()
            try:
                items = await self.fetch_page(resource, page=page, per_page=self.page_size, params=params)
            except NetworkError as e:
                logger.error(f"Error fetching {resource.value} page {page}: {e}")
                result.truncated = True
                result.error = str(e)
                break

            result.items.extend(items)
            result.pages_fetched += 1
            if len(items) < self.page_size:
                break
            page += 1
        else:
            logger.warning(
                f"Stopped draining {resource.value} after {self.max_pages} pages"
            )
            result.truncated = True
            result.error = f"max_pages ({self.max_pages}) reached"

        if result.truncated:
            logger.warning(
                f"Drain of {resource.value} truncated after {result.pages_fetched} pages "
                f"({len(result.items)} items kept)"
            )
        else:
            logger.info(
                f"Fetched {len(result.items)} {resource.value} records "
                f"in {result.pages_fetched} pages from {self.provider}"
            )
        return result

    async def fetch_transactions(self, page: int = 1, per_page: Optional[int] = None) -> List[GatewayTransaction]:
        """Fetch one page of transactions as models."""
        items = await self.fetch_page(GatewayResource.TRANSACTION, page=page, per_page=per_page)
        return [GatewayTransaction.model_validate(item) for item in items]

    async def fetch_subaccount_transactions(
        self,
        subaccount_code: str,
        page: int = 1,
        per_page: Optional[int] = None,
    ) -> List[GatewayTransaction]:
        """Fetch one page of the transactions split to a vendor subaccount."""
        items = await self.fetch_page(
            GatewayResource.TRANSACTION,
            page=page,
            per_page=per_page,
            params={"subaccount": subaccount_code},
        )
        return [GatewayTransaction.model_validate(item) for item in items]

    async def fetch_settlements(self, page: int = 1, per_page: Optional[int] = None) -> List[GatewaySettlement]:
        """Fetch one page of settlements. Reporting only; never reconciled."""
        items = await self.fetch_page(GatewayResource.SETTLEMENT, page=page, per_page=per_page)
        return [GatewaySettlement.model_validate(item) for item in items]
