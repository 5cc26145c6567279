"""Paystack REST client for the reconciliation sync."""

import logging
from typing import List, Optional, Dict, Any, Union

import httpx
from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from ..config import SyncSettings
from ..errors import NetworkError
from .base import GatewayClientBase
from .models import GatewayBalance, GatewayResource

logger = logging.getLogger(__name__)


def _is_retryable(error: BaseException) -> bool:
    return isinstance(error, NetworkError) and error.retryable


class PaystackClient(GatewayClientBase):
    """
    Paginated, bearer-authenticated reads of the Paystack ledgers.

    Every request is retried with exponential backoff on transport failures,
    5xx and 429 responses. Other non-2xx responses fail immediately.

    Example:
        >>> async with PaystackClient(secret_key="sk_test_...") as client:
        ...     drain = await client.fetch_all("transaction")
    """

    provider = "paystack"

    def __init__(
        self,
        secret_key: Optional[str] = None,
        base_url: str = "https://api.paystack.co",
        page_size: int = 100,
        max_pages: int = 1000,
        timeout: float = 30.0,
        max_attempts: int = 3,
        backoff_multiplier: float = 1.0,
        backoff_max: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize the Paystack client.

        Args:
            secret_key: Paystack secret key used as the bearer token.
            base_url: API root.
            page_size: Items requested per page.
            max_pages: Upper bound on pages per drain.
            timeout: Per-request timeout in seconds.
            max_attempts: Attempts per request, first one included.
            backoff_multiplier: Exponential backoff multiplier in seconds.
            backoff_max: Longest wait between attempts in seconds.
            transport: Optional httpx transport, used by tests.

        Raises:
            ValueError: If no secret key is provided.
        """
        super().__init__(page_size=page_size, max_pages=max_pages)
        if not secret_key:
            raise ValueError("PAYSTACK_SECRET_KEY must be configured to reach Paystack")
        self.base_url = base_url.rstrip("/")
        self.max_attempts = max_attempts
        self.backoff_multiplier = backoff_multiplier
        self.backoff_max = backoff_max
        self.client = httpx.AsyncClient(
            base_url=self.base_url,
            headers={
                "Authorization": f"Bearer {secret_key}",
                "Content-Type": "application/json",
            },
            timeout=timeout,
            transport=transport,
        )

    @classmethod
    def from_settings(cls, settings: SyncSettings, **kwargs: Any) -> "PaystackClient":
        """Build a client from SyncSettings."""
        return cls(
            secret_key=settings.paystack_secret_key,
            base_url=settings.paystack_base_url,
            page_size=settings.page_size,
            max_pages=settings.max_pages,
            timeout=settings.http_timeout,
            max_attempts=settings.retry_attempts,
            backoff_multiplier=settings.retry_backoff,
            backoff_max=settings.retry_max_wait,
            **kwargs,
        )

    async def close(self) -> None:
        """Close HTTP client."""
        await self.client.aclose()

    async def _get_once(self, path: str, params: Optional[Dict[str, Any]]) -> Any:
        try:
            response = await self.client.get(path, params=params)
        except httpx.HTTPError as e:
            raise NetworkError(f"GET {path} failed: {type(e).__name__}: {e}") from e

        if not response.is_success:
            raise NetworkError(
                f"GET {path} returned HTTP {response.status_code}",
                status_code=response.status_code,
            )

        try:
            body = response.json()
        except ValueError as e:
            raise NetworkError(f"GET {path} returned a non-JSON body", status_code=response.status_code) from e

        if isinstance(body, dict) and body.get("status") is False:
            raise NetworkError(
                f"GET {path} rejected: {body.get('message', 'no message')}",
                status_code=response.status_code,
            )
        return body

    async def _get(self, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential(multiplier=self.backoff_multiplier, max=self.backoff_max),
            retry=retry_if_exception(_is_retryable),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )
        async for attempt in retrying:
            with attempt:
                return await self._get_once(path, params)

    async def fetch_page(
        self,
        resource: Union[GatewayResource, str],
        page: int = 1,
        per_page: Optional[int] = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> List[Dict[str, Any]]:
        resource = GatewayResource(resource)
        query: Dict[str, Any] = {"page": page, "perPage": per_page or self.page_size}
        if params:
            query.update(params)

        body = await self._get(f"/{resource.value}", params=query)
        data = body.get("data") if isinstance(body, dict) else None
        if data is None:
            return []
        if not isinstance(data, list):
            raise NetworkError(
                f"GET /{resource.value} page {page} returned {type(data).__name__} data, expected a list",
                status_code=200,
            )
        if len(data) > query["perPage"]:
            raise NetworkError(
                f"GET /{resource.value} page {page} returned {len(data)} items for perPage={query['perPage']}",
                status_code=200,
            )
        return data

    async def fetch_balance(self) -> List[GatewayBalance]:
        body = await self._get("/balance")
        data = body.get("data") if isinstance(body, dict) else None
        return [GatewayBalance.model_validate(item) for item in (data or [])]
