"""Gateway clients for reading the payment gateway's ledgers."""

from typing import Optional

from ..config import SyncSettings
from .models import (
    GatewayResource,
    GatewayCustomer,
    TransactionMetadata,
    GatewaySubaccount,
    GatewayTransaction,
    GatewayRecipient,
    RecipientDetails,
    GatewayTransfer,
    GatewayBalance,
    GatewaySettlement,
    DrainResult,
)
from .base import GatewayClientBase
from .paystack import PaystackClient
from .simulator import SimulatedGateway, SimulatorConfig


def get_gateway_client(
    provider: str = "paystack",
    settings: Optional[SyncSettings] = None,
) -> GatewayClientBase:
    """Factory function to get the appropriate gateway client.

    Args:
        provider: Gateway provider name.
        settings: Settings for the client. Read from the environment if omitted.

    Returns:
        GatewayClientBase implementation for the provider.

    Raises:
        ValueError: If the provider is not supported.
    """
    settings = settings or SyncSettings.from_env()
    provider = provider.lower()

    if provider == "paystack":
        return PaystackClient.from_settings(settings)
    if provider == "simulator":
        return SimulatedGateway(page_size=settings.page_size, max_pages=settings.max_pages)
    raise ValueError(f"Unsupported gateway provider: {provider}")


__all__ = [
    "GatewayResource",
    "GatewayCustomer",
    "TransactionMetadata",
    "GatewaySubaccount",
    "GatewayTransaction",
    "GatewayRecipient",
    "RecipientDetails",
    "GatewayTransfer",
    "GatewayBalance",
    "GatewaySettlement",
    "DrainResult",
    "GatewayClientBase",
    "PaystackClient",
    "SimulatedGateway",
    "SimulatorConfig",
    "get_gateway_client",
]
