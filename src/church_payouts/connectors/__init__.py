"""Payments provider connectors."""

from .base import (
    PaymentsClientBase,
    PaymentsProviderError,
    ResourceMissingError,
    RemotePaymentIntent,
    RemotePayout,
    BalanceTransaction,
)
from .stripe_connector import StripeConnector, get_payments_client

__all__ = [
    # Base classes and models
    "PaymentsClientBase",
    "PaymentsProviderError",
    "ResourceMissingError",
    "RemotePaymentIntent",
    "RemotePayout",
    "BalanceTransaction",
    # Connectors
    "StripeConnector",
    "get_payments_client",
]
