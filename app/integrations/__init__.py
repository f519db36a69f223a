"""External integration adapters."""

from .billing import BillingClient, BillingError, get_billing_client
from .facebook import GraphAPIClient, GraphAPIError, GraphPage, GraphTransportError, get_graph_client

__all__ = [
    "BillingClient",
    "BillingError",
    "get_billing_client",
    "GraphAPIClient",
    "GraphAPIError",
    "GraphPage",
    "GraphTransportError",
    "get_graph_client",
]
