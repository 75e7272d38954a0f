"""Node agent RPC clients."""

from .client import (
    DEPLOYMENT_DELETE,
    DEPLOYMENT_DEPLOY,
    DEPLOYMENT_GET,
    DEPLOYMENT_UPDATE,
    HTTPRelayClient,
    NodeClient,
    RPCClient,
)
from .pool import NodeClientPool

__all__ = [
    "DEPLOYMENT_DELETE",
    "DEPLOYMENT_DEPLOY",
    "DEPLOYMENT_GET",
    "DEPLOYMENT_UPDATE",
    "HTTPRelayClient",
    "NodeClient",
    "NodeClientPool",
    "RPCClient",
]
