"""Core types and exceptions."""

from .exceptions import (
    CancellationError,
    ChainError,
    GridError,
    NodeRPCError,
    NotFoundError,
    ReconciliationError,
    StateError,
    TimeoutError,
    TransportError,
    UnknownWorkloadTypeError,
    ValidationError,
)
from .types import DeploymentRef, RelayRequest, RelayResponse

__all__ = [
    # Types
    "DeploymentRef",
    "RelayRequest",
    "RelayResponse",
    # Exceptions
    "CancellationError",
    "ChainError",
    "GridError",
    "NodeRPCError",
    "NotFoundError",
    "ReconciliationError",
    "StateError",
    "TimeoutError",
    "TransportError",
    "UnknownWorkloadTypeError",
    "ValidationError",
]
