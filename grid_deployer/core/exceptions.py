"""Exception hierarchy for the grid deployer.

Provides structured exceptions with error codes and recovery hints.
"""

from typing import Any


class GridError(Exception):
    """Base exception for grid deployment errors.

    Attributes:
        message: Human-readable error message.
        code: Machine-readable error code.
        recoverable: Whether retrying the operation may succeed.
    """

    def __init__(
        self,
        message: str,
        code: str,
        recoverable: bool = True,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code
        self.recoverable = recoverable

    def __str__(self) -> str:
        return f"[{self.code}] {self.message}"

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to dictionary for JSON serialization.

        Returns:
            Dictionary with error details.
        """
        return {
            "error": self.code,
            "message": self.message,
            "recoverable": self.recoverable,
        }


class TransportError(GridError):
    """RPC relay or chain endpoint could not be reached.

    Raised for connection failures, transport timeouts and malformed
    transport responses. Retried with backoff by the deployer.
    """

    def __init__(
        self,
        target: str,
        cause: Exception | None = None,
    ) -> None:
        message = f"Failed to reach {target}"
        if cause:
            message += f": {cause}"
        super().__init__(message, "TRANSPORT", recoverable=True)
        self.target = target
        self.cause = cause


class NodeRPCError(GridError):
    """The node agent answered with an application-level error."""

    def __init__(self, twin_id: int, method: str, message: str) -> None:
        super().__init__(
            f"{method} on twin {twin_id} failed: {message}",
            "NODE_RPC",
            recoverable=False,
        )
        self.twin_id = twin_id
        self.method = method


class ChainError(GridError):
    """A contract operation was rejected on-chain."""

    def __init__(
        self,
        operation: str,
        message: str,
        cause: Exception | None = None,
    ) -> None:
        full_message = f"{operation} failed: {message}"
        if cause:
            full_message += f": {cause}"
        super().__init__(full_message, "CHAIN", recoverable=False)
        self.operation = operation
        self.cause = cause


class ValidationError(GridError):
    """Returned workload results failed acceptance checks."""

    def __init__(
        self,
        node_id: int,
        workload: str,
        reason: str,
    ) -> None:
        full_message = f"Workload '{workload}' on node {node_id} rejected: {reason}"
        super().__init__(full_message, "VALIDATION", recoverable=False)
        self.node_id = node_id
        self.workload = workload
        self.reason = reason


class StateError(GridError):
    """A local invariant was violated (duplicate name, missing prior state)."""

    def __init__(self, message: str) -> None:
        super().__init__(message, "STATE", recoverable=False)


class NotFoundError(GridError):
    """Requested deployment or workload is not tracked."""

    def __init__(self, node_id: int, name: str | None = None) -> None:
        if name is None:
            message = f"No deployment tracked for node {node_id}"
        else:
            message = f"Workload '{name}' not found on node {node_id}"
        super().__init__(message, "NOT_FOUND", recoverable=False)
        self.node_id = node_id
        self.name = name


class UnknownWorkloadTypeError(GridError):
    """A workload carries a type tag with no known payload kind."""

    def __init__(self, type_tag: str) -> None:
        super().__init__(f"Unknown workload type '{type_tag}'", "UNKNOWN_TYPE", recoverable=False)
        self.type_tag = type_tag


class TimeoutError(GridError):
    """Polling budget exhausted while workloads were still pending.

    Distinct from TransportError: the agent answered, it was just slow.
    """

    def __init__(
        self,
        node_id: int,
        pending: list[str],
        timeout: float,
    ) -> None:
        message = (
            f"Node {node_id} still pending after {timeout}s: {', '.join(pending)}"
        )
        super().__init__(message, "TIMEOUT", recoverable=True)
        self.node_id = node_id
        self.pending = pending
        self.timeout = timeout


class CancellationError(GridError):
    """The caller's deadline expired before the node task finished."""

    def __init__(self, node_id: int, stage: str) -> None:
        super().__init__(
            f"Node {node_id} cancelled during {stage}", "CANCELLED", recoverable=True
        )
        self.node_id = node_id
        self.stage = stage


class ReconciliationError(GridError):
    """One or more nodes failed during a deploy or cancel call.

    Attributes:
        errors: Per-node failure keyed by node ID.
        contracts: Contract IDs of the nodes that succeeded.
    """

    def __init__(
        self,
        errors: dict[int, GridError],
        contracts: dict[int, int],
    ) -> None:
        details = "; ".join(
            f"node {node_id}: {error}" for node_id, error in sorted(errors.items())
        )
        super().__init__(
            f"{len(errors)} node(s) failed: {details}",
            "RECONCILE",
            recoverable=all(e.recoverable for e in errors.values()),
        )
        self.errors = errors
        self.contracts = contracts

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        result["nodes"] = {
            str(node_id): error.to_dict() for node_id, error in self.errors.items()
        }
        result["contracts"] = {str(k): v for k, v in self.contracts.items()}
        return result
