"""TypedDict definitions for node RPC wire bodies.

The deployment itself travels as the JSON dump of
``grid_deployer.grid.models.Deployment``; these describe everything else
exchanged with the relay and the node agent.
"""

from typing import Any, NotRequired, TypedDict


class DeploymentRef(TypedDict):
    """Reference to a deployment on a node, keyed by its contract."""

    contract_id: int


class RelayRequest(TypedDict):
    """Envelope posted to the HTTP relay for one node call."""

    twin_id: int
    command: str
    data: Any
    timeout: NotRequired[float]


class RelayResponse(TypedDict):
    """Envelope returned by the HTTP relay.

    ``error`` is set when the node agent rejected the call; transport
    failures never reach this shape.
    """

    data: NotRequired[Any]
    error: NotRequired[str | None]
