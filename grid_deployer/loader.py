"""Rebuild gateway descriptions from committed deployment state."""

from pydantic import BaseModel, Field

from .core.exceptions import StateError
from .deployer.manager import DeploymentManager
from .grid.workloads import GatewayFQDNProxy, GatewayNameProxy, GatewayProxyResult


class GatewayNameInfo(BaseModel):
    """A deployed name proxy and the domain the gateway gave it."""

    node_id: int
    name: str
    tls_passthrough: bool = False
    backends: list[str] = Field(default_factory=list)
    fqdn: str = Field("", description="Domain resolved by the gateway")


class GatewayFQDNInfo(BaseModel):
    """A deployed FQDN proxy."""

    node_id: int
    name: str
    fqdn: str
    tls_passthrough: bool = False
    backends: list[str] = Field(default_factory=list)


def load_gateway_name(
    manager: DeploymentManager, node_id: int, name: str
) -> GatewayNameInfo:
    """Load a name proxy from the manager's last known state.

    Raises:
        NotFoundError: If the workload is not tracked
        StateError: If the workload is not a name proxy
    """
    workload = manager.get_workload(node_id, name)
    data = workload.workload_data()
    if not isinstance(data, GatewayNameProxy):
        raise StateError(f"Workload '{name}' on node {node_id} is a {workload.type}")

    result = workload.result_data()
    fqdn = result.fqdn if isinstance(result, GatewayProxyResult) else ""

    return GatewayNameInfo(
        node_id=node_id,
        name=data.name,
        tls_passthrough=data.tls_passthrough,
        backends=data.backends,
        fqdn=fqdn,
    )


def load_gateway_fqdn(
    manager: DeploymentManager, node_id: int, name: str
) -> GatewayFQDNInfo:
    """Load an FQDN proxy from the manager's last known state."""
    workload = manager.get_workload(node_id, name)
    data = workload.workload_data()
    if not isinstance(data, GatewayFQDNProxy):
        raise StateError(f"Workload '{name}' on node {node_id} is a {workload.type}")

    return GatewayFQDNInfo(
        node_id=node_id,
        name=workload.name,
        fqdn=data.fqdn,
        tls_passthrough=data.tls_passthrough,
        backends=data.backends,
    )
