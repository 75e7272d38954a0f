"""Workload kinds understood by the node agent.

Every workload carries a type tag and an opaque JSON payload; once the agent
has processed it, an opaque JSON result. This module closes that set: each
known tag maps to one payload model and one result model, and decoding goes
through ``decode_data``/``decode_result`` which raise
``UnknownWorkloadTypeError`` for anything else.
"""

from enum import Enum
from typing import Any, Literal, Union

from pydantic import BaseModel, Field

from ..core.exceptions import UnknownWorkloadTypeError


class WorkloadType(str, Enum):
    """Type tags of the workload kinds the agent executes."""

    ZMACHINE = "zmachine"
    ZMOUNT = "zmount"
    PUBLIC_IP = "ip"
    NETWORK = "network"
    ZDB = "zdb"
    QSFS = "qsfs"
    GATEWAY_NAME = "gateway-name-proxy"
    GATEWAY_FQDN = "gateway-fqdn-proxy"


# ============================================================================
# Payloads
# ============================================================================


class MachineInterface(BaseModel):
    """Private network interface of a virtual machine."""

    network: str = Field(..., description="Network workload name")
    ip: str = Field(..., description="Address inside the network range")


class MachineNetwork(BaseModel):
    public_ip: str = Field("", description="Name of the ip workload to attach")
    planetary: bool = Field(False, description="Attach to the planetary network")
    interfaces: list[MachineInterface] = Field(default_factory=list)


class MachineCapacity(BaseModel):
    cpu: int = Field(..., ge=1, description="Virtual cores")
    memory: int = Field(..., gt=0, description="Memory in bytes")


class MachineMount(BaseModel):
    name: str = Field(..., description="Disk workload name")
    mountpoint: str = Field(..., description="Mount point inside the machine")


class ZMachine(BaseModel):
    """Virtual machine payload."""

    flist: str = Field(..., description="Flist URL of the machine image")
    network: MachineNetwork = Field(default_factory=MachineNetwork)
    size: int = Field(0, ge=0, description="Root filesystem size in bytes")
    compute_capacity: MachineCapacity
    mounts: list[MachineMount] = Field(default_factory=list)
    entrypoint: str = ""
    env: dict[str, str] = Field(default_factory=dict)
    corex: bool = False


class ZMount(BaseModel):
    """Disk payload."""

    size: int = Field(..., gt=0, description="Disk size in bytes")


class PublicIP(BaseModel):
    """Public address reservation."""

    v4: bool = Field(False, description="Reserve an IPv4 address (billed on-chain)")
    v6: bool = Field(False, description="Reserve an IPv6 address")


class Network(BaseModel):
    """Private network resource on one node."""

    ip_range: str = Field(..., description="Whole network range, e.g. 10.1.0.0/16")
    subnet: str = Field(..., description="This node's subnet inside the range")
    wireguard_private_key: str = ""
    wireguard_listen_port: int = 0
    peers: list[dict[str, Any]] = Field(default_factory=list)


class ZDB(BaseModel):
    """0-db namespace payload."""

    size: int = Field(..., gt=0, description="Namespace size in bytes")
    mode: Literal["user", "seq"] = "user"
    password: str = ""
    public: bool = False


class QuantumSafeFS(BaseModel):
    """Quantum safe filesystem payload."""

    cache: int = Field(..., gt=0, description="Local cache size in bytes")
    config: dict[str, Any] = Field(default_factory=dict)


class GatewayNameProxy(BaseModel):
    """Gateway proxy on a name under the node's domain."""

    name: str = Field(..., description="Subdomain requested on the gateway")
    tls_passthrough: bool = False
    backends: list[str] = Field(default_factory=list)


class GatewayFQDNProxy(BaseModel):
    """Gateway proxy on a caller-owned domain."""

    fqdn: str = Field(..., description="Fully qualified domain pointed at the gateway")
    tls_passthrough: bool = False
    backends: list[str] = Field(default_factory=list)


WorkloadData = Union[
    ZMachine,
    ZMount,
    PublicIP,
    Network,
    ZDB,
    QuantumSafeFS,
    GatewayNameProxy,
    GatewayFQDNProxy,
]


# ============================================================================
# Results
# ============================================================================


class ZMachineResult(BaseModel):
    id: str = ""
    ip: str = ""
    ygg_ip: str = ""


class ZMountResult(BaseModel):
    volume_id: str = ""


class PublicIPResult(BaseModel):
    ip: str = ""
    ip6: str = ""
    gateway: str = ""


class NetworkResult(BaseModel):
    pass


class ZDBResult(BaseModel):
    namespace: str = ""
    ips: list[str] = Field(default_factory=list)
    port: int = 0


class QuantumSafeFSResult(BaseModel):
    path: str = ""
    metrics_endpoint: str = ""


class GatewayProxyResult(BaseModel):
    """Result of a name proxy: the domain the gateway resolved for it."""

    fqdn: str = ""


class GatewayFQDNResult(BaseModel):
    pass


WorkloadResultData = Union[
    ZMachineResult,
    ZMountResult,
    PublicIPResult,
    NetworkResult,
    ZDBResult,
    QuantumSafeFSResult,
    GatewayProxyResult,
    GatewayFQDNResult,
]


_PAYLOADS: dict[WorkloadType, type[BaseModel]] = {
    WorkloadType.ZMACHINE: ZMachine,
    WorkloadType.ZMOUNT: ZMount,
    WorkloadType.PUBLIC_IP: PublicIP,
    WorkloadType.NETWORK: Network,
    WorkloadType.ZDB: ZDB,
    WorkloadType.QSFS: QuantumSafeFS,
    WorkloadType.GATEWAY_NAME: GatewayNameProxy,
    WorkloadType.GATEWAY_FQDN: GatewayFQDNProxy,
}

_RESULTS: dict[WorkloadType, type[BaseModel]] = {
    WorkloadType.ZMACHINE: ZMachineResult,
    WorkloadType.ZMOUNT: ZMountResult,
    WorkloadType.PUBLIC_IP: PublicIPResult,
    WorkloadType.NETWORK: NetworkResult,
    WorkloadType.ZDB: ZDBResult,
    WorkloadType.QSFS: QuantumSafeFSResult,
    WorkloadType.GATEWAY_NAME: GatewayProxyResult,
    WorkloadType.GATEWAY_FQDN: GatewayFQDNResult,
}

_TYPES_BY_PAYLOAD = {model: tag for tag, model in _PAYLOADS.items()}


def workload_type(type_tag: str) -> WorkloadType:
    """Resolve a raw type tag.

    Raises:
        UnknownWorkloadTypeError: If the tag is not a known workload kind.
    """
    try:
        return WorkloadType(type_tag)
    except ValueError:
        raise UnknownWorkloadTypeError(type_tag) from None


def type_of(payload: BaseModel) -> WorkloadType:
    """Return the type tag for a payload model instance."""
    try:
        return _TYPES_BY_PAYLOAD[type(payload)]
    except KeyError:
        raise UnknownWorkloadTypeError(type(payload).__name__) from None


def decode_data(type_tag: str, data: dict[str, Any]) -> WorkloadData:
    """Decode a workload payload according to its type tag.

    Raises:
        UnknownWorkloadTypeError: For unknown tags.
        pydantic.ValidationError: If the payload does not match the kind.
    """
    return _PAYLOADS[workload_type(type_tag)].model_validate(data)  # type: ignore[return-value]


def decode_result(type_tag: str, data: dict[str, Any] | None) -> WorkloadResultData:
    """Decode a result payload according to its workload's type tag.

    An absent payload decodes as the kind's empty result.
    """
    return _RESULTS[workload_type(type_tag)].model_validate(data or {})  # type: ignore[return-value]
