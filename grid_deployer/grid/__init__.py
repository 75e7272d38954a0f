"""Grid data model: deployments, workloads, identities and the chain interface."""

from .chain import ChainClient
from .identity import Ed25519Identity, Signer, verify_signature
from .models import (
    Contract,
    Deployment,
    ResultState,
    Signature,
    SignatureRequest,
    SignatureRequirement,
    Workload,
    WorkloadResult,
)
from .workloads import (
    ZDB,
    GatewayFQDNProxy,
    GatewayFQDNResult,
    GatewayNameProxy,
    GatewayProxyResult,
    Network,
    NetworkResult,
    PublicIP,
    PublicIPResult,
    QuantumSafeFS,
    QuantumSafeFSResult,
    WorkloadType,
    ZDBResult,
    ZMachine,
    ZMachineResult,
    ZMount,
    ZMountResult,
    decode_data,
    decode_result,
)

__all__ = [
    "ChainClient",
    "Contract",
    "Deployment",
    "Ed25519Identity",
    "GatewayFQDNProxy",
    "GatewayFQDNResult",
    "GatewayNameProxy",
    "GatewayProxyResult",
    "Network",
    "NetworkResult",
    "PublicIP",
    "PublicIPResult",
    "QuantumSafeFS",
    "QuantumSafeFSResult",
    "ResultState",
    "Signature",
    "SignatureRequest",
    "SignatureRequirement",
    "Signer",
    "Workload",
    "WorkloadResult",
    "WorkloadType",
    "ZDB",
    "ZDBResult",
    "ZMachine",
    "ZMachineResult",
    "ZMount",
    "ZMountResult",
    "decode_data",
    "decode_result",
    "verify_signature",
]
