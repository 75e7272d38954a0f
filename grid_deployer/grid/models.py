"""Pydantic models for deployments, workloads and node contracts."""

import hashlib
import json
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from ..core.exceptions import StateError
from .identity import Signer, verify_signature
from .workloads import (
    PublicIP,
    WorkloadData,
    WorkloadResultData,
    WorkloadType,
    decode_data,
    decode_result,
    type_of,
)


def _canonical(data: Any) -> str:
    return json.dumps(data, sort_keys=True, separators=(",", ":"), default=str)


# ============================================================================
# Workloads
# ============================================================================


class ResultState(str, Enum):
    """Lifecycle of a workload on the node agent."""

    PENDING = "init"
    OK = "ok"
    ERROR = "error"


class WorkloadResult(BaseModel):
    """Outcome reported by the node agent for one workload."""

    created: int = Field(0, description="Unix time the agent produced the result")
    state: ResultState = Field(ResultState.PENDING, description="Result state")
    message: str = Field("", description="Agent message, set on error")
    data: dict[str, Any] | None = Field(None, description="Type-specific result payload")

    @property
    def is_pending(self) -> bool:
        return self.state == ResultState.PENDING


class Workload(BaseModel):
    """A named, typed unit of work inside a deployment."""

    version: int = Field(0, ge=0, description="Deployment version that last changed it")
    name: str = Field(..., min_length=1, description="Unique name within the deployment")
    type: str = Field(..., description="Workload type tag")
    data: dict[str, Any] = Field(default_factory=dict, description="Type-specific payload")
    metadata: str = ""
    description: str = ""
    result: WorkloadResult = Field(default_factory=WorkloadResult)

    @classmethod
    def from_payload(
        cls,
        name: str,
        payload: WorkloadData,
        description: str = "",
        metadata: str = "",
    ) -> "Workload":
        """Build a workload from a typed payload model."""
        return cls(
            name=name,
            type=type_of(payload).value,
            data=payload.model_dump(mode="json"),
            description=description,
            metadata=metadata,
        )

    def workload_data(self) -> WorkloadData:
        """Decode the payload for this workload's type tag."""
        return decode_data(self.type, self.data)

    def result_data(self) -> WorkloadResultData:
        """Decode the agent result for this workload's type tag."""
        return decode_result(self.type, self.result.data)

    def challenge(self) -> str:
        """Signed content of this workload. Results never take part."""
        return "\n".join(
            [
                str(self.version),
                self.name,
                self.type,
                self.metadata,
                self.description,
                _canonical(self.data),
            ]
        )


# ============================================================================
# Signatures
# ============================================================================


class SignatureRequest(BaseModel):
    twin_id: int
    required: bool = False
    weight: int = 1


class Signature(BaseModel):
    twin_id: int
    signature: str = Field(..., description="Hex encoded signature of the challenge hash")
    signature_type: str = "ed25519"


class SignatureRequirement(BaseModel):
    """Which twins must sign a deployment, and the signatures collected."""

    requests: list[SignatureRequest] = Field(default_factory=list)
    weight_required: int = 0
    signatures: list[Signature] = Field(default_factory=list)

    def challenge(self) -> str:
        parts = [str(self.weight_required)]
        for request in self.requests:
            parts.append(f"{request.twin_id}:{request.required}:{request.weight}")
        return "\n".join(parts)


# ============================================================================
# Deployment
# ============================================================================


class Deployment(BaseModel):
    """Signed set of workloads for one owner twin on one node."""

    version: int = Field(0, ge=0, description="Bumped on every content change")
    twin_id: int = Field(..., description="Owner twin")
    node_id: int = Field(0, description="Target node (not part of the challenge)")
    contract_id: int = Field(0, description="Node contract, 0 until created")
    metadata: str = ""
    description: str = ""
    expiration: int = 0
    signature_requirement: SignatureRequirement = Field(
        default_factory=SignatureRequirement
    )
    workloads: list[Workload] = Field(default_factory=list)

    def check_names(self) -> None:
        """Ensure workload names are unique.

        Raises:
            StateError: On the first duplicated name.
        """
        seen: set[str] = set()
        for workload in self.workloads:
            if workload.name in seen:
                raise StateError(
                    f"Workload name '{workload.name}' is duplicated in deployment "
                    f"for node {self.node_id}"
                )
            seen.add(workload.name)

    def get_workload(self, name: str) -> Workload | None:
        for workload in self.workloads:
            if workload.name == name:
                return workload
        return None

    def challenge(self) -> str:
        """Canonical unsigned content the challenge hash is computed over."""
        parts = [
            str(self.version),
            str(self.twin_id),
            self.metadata,
            self.description,
            str(self.expiration),
        ]
        parts.extend(workload.challenge() for workload in self.workloads)
        parts.append(self.signature_requirement.challenge())
        return "\n".join(parts)

    def challenge_hash(self) -> bytes:
        """MD5 digest binding the node contract to this exact content."""
        return hashlib.md5(self.challenge().encode(), usedforsecurity=False).digest()

    def challenge_hex(self) -> str:
        return self.challenge_hash().hex()

    def sign(self, twin_id: int, signer: Signer) -> None:
        """Require and add the signature of ``twin_id`` over the current content.

        Any later change to signed content invalidates the signature.
        """
        requirement = self.signature_requirement
        if not any(r.twin_id == twin_id for r in requirement.requests):
            requirement.requests.append(SignatureRequest(twin_id=twin_id, weight=1))
            requirement.weight_required = max(requirement.weight_required, 1)

        signature = signer.sign(self.challenge_hash()).hex()
        requirement.signatures = [s for s in requirement.signatures if s.twin_id != twin_id]
        requirement.signatures.append(
            Signature(
                twin_id=twin_id,
                signature=signature,
                signature_type=signer.signature_type,
            )
        )

    def verify(self, twin_id: int, public_key: bytes) -> bool:
        """Check the stored signature of ``twin_id`` against current content."""
        for signature in self.signature_requirement.signatures:
            if signature.twin_id == twin_id:
                return verify_signature(
                    public_key, self.challenge_hash(), bytes.fromhex(signature.signature)
                )
        return False

    def count_public_ips(self) -> int:
        """Number of IPv4 addresses this deployment reserves on-chain."""
        count = 0
        for workload in self.workloads:
            if workload.type == WorkloadType.PUBLIC_IP.value:
                payload = workload.workload_data()
                if isinstance(payload, PublicIP) and payload.v4:
                    count += 1
        return count

    def to_contract(self) -> "Contract":
        """Contract record matching this deployment's last signed content."""
        return Contract(
            contract_id=self.contract_id,
            node_id=self.node_id,
            deployment_hash=self.challenge_hex(),
            public_ips=self.count_public_ips(),
        )


# ============================================================================
# Contracts
# ============================================================================


class Contract(BaseModel):
    """On-chain node contract as far as the deployer knows it."""

    contract_id: int = Field(0, description="0 when no contract exists")
    node_id: int
    deployment_hash: str = Field("", description="Hex challenge hash last sent")
    public_ips: int = 0
    solution_provider_id: int | None = None
