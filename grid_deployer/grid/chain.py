"""Chain client interface consumed by the deployer.

The deployer only drives the client-facing side of the chain: it creates,
updates and cancels node contracts and resolves a node's twin. It never
interprets on-chain state beyond the contract ID and the hash it sent.
"""

from abc import ABC, abstractmethod

from .identity import Signer


class ChainClient(ABC):
    """Node contract operations.

    Implementations raise ``ChainError`` when the chain rejects an
    operation and ``TransportError`` when the chain endpoint is unreachable.
    """

    @abstractmethod
    async def get_node_twin(self, node_id: int) -> int:
        """Resolve the twin ID of a node's agent.

        Args:
            node_id: Node identifier

        Returns:
            Twin ID the node agent answers RPC on
        """

    @abstractmethod
    async def create_node_contract(
        self,
        identity: Signer,
        node_id: int,
        deployment_hash: str,
        public_ips: int | None,
        version: int,
        self_funded: bool,
    ) -> int:
        """Create a node contract for a new deployment.

        Args:
            identity: Owner identity signing the extrinsic
            node_id: Target node
            deployment_hash: Hex challenge hash of the deployment
            public_ips: Requested IPv4 count, None if none
            version: Deployment version
            self_funded: Bill the owner twin directly

        Returns:
            The new contract ID
        """

    @abstractmethod
    async def update_node_contract(
        self,
        identity: Signer,
        contract_id: int,
        deployment_hash: str,
        version: int,
    ) -> int:
        """Point an existing contract at new deployment content.

        Returns:
            The (unchanged) contract ID
        """

    @abstractmethod
    async def cancel_contract(self, identity: Signer, contract_id: int) -> None:
        """Cancel a node contract."""
