"""Pool of node clients keyed by node ID."""

import logging

from ..core.exceptions import ChainError, GridError
from ..grid.chain import ChainClient
from .client import NodeClient, RPCClient

logger = logging.getLogger(__name__)


class NodeClientPool:
    """Resolves node IDs to clients bound to the node agent's twin.

    Twin lookups go through the chain once per node and are cached for the
    lifetime of the pool.
    """

    def __init__(self, rpc: RPCClient):
        self.rpc = rpc
        self._twins: dict[int, int] = {}

    async def get_node_client(self, chain: ChainClient, node_id: int) -> NodeClient:
        """Get a client for a node's agent.

        Args:
            chain: Chain client used to resolve the node twin
            node_id: Node identifier

        Returns:
            Node client bound to the node twin

        Raises:
            TransportError: If the chain is unreachable
            ChainError: If the node cannot be resolved
        """
        twin_id = self._twins.get(node_id)
        if twin_id is None:
            try:
                twin_id = await chain.get_node_twin(node_id)
            except GridError:
                raise
            except Exception as e:
                raise ChainError("get_node_twin", f"node {node_id}", e) from e
            self._twins[node_id] = twin_id
            logger.debug(f"Resolved node {node_id} to twin {twin_id}")

        return NodeClient(twin_id, self.rpc)
