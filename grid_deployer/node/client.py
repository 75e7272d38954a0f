"""Node agent RPC clients.

``RPCClient`` is the message-bus transport: one synchronous request/response
call against a twin. ``NodeClient`` binds it to one node agent and exposes
the deployment methods the deployer drives.
"""

import logging
from abc import ABC, abstractmethod
from typing import Any

import httpx

from ..config import settings
from ..core.exceptions import NodeRPCError, TransportError
from ..core.types import DeploymentRef, RelayRequest, RelayResponse
from ..grid.models import Deployment
from ..observability.telemetry import inject_context

logger = logging.getLogger(__name__)

DEPLOYMENT_DEPLOY = "zos.deployment.deploy"
DEPLOYMENT_UPDATE = "zos.deployment.update"
DEPLOYMENT_DELETE = "zos.deployment.delete"
DEPLOYMENT_GET = "zos.deployment.get"


class RPCClient(ABC):
    """Base class for message-bus transports."""

    @abstractmethod
    async def call(self, twin_id: int, method: str, body: Any) -> Any:
        """Perform one RPC against a twin.

        Args:
            twin_id: Destination twin
            method: RPC method name
            body: JSON-serializable request body

        Returns:
            Decoded response body

        Raises:
            TransportError: The call did not reach the twin or no answer came back
            NodeRPCError: The twin answered with an application error
        """


class HTTPRelayClient(RPCClient):
    """Message-bus transport over an HTTP relay.

    Each call is posted as a ``RelayRequest`` to ``{base_url}/twin/{twin_id}``;
    the relay forwards it to the twin and answers with a ``RelayResponse``.
    """

    def __init__(
        self,
        base_url: str | None = None,
        timeout: float | None = None,
        client: httpx.AsyncClient | None = None,
    ):
        """Initialize relay client.

        Args:
            base_url: Relay base URL (defaults to GRID_RELAY_URL)
            timeout: Per-call timeout in seconds (defaults to GRID_RPC_TIMEOUT)
            client: Pre-built httpx client, mainly for tests
        """
        self.base_url = (base_url or settings.relay_url).rstrip("/")
        self.timeout = timeout if timeout is not None else settings.rpc_timeout
        self._client = client or httpx.AsyncClient(timeout=self.timeout)

    async def call(self, twin_id: int, method: str, body: Any) -> Any:
        url = f"{self.base_url}/twin/{twin_id}"
        request: RelayRequest = {
            "twin_id": twin_id,
            "command": method,
            "data": body,
            "timeout": self.timeout,
        }
        headers = inject_context({"Content-Type": "application/json"})
        logger.debug(f"Relay call {method} -> twin {twin_id}")

        try:
            response = await self._client.post(url, json=request, headers=headers)
            response.raise_for_status()
            payload: RelayResponse = response.json()
        except httpx.TimeoutException as e:
            raise TransportError(f"{method} on twin {twin_id}", e) from e
        except httpx.HTTPStatusError as e:
            raise TransportError(
                f"{method} on twin {twin_id}",
                Exception(f"relay answered HTTP {e.response.status_code}"),
            ) from e
        except httpx.HTTPError as e:
            raise TransportError(f"{method} on twin {twin_id}", e) from e
        except ValueError as e:
            raise TransportError(f"{method} on twin {twin_id}", e) from e

        error = payload.get("error")
        if error:
            raise NodeRPCError(twin_id, method, error)

        return payload.get("data")

    async def close(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "HTTPRelayClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()


class NodeClient:
    """Deployment operations against one node agent."""

    def __init__(self, twin_id: int, rpc: RPCClient):
        self.twin_id = twin_id
        self.rpc = rpc

    async def deployment_deploy(self, deployment: Deployment) -> None:
        """Push a deployment the node has never seen."""
        await self.rpc.call(
            self.twin_id, DEPLOYMENT_DEPLOY, deployment.model_dump(mode="json")
        )

    async def deployment_update(self, deployment: Deployment) -> None:
        """Push a new version of an existing deployment."""
        await self.rpc.call(
            self.twin_id, DEPLOYMENT_UPDATE, deployment.model_dump(mode="json")
        )

    async def deployment_delete(self, contract_id: int) -> None:
        ref: DeploymentRef = {"contract_id": contract_id}
        await self.rpc.call(self.twin_id, DEPLOYMENT_DELETE, ref)

    async def deployment_get(self, contract_id: int) -> Deployment:
        """Fetch the deployment with its current workload results."""
        ref: DeploymentRef = {"contract_id": contract_id}
        data = await self.rpc.call(self.twin_id, DEPLOYMENT_GET, ref)
        if isinstance(data, Deployment):
            return data
        try:
            return Deployment.model_validate(data)
        except ValueError as e:
            # pydantic.ValidationError is a ValueError
            raise TransportError(f"{DEPLOYMENT_GET} on twin {self.twin_id}", e) from e
