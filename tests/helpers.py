"""Test doubles and builders shared by the unit tests."""

from typing import Any

from grid_deployer.core.exceptions import NodeRPCError
from grid_deployer.grid import (
    Deployment,
    GatewayFQDNProxy,
    GatewayNameProxy,
    ResultState,
    Workload,
)
from grid_deployer.node import (
    DEPLOYMENT_DELETE,
    DEPLOYMENT_DEPLOY,
    DEPLOYMENT_GET,
    DEPLOYMENT_UPDATE,
    RPCClient,
)

TWIN_ID = 214


def node_twin(node_id: int) -> int:
    """Twin of a node agent in tests: node 10 answers on twin 13."""
    return node_id + 3


class FakeNodeAgent(RPCClient):
    """In-process node agents for every twin.

    Deployments pushed with deploy/update are stored and get a result
    immediately (ok unless ``result_states`` says otherwise). ``failures``
    maps (twin_id, method) to an exception raised on every matching call.
    """

    def __init__(self) -> None:
        self.calls: list[tuple[int, str]] = []
        self.deployments: dict[tuple[int, int], Deployment] = {}
        self.failures: dict[tuple[int, str], Exception] = {}
        self.result_states: dict[str, ResultState] = {}
        self.result_data: dict[str, dict[str, Any]] = {}

    async def call(self, twin_id: int, method: str, body: Any) -> Any:
        self.calls.append((twin_id, method))
        failure = self.failures.get((twin_id, method))
        if failure is not None:
            raise failure

        if method in (DEPLOYMENT_DEPLOY, DEPLOYMENT_UPDATE):
            deployment = Deployment.model_validate(body)
            for workload in deployment.workloads:
                workload.result.state = self.result_states.get(workload.name, ResultState.OK)
                workload.result.data = self.result_data.get(workload.name, {})
                if workload.result.state == ResultState.ERROR:
                    workload.result.message = "boom"
            self.deployments[(twin_id, deployment.contract_id)] = deployment
            return None
        if method == DEPLOYMENT_GET:
            stored = self.deployments.get((twin_id, body["contract_id"]))
            if stored is None:
                raise NodeRPCError(twin_id, method, "deployment not found")
            return stored.model_dump(mode="json")
        if method == DEPLOYMENT_DELETE:
            self.deployments.pop((twin_id, body["contract_id"]), None)
            return None
        raise NodeRPCError(twin_id, method, "unknown method")

    def methods(self, twin_id: int) -> list[str]:
        return [method for twin, method in self.calls if twin == twin_id]


def gateway_name_workload(name: str = "name", passthrough: bool = True) -> Workload:
    return Workload.from_payload(
        name,
        GatewayNameProxy(
            name=name, tls_passthrough=passthrough, backends=["http://1.1.1.1"]
        ),
    )


def gateway_fqdn_workload(name: str = "fqdn") -> Workload:
    return Workload.from_payload(
        name,
        GatewayFQDNProxy(fqdn="a.b.com", backends=["http://1.1.1.1"]),
    )


def make_deployment(*workloads: Workload, version: int = 0) -> Deployment:
    deployment = Deployment(twin_id=TWIN_ID, version=version, workloads=list(workloads))
    for workload in deployment.workloads:
        workload.version = version
    return deployment
