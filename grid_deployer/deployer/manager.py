"""Deployment manager - stage desired workloads and commit them.

The manager owns the node -> last committed deployment map. Staging is
local; only ``commit`` and ``cancel_all`` reach the chain or the agents.
Both run under one lock, and the committed map is swapped as a whole after
each call so readers never see a half-applied result.
"""

import asyncio
import logging

from ..core.exceptions import NotFoundError, ReconciliationError, StateError
from ..grid.chain import ChainClient
from ..grid.models import Contract, Deployment, ResultState, Workload, WorkloadResult
from .deployer import Deployer

logger = logging.getLogger(__name__)


class DeploymentManager:
    """Stages per-node workloads and drives the deployer on commit.

    Usage:
        manager = DeploymentManager(deployer, chain)
        manager.set_workloads({10: [disk, vm]})
        contracts = await manager.commit()
        vm = manager.get_workload(10, "vm")
        await manager.cancel_all()
    """

    def __init__(self, deployer: Deployer, chain: ChainClient):
        """Initialize manager.

        Args:
            deployer: Deployer acting for the owner twin
            chain: Chain client handed to the deployer
        """
        self.deployer = deployer
        self.chain = chain
        self._deployments: dict[int, Deployment] = {}
        self._staged: dict[int, list[Workload]] = {}
        # Tracked nodes whose last deploy failed after their contract was created
        self._unsettled: set[int] = set()
        self._lock = asyncio.Lock()

    @property
    def twin_id(self) -> int:
        return self.deployer.twin_id

    @property
    def contracts(self) -> dict[int, int]:
        """Contract ID per tracked node."""
        return {n: dl.contract_id for n, dl in self._deployments.items()}

    @property
    def staged_nodes(self) -> set[int]:
        return set(self._staged)

    def set_workloads(self, workloads: dict[int, list[Workload]]) -> None:
        """Stage the desired workload list for each given node.

        Nodes not mentioned keep their current desired content; an empty
        list stages the node's deployment for removal.

        Raises:
            StateError: If a node's list repeats a workload name
        """
        for node_id, node_workloads in workloads.items():
            names = [wl.name for wl in node_workloads]
            duplicated = {name for name in names if names.count(name) > 1}
            if duplicated:
                raise StateError(
                    f"Workload names {sorted(duplicated)} are duplicated on node {node_id}"
                )

        for node_id, node_workloads in workloads.items():
            self._staged[node_id] = [wl.model_copy(deep=True) for wl in node_workloads]
            logger.debug(f"Staged {len(node_workloads)} workload(s) for node {node_id}")

    def get_deployment(self, node_id: int) -> Deployment:
        """Last committed deployment of a node.

        Raises:
            NotFoundError: If the node is not tracked
        """
        deployment = self._deployments.get(node_id)
        if deployment is None:
            raise NotFoundError(node_id)
        return deployment.model_copy(deep=True)

    def get_contract(self, node_id: int) -> Contract:
        """Contract record of a tracked node."""
        deployment = self._deployments.get(node_id)
        if deployment is None:
            raise NotFoundError(node_id)
        return deployment.to_contract()

    def get_workload(self, node_id: int, name: str) -> Workload:
        """Last known state of a workload, result included.

        Raises:
            NotFoundError: If the node or the workload is not tracked
        """
        deployment = self._deployments.get(node_id)
        workload = deployment.get_workload(name) if deployment else None
        if workload is None:
            raise NotFoundError(node_id, name)
        return workload.model_copy(deep=True)

    async def commit(self, deadline: float | None = None) -> dict[int, int]:
        """Reconcile the staged content with the grid.

        Args:
            deadline: Event loop time bounding the per-node tasks

        Returns:
            Contract ID per tracked node

        Raises:
            ReconciliationError: If some nodes failed; successful nodes are
                committed all the same
        """
        async with self._lock:
            old = dict(self._deployments)
            new: dict[int, Deployment] = {}
            for node_id in sorted(set(old) | set(self._staged)):
                retry = node_id in self._unsettled
                if node_id not in self._staged:
                    if retry:
                        new[node_id] = self._candidate(
                            old[node_id], old[node_id].workloads, retry=True
                        )
                    else:
                        new[node_id] = old[node_id].model_copy(deep=True)
                elif self._staged[node_id]:
                    new[node_id] = self._candidate(
                        old.get(node_id), self._staged[node_id], retry=retry
                    )

            try:
                contracts = await self.deployer.deploy(self.chain, old, new, deadline)
            except ReconciliationError as e:
                self._apply(old, new, e.contracts, set(e.errors))
                raise

            self._apply(old, new, contracts, set())
            return self.contracts

    async def cancel_all(self, deadline: float | None = None) -> None:
        """Delete every tracked deployment and cancel its contract.

        Nodes whose deletion failed stay tracked with their contract.

        Raises:
            ReconciliationError: If some nodes could not be deleted
        """
        async with self._lock:
            old = dict(self._deployments)
            try:
                await self.deployer.cancel(self.chain, old, deadline)
            except ReconciliationError as e:
                self._apply(old, {}, {}, set(e.errors))
                raise
            self._apply(old, {}, {}, set())

    def _candidate(
        self,
        previous: Deployment | None,
        workloads: list[Workload],
        retry: bool = False,
    ) -> Deployment:
        """Build the deployment to send for a node.

        Unchanged content reuses the previous version. Otherwise the version
        is bumped and every new or modified workload takes the new version.
        With ``retry`` the version is always bumped and workloads without an
        ok result are sent again as well.
        """
        if previous is None:
            return Deployment(
                twin_id=self.twin_id,
                workloads=[wl.model_copy(deep=True) for wl in workloads],
            )

        known = {wl.name: wl for wl in previous.workloads}
        candidate = previous.model_copy(deep=True)
        candidate.workloads = []
        for workload in workloads:
            workload = workload.model_copy(deep=True)
            prior = known.get(workload.name)
            if prior is not None:
                workload.version = prior.version
                workload.result = prior.result.model_copy(deep=True)
            candidate.workloads.append(workload)

        if not retry and candidate.challenge_hex() == previous.challenge_hex():
            return candidate

        candidate.version = previous.version + 1
        for workload in candidate.workloads:
            prior = known.get(workload.name)
            if (
                prior is None
                or prior.challenge() != workload.challenge()
                or (retry and prior.result.state != ResultState.OK)
            ):
                workload.version = candidate.version
                workload.result = WorkloadResult()
        return candidate

    def _apply(
        self,
        old: dict[int, Deployment],
        new: dict[int, Deployment],
        contracts: dict[int, int],
        failed: set[int],
    ) -> None:
        """Swap in the committed map after a deployer call."""
        committed = dict(self._deployments)

        for node_id in contracts:
            committed[node_id] = new[node_id]
            self._staged.pop(node_id, None)
            self._unsettled.discard(node_id)

        for node_id in old:
            if node_id not in new and node_id not in failed:
                committed.pop(node_id, None)
                self._staged.pop(node_id, None)
                self._unsettled.discard(node_id)

        for node_id in failed:
            # Contract created in this call is still live; track it so the
            # next commit redeploys under it instead of orphaning it
            if node_id in new and node_id not in old and new[node_id].contract_id:
                logger.warning(
                    f"Node {node_id} failed after contract {new[node_id].contract_id} "
                    f"was created, keeping it tracked"
                )
                committed[node_id] = new[node_id]
                self._staged.pop(node_id, None)
                self._unsettled.add(node_id)

        for node_id in [n for n, wls in self._staged.items() if not wls]:
            if node_id not in committed:
                del self._staged[node_id]

        self._deployments = committed
