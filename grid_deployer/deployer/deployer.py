"""Deployer - reconcile node contracts and node deployments.

For every node in the new map, one task brings the on-chain contract and the
deployment held by the node agent in line with the candidate::

    sign -> create/update contract -> push -> poll results -> validate

Nodes only present in the old map are deleted from the agent, then their
contract is cancelled. Failures are collected per node; nodes that succeeded
keep their side effects.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from contextlib import nullcontext
from dataclasses import dataclass, field
from typing import TypeVar

import pydantic

from ..config import settings
from ..core.exceptions import (
    CancellationError,
    ChainError,
    GridError,
    ReconciliationError,
    StateError,
)
from ..grid.chain import ChainClient
from ..grid.identity import Signer
from ..grid.models import Deployment
from ..node.client import NodeClient
from ..node.pool import NodeClientPool
from ..observability.logging import NodeLoggerAdapter
from ..observability.telemetry import record_exception, traced_operation
from .polling import PollPolicy, RetryPolicy, wait_for_results, with_retry
from .validator import DefaultValidator, Validator

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class ReconciliationPlan:
    """What one deploy call does to each node."""

    create: set[int] = field(default_factory=set)
    update: set[int] = field(default_factory=set)
    unchanged: set[int] = field(default_factory=set)
    delete: set[int] = field(default_factory=set)

    @classmethod
    def build(
        cls, old: dict[int, Deployment], new: dict[int, Deployment]
    ) -> "ReconciliationPlan":
        """Diff signed candidates against the previously committed deployments."""
        plan = cls()
        for node_id, deployment in new.items():
            previous = old.get(node_id)
            if previous is None or previous.contract_id == 0:
                plan.create.add(node_id)
            elif previous.challenge_hex() == deployment.challenge_hex():
                plan.unchanged.add(node_id)
            else:
                plan.update.add(node_id)
        for node_id, previous in old.items():
            if node_id not in new:
                plan.delete.add(node_id)
        return plan


class _Step:
    """Tracks which stage a node task is in, for cancellation reports."""

    def __init__(self) -> None:
        self.stage = "start"


class Deployer:
    """Executes the reconciliation protocol for one owner twin."""

    def __init__(
        self,
        identity: Signer,
        twin_id: int,
        pool: NodeClientPool,
        validator: Validator | None = None,
        retry: RetryPolicy | None = None,
        poll: PollPolicy | None = None,
        self_funded: bool | None = None,
    ):
        """Initialize deployer.

        Args:
            identity: Owner identity signing deployments and chain calls
            twin_id: Owner twin ID
            pool: Node client pool
            validator: Result acceptance check (DefaultValidator if None)
            retry: Transport retry policy (from settings if None)
            poll: Result polling budget (from settings if None)
            self_funded: Contract funding flag (from settings if None)
        """
        self.identity = identity
        self.twin_id = twin_id
        self.pool = pool
        self.validator = validator or DefaultValidator()
        self.retry = retry or RetryPolicy.from_settings()
        self.poll = poll or PollPolicy.from_settings()
        self.self_funded = settings.self_funded if self_funded is None else self_funded

    def plan(
        self, old: dict[int, Deployment], new: dict[int, Deployment]
    ) -> ReconciliationPlan:
        """Sign the candidates in ``new`` and diff them against ``old``.

        Raises:
            StateError: If a candidate has duplicate workload names
        """
        for node_id, deployment in new.items():
            deployment.node_id = node_id
            deployment.check_names()
            deployment.sign(self.twin_id, self.identity)
        return ReconciliationPlan.build(old, new)

    async def deploy(
        self,
        chain: ChainClient,
        old: dict[int, Deployment],
        new: dict[int, Deployment],
        deadline: float | None = None,
    ) -> dict[int, int]:
        """Reconcile nodes towards ``new``.

        Candidates in ``new`` are stamped in place with their signature,
        contract ID and the results returned by the agent.

        Args:
            chain: Chain client
            old: Previously committed deployments per node
            new: Desired deployments per node
            deadline: Event loop time after which outstanding node tasks are
                cancelled (None for no deadline)

        Returns:
            Contract ID per node in ``new``

        Raises:
            StateError: Before any side effect, on an invalid candidate
            ReconciliationError: If any node failed; carries the partial map
        """
        plan = self.plan(old, new)
        logger.info(
            f"Reconciling {len(new) + len(plan.delete)} node(s): "
            f"create={sorted(plan.create)} update={sorted(plan.update)} "
            f"unchanged={sorted(plan.unchanged)} delete={sorted(plan.delete)}"
        )

        node_ids: list[int] = []
        tasks: list[Awaitable[int | None]] = []
        for node_id, deployment in new.items():
            node_ids.append(node_id)
            tasks.append(
                self._guard(
                    node_id,
                    deadline,
                    lambda step, n=node_id, d=deployment: self._deploy_node(
                        chain, n, d, old.get(n), step
                    ),
                )
            )
        for node_id in sorted(plan.delete):
            node_ids.append(node_id)
            tasks.append(
                self._guard(
                    node_id,
                    deadline,
                    lambda step, n=node_id: self._delete_node(chain, n, old[n], step),
                )
            )

        results = await asyncio.gather(*tasks, return_exceptions=True)

        contracts: dict[int, int] = {}
        errors: dict[int, GridError] = {}
        for node_id, result in zip(node_ids, results):
            if isinstance(result, GridError):
                errors[node_id] = result
            elif isinstance(result, BaseException):
                raise result
            elif result is not None:
                contracts[node_id] = result

        if errors:
            logger.error(
                f"Reconciliation finished with {len(errors)} failed node(s): "
                f"{sorted(errors)}"
            )
            raise ReconciliationError(errors, contracts)

        logger.info(f"Reconciliation complete: {contracts}")
        return contracts

    async def cancel(
        self,
        chain: ChainClient,
        deployments: dict[int, Deployment],
        deadline: float | None = None,
    ) -> None:
        """Delete every given deployment and cancel its contract."""
        await self.deploy(chain, deployments, {}, deadline)

    async def _guard(
        self,
        node_id: int,
        deadline: float | None,
        run: Callable[[_Step], Awaitable[T]],
    ) -> T:
        """Run one node task under the caller deadline."""
        step = _Step()
        log = NodeLoggerAdapter(logger, node_id)
        with traced_operation("deployer.node", {"grid.node_id": str(node_id)}):
            try:
                timeout = (
                    asyncio.timeout_at(deadline) if deadline is not None else nullcontext()
                )
                async with timeout:
                    return await run(step)
            except asyncio.TimeoutError:
                log.error(f"Deadline expired during {step.stage}")
                raise CancellationError(node_id, step.stage) from None
            except GridError as e:
                log.error(f"Failed during {step.stage}: {e}")
                record_exception(e)
                raise
            except Exception as e:
                # Node failures are reported per node so the partial map survives
                log.exception(f"Unexpected {type(e).__name__} during {step.stage}")
                record_exception(e)
                raise StateError(
                    f"Node {node_id} failed during {step.stage}: "
                    f"{type(e).__name__}: {e}"
                ) from e

    async def _deploy_node(
        self,
        chain: ChainClient,
        node_id: int,
        deployment: Deployment,
        previous: Deployment | None,
        step: _Step,
    ) -> int:
        log = NodeLoggerAdapter(logger, node_id)
        deployment_hash = deployment.challenge_hex()
        previous_contract = previous.contract_id if previous else 0

        if previous is not None and previous_contract:
            if previous.challenge_hex() == deployment_hash:
                log.debug(f"Unchanged, keeping contract {previous_contract}")
                deployment.contract_id = previous_contract
                for workload in deployment.workloads:
                    known = previous.get_workload(workload.name)
                    if known is not None:
                        workload.result = known.result.model_copy(deep=True)
                return previous_contract

        step.stage = "resolve"
        client = await self._node_client(chain, node_id, log)

        step.stage = "contract"
        created = not previous_contract
        if created:
            try:
                public_ips = deployment.count_public_ips()
            except pydantic.ValidationError as e:
                raise StateError(
                    f"Public IP workload on node {node_id} does not decode: "
                    f"{e.error_count()} error(s)"
                ) from e
            contract_id = await self._chain_call(
                "create_node_contract",
                lambda: chain.create_node_contract(
                    self.identity,
                    node_id,
                    deployment_hash,
                    public_ips or None,
                    deployment.version,
                    self.self_funded,
                ),
                log,
            )
            log.info(f"Created contract {contract_id}")
        else:
            contract_id = await self._chain_call(
                "update_node_contract",
                lambda: chain.update_node_contract(
                    self.identity, previous_contract, deployment_hash, deployment.version
                ),
                log,
            )
            log.info(f"Updated contract {contract_id} to version {deployment.version}")
        deployment.contract_id = contract_id

        step.stage = "push"
        try:
            if created:
                await with_retry(
                    lambda: client.deployment_deploy(deployment),
                    self.retry,
                    "deployment.deploy",
                    log,
                )
            else:
                await with_retry(
                    lambda: client.deployment_update(deployment),
                    self.retry,
                    "deployment.update",
                    log,
                )
        except Exception as e:
            if created:
                revert_error = await self._revert_contract(chain, contract_id, log)
                if revert_error is None:
                    deployment.contract_id = 0
                else:
                    # Contract stays on the candidate so the caller keeps tracking it
                    raise ChainError(
                        "cancel_contract",
                        f"contract {contract_id} is still active after the push "
                        f"failed ({e})",
                        revert_error,
                    ) from e
            raise

        step.stage = "poll"
        returned = await wait_for_results(client, deployment, self.poll, self.retry, log)
        for workload in deployment.workloads:
            reported = returned.get_workload(workload.name)
            if reported is not None:
                workload.result = reported.result.model_copy(deep=True)

        step.stage = "validate"
        self.validator.validate(deployment, returned)

        log.info(f"Deployed version {deployment.version} under contract {contract_id}")
        return contract_id

    async def _delete_node(
        self,
        chain: ChainClient,
        node_id: int,
        previous: Deployment,
        step: _Step,
    ) -> None:
        log = NodeLoggerAdapter(logger, node_id)
        contract_id = previous.contract_id
        if not contract_id:
            return None

        step.stage = "resolve"
        client = await self._node_client(chain, node_id, log)

        # A contract is only cancelled once the agent dropped the deployment
        step.stage = "delete"
        await with_retry(
            lambda: client.deployment_delete(contract_id),
            self.retry,
            "deployment.delete",
            log,
        )

        step.stage = "cancel"
        await self._chain_call(
            "cancel_contract",
            lambda: chain.cancel_contract(self.identity, contract_id),
            log,
        )
        log.info(f"Deleted deployment and cancelled contract {contract_id}")
        return None

    async def _node_client(
        self,
        chain: ChainClient,
        node_id: int,
        log: logging.LoggerAdapter,
    ) -> NodeClient:
        return await with_retry(
            lambda: self.pool.get_node_client(chain, node_id),
            self.retry,
            "get_node_client",
            log,
        )

    async def _chain_call(
        self,
        operation: str,
        call: Callable[[], Awaitable[T]],
        log: logging.LoggerAdapter,
    ) -> T:
        """Run a chain call; foreign exceptions become ChainError."""

        async def attempt() -> T:
            try:
                return await call()
            except GridError:
                raise
            except Exception as e:
                raise ChainError(operation, "chain client raised", e) from e

        return await with_retry(attempt, self.retry, operation, log)

    async def _revert_contract(
        self,
        chain: ChainClient,
        contract_id: int,
        log: logging.LoggerAdapter,
    ) -> GridError | None:
        """Cancel a contract created in this call whose push failed.

        Returns:
            None once the contract is cancelled, else the cancel error
        """
        try:
            await self._chain_call(
                "cancel_contract",
                lambda: chain.cancel_contract(self.identity, contract_id),
                log,
            )
        except GridError as e:
            log.error(f"Push failed and contract {contract_id} could not be cancelled: {e}")
            return e
        log.warning(f"Push failed, cancelled new contract {contract_id}")
        return None
