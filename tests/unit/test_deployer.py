"""Tests for the reconciliation engine in grid_deployer/deployer/deployer.py.

Tests cover:
- Contract creation and first push for new nodes
- Contract update and update push for changed nodes
- No chain or RPC traffic for unchanged nodes
- Per-node failure isolation and the aggregate error
- Deletion ordering (delete RPC before contract cancel)
- Deadlines and invalid candidates
- Foreign exceptions and failed contract reverts
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock, call

import pytest

from grid_deployer.core.exceptions import (
    CancellationError,
    ChainError,
    NodeRPCError,
    ReconciliationError,
    StateError,
    TransportError,
    ValidationError,
)
from grid_deployer.deployer import (
    Deployer,
    PermissiveValidator,
    PollPolicy,
    ReconciliationPlan,
    RetryPolicy,
    Validator,
)
from grid_deployer.grid import Ed25519Identity, PublicIP, ResultState, Workload
from grid_deployer.node import (
    DEPLOYMENT_DELETE,
    DEPLOYMENT_DEPLOY,
    DEPLOYMENT_GET,
    DEPLOYMENT_UPDATE,
    NodeClientPool,
)
from tests.helpers import (
    TWIN_ID,
    FakeNodeAgent,
    gateway_fqdn_workload,
    gateway_name_workload,
    make_deployment,
)


async def committed(deployer: Deployer, chain: AsyncMock, node_id: int, *workloads):
    """Deploy ``workloads`` to a fresh node and return the stamped deployment."""
    deployment = make_deployment(*workloads)
    await deployer.deploy(chain, {}, {node_id: deployment})
    chain.reset_mock()
    return deployment


class TestReconciliationPlan:
    """Test diffing old and new deployment maps."""

    def test_build(self, identity: Ed25519Identity) -> None:
        unchanged = make_deployment(gateway_name_workload())
        unchanged.sign(TWIN_ID, identity)
        unchanged.contract_id = 30
        changed_old = make_deployment(gateway_name_workload())
        changed_old.contract_id = 40
        no_contract = make_deployment(gateway_name_workload())

        old = {30: unchanged, 40: changed_old, 50: no_contract, 60: make_deployment()}
        new = {
            10: make_deployment(gateway_name_workload()),
            30: unchanged.model_copy(deep=True),
            40: make_deployment(gateway_fqdn_workload()),
            50: make_deployment(gateway_name_workload()),
        }

        plan = ReconciliationPlan.build(old, new)

        assert plan.create == {10, 50}
        assert plan.unchanged == {30}
        assert plan.update == {40}
        assert plan.delete == {60}


class TestDeployCreate:
    """Test the create path for nodes without a contract."""

    @pytest.mark.asyncio
    async def test_single_node(
        self, deployer: Deployer, chain: AsyncMock, agent: FakeNodeAgent
    ) -> None:
        """Node 10 gets contract 100 and an ok result."""
        deployment = make_deployment(gateway_name_workload())
        chain.create_node_contract.side_effect = None
        chain.create_node_contract.return_value = 100

        contracts = await deployer.deploy(chain, {}, {10: deployment})

        assert contracts == {10: 100}
        assert deployment.contract_id == 100
        assert deployment.node_id == 10
        assert deployment.workloads[0].result.state == ResultState.OK
        assert agent.methods(13) == [DEPLOYMENT_DEPLOY, DEPLOYMENT_GET]

    @pytest.mark.asyncio
    async def test_two_nodes(self, deployer: Deployer, chain: AsyncMock) -> None:
        dl1 = make_deployment(gateway_name_workload())
        dl2 = make_deployment(gateway_fqdn_workload())

        contracts = await deployer.deploy(chain, {}, {10: dl1, 20: dl2})

        assert contracts == {10: 100, 20: 200}

    @pytest.mark.asyncio
    async def test_create_arguments(
        self, deployer: Deployer, chain: AsyncMock, identity: Ed25519Identity
    ) -> None:
        """Contract is created with the signed hash, no public IPs and self funding."""
        deployment = make_deployment(gateway_name_workload())

        await deployer.deploy(chain, {}, {10: deployment})

        chain.create_node_contract.assert_awaited_once_with(
            identity, 10, deployment.challenge_hex(), None, 0, True
        )

    @pytest.mark.asyncio
    async def test_public_ips_requested(self, deployer: Deployer, chain: AsyncMock) -> None:
        deployment = make_deployment(
            Workload.from_payload("ip", PublicIP(v4=True)), gateway_name_workload()
        )

        await deployer.deploy(chain, {}, {10: deployment})

        assert chain.create_node_contract.await_args.args[3] == 1

    @pytest.mark.asyncio
    async def test_contract_created_once_before_push(
        self, identity: Ed25519Identity, retry: RetryPolicy, poll: PollPolicy
    ) -> None:
        """Create exactly once, then push exactly once, in that order."""
        events = MagicMock()
        chain = AsyncMock()
        chain.get_node_twin.return_value = 13
        chain.create_node_contract.return_value = 100
        agent = FakeNodeAgent()
        original_call = agent.call

        async def recording_call(twin_id, method, body):
            events.rpc(method)
            return await original_call(twin_id, method, body)

        async def recording_create(*args):
            events.create()
            return 100

        agent.call = recording_call
        chain.create_node_contract.side_effect = recording_create
        deployer = Deployer(identity, TWIN_ID, NodeClientPool(agent), retry=retry, poll=poll)

        await deployer.deploy(chain, {}, {10: make_deployment(gateway_name_workload())})

        assert events.mock_calls == [
            call.create(),
            call.rpc(DEPLOYMENT_DEPLOY),
            call.rpc(DEPLOYMENT_GET),
        ]

    @pytest.mark.asyncio
    async def test_signature_verifies(
        self, deployer: Deployer, chain: AsyncMock, identity: Ed25519Identity
    ) -> None:
        deployment = make_deployment(gateway_name_workload())
        await deployer.deploy(chain, {}, {10: deployment})
        assert deployment.verify(TWIN_ID, identity.public_bytes())


class TestDeployUpdate:
    """Test updates and unchanged nodes."""

    @pytest.mark.asyncio
    async def test_unchanged_hash_skips_chain_and_rpc(
        self, deployer: Deployer, chain: AsyncMock, agent: FakeNodeAgent
    ) -> None:
        old = await committed(deployer, chain, 10, gateway_name_workload())
        agent.calls.clear()
        candidate = old.model_copy(deep=True)

        contracts = await deployer.deploy(chain, {10: old}, {10: candidate})

        assert contracts == {10: 100}
        chain.update_node_contract.assert_not_awaited()
        chain.create_node_contract.assert_not_awaited()
        assert agent.calls == []
        assert candidate.workloads[0].result.state == ResultState.OK

    @pytest.mark.asyncio
    async def test_changed_hash_updates_contract_and_pushes_update(
        self,
        deployer: Deployer,
        chain: AsyncMock,
        agent: FakeNodeAgent,
        identity: Ed25519Identity,
    ) -> None:
        old = await committed(deployer, chain, 10, gateway_name_workload(passthrough=True))
        agent.calls.clear()
        candidate = make_deployment(gateway_name_workload(passthrough=False), version=1)

        contracts = await deployer.deploy(chain, {10: old}, {10: candidate})

        assert contracts == {10: 100}
        chain.create_node_contract.assert_not_awaited()
        chain.update_node_contract.assert_awaited_once_with(
            identity, 100, candidate.challenge_hex(), 1
        )
        assert agent.methods(13) == [DEPLOYMENT_UPDATE, DEPLOYMENT_GET]

    @pytest.mark.asyncio
    async def test_update_failure_keeps_contract(
        self, deployer: Deployer, chain: AsyncMock, agent: FakeNodeAgent
    ) -> None:
        """A failed update push never cancels the existing contract."""
        old = await committed(deployer, chain, 10, gateway_name_workload(passthrough=True))
        agent.failures[(13, DEPLOYMENT_UPDATE)] = NodeRPCError(13, DEPLOYMENT_UPDATE, "bad")
        candidate = make_deployment(gateway_name_workload(passthrough=False), version=1)

        with pytest.raises(ReconciliationError) as exc_info:
            await deployer.deploy(chain, {10: old}, {10: candidate})

        assert isinstance(exc_info.value.errors[10], NodeRPCError)
        chain.cancel_contract.assert_not_awaited()


class TestDeployFailures:
    """Test per-node failure handling."""

    @pytest.mark.asyncio
    async def test_push_transport_error_on_one_node(
        self, deployer: Deployer, chain: AsyncMock, agent: FakeNodeAgent
    ) -> None:
        """Node 20's push fails: node 10 still succeeds, error names node 20."""
        chain.create_node_contract.side_effect = lambda identity, node_id, *a: {
            10: 100,
            20: 200,
        }[node_id]
        agent.failures[(23, DEPLOYMENT_DEPLOY)] = TransportError("twin 23")
        dl1 = make_deployment(gateway_name_workload())
        dl2 = make_deployment(gateway_fqdn_workload())

        with pytest.raises(ReconciliationError) as exc_info:
            await deployer.deploy(chain, {}, {10: dl1, 20: dl2})

        error = exc_info.value
        assert error.contracts == {10: 100}
        assert set(error.errors) == {20}
        assert isinstance(error.errors[20], TransportError)
        assert "node 20" in str(error)

    @pytest.mark.asyncio
    async def test_transport_error_is_retried(
        self, deployer: Deployer, chain: AsyncMock, agent: FakeNodeAgent
    ) -> None:
        agent.failures[(23, DEPLOYMENT_DEPLOY)] = TransportError("twin 23")
        with pytest.raises(ReconciliationError):
            await deployer.deploy(chain, {}, {20: make_deployment(gateway_name_workload())})

        # retry fixture allows two attempts
        assert agent.methods(23).count(DEPLOYMENT_DEPLOY) == 2

    @pytest.mark.asyncio
    async def test_failed_first_push_cancels_new_contract(
        self, deployer: Deployer, chain: AsyncMock, agent: FakeNodeAgent,
        identity: Ed25519Identity,
    ) -> None:
        agent.failures[(23, DEPLOYMENT_DEPLOY)] = NodeRPCError(23, DEPLOYMENT_DEPLOY, "no")
        deployment = make_deployment(gateway_name_workload())

        with pytest.raises(ReconciliationError):
            await deployer.deploy(chain, {}, {20: deployment})

        chain.cancel_contract.assert_awaited_once_with(identity, 200)
        assert deployment.contract_id == 0

    @pytest.mark.asyncio
    async def test_chain_error_aborts_node_before_push(
        self, deployer: Deployer, chain: AsyncMock, agent: FakeNodeAgent
    ) -> None:
        chain.create_node_contract.side_effect = ChainError(
            "create_node_contract", "insufficient funds"
        )

        with pytest.raises(ReconciliationError) as exc_info:
            await deployer.deploy(chain, {}, {10: make_deployment(gateway_name_workload())})

        assert isinstance(exc_info.value.errors[10], ChainError)
        assert agent.calls == []
        chain.create_node_contract.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_foreign_chain_exception_becomes_chain_error(
        self, deployer: Deployer, chain: AsyncMock
    ) -> None:
        chain.create_node_contract.side_effect = RuntimeError("extrinsic failed")

        with pytest.raises(ReconciliationError) as exc_info:
            await deployer.deploy(chain, {}, {10: make_deployment(gateway_name_workload())})

        error = exc_info.value.errors[10]
        assert isinstance(error, ChainError)
        assert "extrinsic failed" in str(error)

    @pytest.mark.asyncio
    async def test_validation_rejection_isolated(
        self, deployer: Deployer, chain: AsyncMock, agent: FakeNodeAgent
    ) -> None:
        """A rejected node does not disturb the other node's contract or results."""
        agent.result_states["fqdn"] = ResultState.ERROR
        dl1 = make_deployment(gateway_name_workload("name"))
        dl2 = make_deployment(gateway_fqdn_workload("fqdn"))

        with pytest.raises(ReconciliationError) as exc_info:
            await deployer.deploy(chain, {}, {10: dl1, 20: dl2})

        error = exc_info.value
        assert error.contracts == {10: 100}
        assert isinstance(error.errors[20], ValidationError)
        assert dl1.contract_id == 100
        assert dl1.workloads[0].result.state == ResultState.OK
        assert dl2.workloads[0].result.state == ResultState.ERROR

    @pytest.mark.asyncio
    async def test_validation_rejection_not_retried(
        self, deployer: Deployer, chain: AsyncMock, agent: FakeNodeAgent
    ) -> None:
        agent.result_states["name"] = ResultState.ERROR
        with pytest.raises(ReconciliationError):
            await deployer.deploy(chain, {}, {10: make_deployment(gateway_name_workload())})
        assert agent.methods(13) == [DEPLOYMENT_DEPLOY, DEPLOYMENT_GET]

    @pytest.mark.asyncio
    async def test_permissive_validator(
        self,
        identity: Ed25519Identity,
        chain: AsyncMock,
        agent: FakeNodeAgent,
        retry: RetryPolicy,
        poll: PollPolicy,
    ) -> None:
        agent.result_states["name"] = ResultState.ERROR
        deployer = Deployer(
            identity,
            TWIN_ID,
            NodeClientPool(agent),
            validator=PermissiveValidator(),
            retry=retry,
            poll=poll,
        )

        contracts = await deployer.deploy(
            chain, {}, {10: make_deployment(gateway_name_workload())}
        )

        assert contracts == {10: 100}

    @pytest.mark.asyncio
    async def test_duplicate_names_fail_before_side_effects(
        self, deployer: Deployer, chain: AsyncMock, agent: FakeNodeAgent
    ) -> None:
        deployment = make_deployment(gateway_name_workload("a"), gateway_fqdn_workload("a"))

        with pytest.raises(StateError):
            await deployer.deploy(chain, {}, {10: deployment})

        chain.create_node_contract.assert_not_awaited()
        assert agent.calls == []

    @pytest.mark.asyncio
    async def test_deadline_reports_cancellation(
        self, deployer: Deployer, chain: AsyncMock
    ) -> None:
        async def slow_create(*args):
            await asyncio.sleep(10)
            return 100

        chain.create_node_contract.side_effect = slow_create
        deadline = asyncio.get_running_loop().time() + 0.05

        with pytest.raises(ReconciliationError) as exc_info:
            await deployer.deploy(
                chain, {}, {10: make_deployment(gateway_name_workload())}, deadline=deadline
            )

        error = exc_info.value.errors[10]
        assert isinstance(error, CancellationError)
        assert error.stage == "contract"

    @pytest.mark.asyncio
    async def test_deadline_during_poll_keeps_contract(
        self,
        identity: Ed25519Identity,
        chain: AsyncMock,
        agent: FakeNodeAgent,
        retry: RetryPolicy,
    ) -> None:
        """Results that never settle are cut off by the deadline, not the budget."""
        agent.result_states["name"] = ResultState.PENDING
        deployer = Deployer(
            identity,
            TWIN_ID,
            NodeClientPool(agent),
            retry=retry,
            poll=PollPolicy(interval=0.01, attempts=10_000, timeout=60.0),
        )
        deployment = make_deployment(gateway_name_workload())
        deadline = asyncio.get_running_loop().time() + 0.1

        with pytest.raises(ReconciliationError) as exc_info:
            await deployer.deploy(chain, {}, {10: deployment}, deadline=deadline)

        error = exc_info.value.errors[10]
        assert isinstance(error, CancellationError)
        assert error.stage == "poll"
        assert deployment.contract_id == 100
        chain.cancel_contract.assert_not_awaited()


class TestForeignExceptions:
    """Exceptions outside the grid taxonomy still fail one node only."""

    @pytest.mark.asyncio
    async def test_malformed_public_ip_payload(
        self, deployer: Deployer, chain: AsyncMock
    ) -> None:
        dl1 = make_deployment(gateway_name_workload())
        dl2 = make_deployment(Workload(name="ip", type="ip", data={"v4": {"not": "a bool"}}))

        with pytest.raises(ReconciliationError) as exc_info:
            await deployer.deploy(chain, {}, {10: dl1, 20: dl2})

        error = exc_info.value
        assert error.contracts == {10: 100}
        assert isinstance(error.errors[20], StateError)
        assert [c.args[1] for c in chain.create_node_contract.await_args_list] == [10]

    @pytest.mark.asyncio
    async def test_rpc_client_exception(
        self,
        deployer: Deployer,
        chain: AsyncMock,
        agent: FakeNodeAgent,
        identity: Ed25519Identity,
    ) -> None:
        agent.failures[(23, DEPLOYMENT_DEPLOY)] = RuntimeError("socket closed")
        dl1 = make_deployment(gateway_name_workload())
        dl2 = make_deployment(gateway_fqdn_workload())

        with pytest.raises(ReconciliationError) as exc_info:
            await deployer.deploy(chain, {}, {10: dl1, 20: dl2})

        error = exc_info.value
        assert error.contracts == {10: 100}
        assert isinstance(error.errors[20], StateError)
        assert "RuntimeError" in str(error.errors[20])
        assert "push" in str(error.errors[20])
        chain.cancel_contract.assert_awaited_once_with(identity, 200)
        assert dl2.contract_id == 0

    @pytest.mark.asyncio
    async def test_validator_exception(
        self,
        identity: Ed25519Identity,
        chain: AsyncMock,
        agent: FakeNodeAgent,
        retry: RetryPolicy,
        poll: PollPolicy,
    ) -> None:
        class BrokenValidator(Validator):
            def validate(self, sent, returned):
                raise KeyError("fqdn")

        deployer = Deployer(
            identity,
            TWIN_ID,
            NodeClientPool(agent),
            validator=BrokenValidator(),
            retry=retry,
            poll=poll,
        )
        deployment = make_deployment(gateway_name_workload())

        with pytest.raises(ReconciliationError) as exc_info:
            await deployer.deploy(chain, {}, {10: deployment})

        error = exc_info.value.errors[10]
        assert isinstance(error, StateError)
        assert "validate" in str(error)
        assert deployment.contract_id == 100


class TestContractRevert:
    """Test cancelling a new contract after a failed first push."""

    @pytest.mark.asyncio
    async def test_failed_revert_keeps_contract_and_reports_it(
        self, deployer: Deployer, chain: AsyncMock, agent: FakeNodeAgent
    ) -> None:
        agent.failures[(13, DEPLOYMENT_DEPLOY)] = NodeRPCError(13, DEPLOYMENT_DEPLOY, "full")
        chain.cancel_contract.side_effect = ChainError("cancel_contract", "rejected")
        deployment = make_deployment(gateway_name_workload())

        with pytest.raises(ReconciliationError) as exc_info:
            await deployer.deploy(chain, {}, {10: deployment})

        error = exc_info.value.errors[10]
        assert isinstance(error, ChainError)
        assert "contract 100 is still active" in str(error)
        assert "full" in str(error)
        assert deployment.contract_id == 100
        chain.cancel_contract.assert_awaited_once()


class TestDeploymentDeletion:
    """Test removal of nodes absent from the new map."""

    @pytest.mark.asyncio
    async def test_delete_then_cancel(
        self,
        deployer: Deployer,
        chain: AsyncMock,
        agent: FakeNodeAgent,
        identity: Ed25519Identity,
    ) -> None:
        old = await committed(deployer, chain, 10, gateway_name_workload())
        agent.calls.clear()

        contracts = await deployer.deploy(chain, {10: old}, {})

        assert contracts == {}
        assert agent.methods(13) == [DEPLOYMENT_DELETE]
        chain.cancel_contract.assert_awaited_once_with(identity, 100)

    @pytest.mark.asyncio
    async def test_failed_delete_keeps_contract(
        self, deployer: Deployer, chain: AsyncMock, agent: FakeNodeAgent
    ) -> None:
        old = await committed(deployer, chain, 10, gateway_name_workload())
        agent.failures[(13, DEPLOYMENT_DELETE)] = NodeRPCError(13, DEPLOYMENT_DELETE, "busy")

        with pytest.raises(ReconciliationError) as exc_info:
            await deployer.cancel(chain, {10: old})

        assert set(exc_info.value.errors) == {10}
        chain.cancel_contract.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_node_without_contract_needs_nothing(
        self, deployer: Deployer, chain: AsyncMock, agent: FakeNodeAgent
    ) -> None:
        await deployer.deploy(chain, {10: make_deployment(gateway_name_workload())}, {})

        assert agent.calls == []
        chain.cancel_contract.assert_not_awaited()
