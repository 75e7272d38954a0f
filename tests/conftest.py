"""Shared pytest fixtures for the test suite.

Provides a deterministic identity, a mocked chain client, an in-process
fake node agent and deployer/manager instances wired to them.
"""

import sys
from pathlib import Path
from unittest.mock import AsyncMock

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))

from grid_deployer.deployer import Deployer, DeploymentManager, PollPolicy, RetryPolicy
from grid_deployer.grid import ChainClient, Ed25519Identity
from grid_deployer.node import NodeClientPool

from tests.helpers import TWIN_ID, FakeNodeAgent, node_twin


@pytest.fixture
def identity() -> Ed25519Identity:
    """Identity with a fixed seed so signatures are reproducible."""
    return Ed25519Identity.from_seed(bytes(range(32)))


@pytest.fixture
def chain() -> AsyncMock:
    """Chain client handing out contract IDs of 10x the node ID."""
    chain = AsyncMock(spec=ChainClient)
    chain.get_node_twin.side_effect = node_twin
    chain.create_node_contract.side_effect = (
        lambda identity, node_id, *args: node_id * 10
    )
    chain.update_node_contract.side_effect = (
        lambda identity, contract_id, *args: contract_id
    )
    chain.cancel_contract.return_value = None
    return chain


@pytest.fixture
def agent() -> FakeNodeAgent:
    return FakeNodeAgent()


@pytest.fixture
def retry() -> RetryPolicy:
    return RetryPolicy(attempts=2, backoff_base=0.0, backoff_max=0.0)


@pytest.fixture
def poll() -> PollPolicy:
    return PollPolicy(interval=0.0, attempts=3, timeout=5.0)


@pytest.fixture
def deployer(
    identity: Ed25519Identity,
    agent: FakeNodeAgent,
    retry: RetryPolicy,
    poll: PollPolicy,
) -> Deployer:
    return Deployer(
        identity,
        TWIN_ID,
        NodeClientPool(agent),
        retry=retry,
        poll=poll,
        self_funded=True,
    )


@pytest.fixture
def manager(deployer: Deployer, chain: AsyncMock) -> DeploymentManager:
    return DeploymentManager(deployer, chain)
