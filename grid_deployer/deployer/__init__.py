"""Reconciliation engine: deployer, validator and deployment manager."""

from .deployer import Deployer, ReconciliationPlan
from .manager import DeploymentManager
from .polling import (
    PollPolicy,
    RetryPolicy,
    WorkloadState,
    WorkloadTracker,
    wait_for_results,
    with_retry,
)
from .validator import DefaultValidator, PermissiveValidator, Validator

__all__ = [
    "DefaultValidator",
    "Deployer",
    "DeploymentManager",
    "PermissiveValidator",
    "PollPolicy",
    "ReconciliationPlan",
    "RetryPolicy",
    "Validator",
    "WorkloadState",
    "WorkloadTracker",
    "wait_for_results",
    "with_retry",
]
