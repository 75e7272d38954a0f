"""Grid deployer - reconcile node contracts and node deployments."""

from .deployer import Deployer, DeploymentManager

__all__ = ["Deployer", "DeploymentManager"]
