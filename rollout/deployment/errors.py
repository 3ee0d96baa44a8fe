#!/usr/bin/env python3
"""
Error taxonomy for deployments.

Errors raised before BackingUp leave the live deployment untouched.
Errors raised after it either trigger a rollback or end the attempt
as a manual-intervention incident.
"""


class DeploymentError(Exception):
    """Base class for all deployment failures."""


class ConfigError(DeploymentError):
    """Missing or invalid configuration (host, credentials, release file)."""


class BuildError(DeploymentError):
    """Artifact construction failed."""


class TransportError(DeploymentError):
    """Transfer, authentication, timeout or digest mismatch."""


class BackupError(DeploymentError):
    """Snapshot of the live deployment could not be stored."""


class InstallError(DeploymentError):
    """Unpacking the artifact into the live directory failed."""


class SupervisorError(DeploymentError):
    """Process reload/restart failed or a worker never came online."""


class HealthCheckFailure(DeploymentError):
    """Post-deploy probe reported the service unhealthy."""

    def __init__(self, result):
        super().__init__(f"Service unhealthy: {result.describe()}")
        self.result = result


class RestoreError(DeploymentError):
    """Rollback target missing or corrupt."""


class ConcurrentDeploymentError(DeploymentError):
    """A deployment is already in progress on this host."""


class InvalidTransitionError(DeploymentError):
    """State machine asked to make a transition outside its table."""
