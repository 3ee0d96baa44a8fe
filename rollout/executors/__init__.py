#!/usr/bin/env python3
"""
Executor factory and package exports.
"""

from .base import AuthenticationError, BaseExecutor, ExecutorError, ExecutorTimeout
from .local import LocalExecutor
from .ssh import RemoteExecutor


def is_remote_host(host_config):
    """A host is remote when it names an ssh_host."""
    return host_config.get('ssh_host') is not None


def get_executor(config, host_config):
    """
    Factory function to create appropriate executor.

    Args:
        config: Deployment configuration dict
        host_config: Host configuration dict (credentials already applied)

    Returns:
        LocalExecutor or RemoteExecutor instance
    """
    if is_remote_host(host_config):
        connect_timeout = config.get('transport', {}).get('connect_timeout', 10)
        return RemoteExecutor(host_config, connect_timeout=connect_timeout)
    return LocalExecutor()


__all__ = [
    'AuthenticationError', 'BaseExecutor', 'ExecutorError', 'ExecutorTimeout',
    'LocalExecutor', 'RemoteExecutor', 'get_executor', 'is_remote_host'
]
