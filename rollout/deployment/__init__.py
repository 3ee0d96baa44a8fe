"""
Deployment and orchestration package.

This package contains modules for building, transferring, backing up,
deploying, verifying and rolling back an application on a single host.
"""

__all__ = ['orchestrator', 'backup', 'lock', 'transport', 'health', 'build', 'records', 'models', 'errors', 'utils']
