"""
Storage backend abstraction package.

Deployment records are published to a local directory or to S3.
"""

from .base import StorageBackend
from .local import LocalStorage
from .s3 import S3Storage
from ..deployment.errors import ConfigError


def get_storage_backend(config):
    """Factory function to get appropriate storage backend."""
    deployment = config.get('deployment', {})
    storage_mode = deployment.get('storage_backend', 'local')

    if storage_mode == 'local':
        return LocalStorage(deployment)
    elif storage_mode == 's3':
        return S3Storage(config.get('s3', {}))
    else:
        raise ConfigError(f"Unknown storage backend: {storage_mode}")


__all__ = ['StorageBackend', 'LocalStorage', 'S3Storage', 'get_storage_backend']
