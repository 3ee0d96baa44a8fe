#!/usr/bin/env python3
"""
Local storage backend: a directory on this machine.
"""

import shutil
from pathlib import Path

from .base import StorageBackend


class LocalStorage(StorageBackend):
    """Copies files into storage_dir, keyed by relative path."""

    def __init__(self, config):
        self.storage_dir = Path(config.get('storage_dir', './deployment-records'))

    def upload_file(self, local_path, storage_key):
        target = self.storage_dir / storage_key
        if Path(local_path).resolve() == target.resolve():
            return str(target)
        target.parent.mkdir(parents=True, exist_ok=True)
        shutil.copy2(local_path, target)
        return str(target)
