#!/usr/bin/env python3
"""
Local executor for hosts on this machine (development and single-box installs).
"""

import shutil
import subprocess
from pathlib import Path

from .base import BaseExecutor, ExecutorError, ExecutorTimeout
from ..deployment.utils import file_digest


class LocalExecutor(BaseExecutor):
    """Runs commands with subprocess and copies files with shutil."""

    def run(self, command, timeout):
        try:
            result = subprocess.run(command, shell=True, capture_output=True, text=True, timeout=timeout)
        except subprocess.TimeoutExpired as e:
            raise ExecutorTimeout(f"Command timed out after {timeout}s: {command}") from e
        return result.stdout, result.stderr, result.returncode

    def upload(self, local_path, remote_path, timeout):
        target = Path(remote_path)
        target.parent.mkdir(parents=True, exist_ok=True)
        try:
            shutil.copy2(local_path, target)
        except OSError as e:
            raise ExecutorError(f"Copy failed: {e}") from e
        return str(target)

    def file_digest(self, remote_path, timeout):
        if not Path(remote_path).exists():
            return None
        return file_digest(remote_path)
