#!/usr/bin/env python3
"""
Host-scoped deployment lock.

Only one attempt may be in flight per host, whichever process or machine
started it. The lock lives under the host's deploy_root: an flock'd file
for hosts on this machine, an atomically created directory on remote hosts.
"""

import fcntl
import os
import shlex
import socket

from .errors import TransportError
from ..executors import ExecutorError

LOCK_NAME = ".rollout.lock"


def lock_owner(attempt_id):
    return f"{attempt_id} {os.getpid()}@{socket.gethostname()}"


class LocalHostLock:
    """Exclusive non-blocking flock on <deploy_root>/.rollout.lock."""

    def __init__(self, host):
        self.host = host
        self.path = os.path.join(host.deploy_root, LOCK_NAME)
        self._fd = None

    def acquire(self, attempt_id):
        """Returns True if the lock was taken, False if another attempt holds it."""
        os.makedirs(self.host.deploy_root, exist_ok=True)
        fd = os.open(self.path, os.O_CREAT | os.O_RDWR)
        try:
            fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
        except OSError:
            os.close(fd)
            return False

        os.ftruncate(fd, 0)
        os.write(fd, f"{lock_owner(attempt_id)}\n".encode())
        self._fd = fd
        return True

    def holder(self):
        try:
            with open(self.path, 'r') as f:
                return f.read().strip() or "unknown"
        except OSError:
            return "unknown"

    def release(self):
        if self._fd is None:
            return
        try:
            fcntl.flock(self._fd, fcntl.LOCK_UN)
        finally:
            os.close(self._fd)
            self._fd = None


class RemoteHostLock:
    """mkdir-based lock on the remote host; mkdir either creates or fails atomically."""

    def __init__(self, host, executor, command_timeout=30):
        self.host = host
        self.executor = executor
        self.command_timeout = command_timeout
        self.path = f"{host.deploy_root}/{LOCK_NAME}.d"
        self._held = False

    def acquire(self, attempt_id):
        root = shlex.quote(self.host.deploy_root)
        path = shlex.quote(self.path)
        owner = shlex.quote(lock_owner(attempt_id))
        try:
            stdout = self.executor.run_check(
                f"mkdir -p {root} && if mkdir {path} 2>/dev/null; "
                f"then echo {owner} > {path}/owner && echo acquired; else echo held; fi",
                self.command_timeout
            )
        except ExecutorError as e:
            raise TransportError(f"Could not take the deployment lock on {self.host.name}: {e}") from e

        self._held = stdout.strip().endswith("acquired")
        return self._held

    def holder(self):
        try:
            stdout = self.executor.run_check(
                f"cat {shlex.quote(self.path + '/owner')} 2>/dev/null || true", self.command_timeout
            )
        except ExecutorError:
            return "unknown"
        return stdout.strip() or "unknown"

    def release(self):
        if not self._held:
            return
        self.executor.run_check(f"rm -rf {shlex.quote(self.path)}", self.command_timeout)
        self._held = False
