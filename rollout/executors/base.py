#!/usr/bin/env python3
"""
Base executor interface for commands on a deployment host.
"""


class ExecutorError(RuntimeError):
    """Command could not be run or exited non-zero."""


class ExecutorTimeout(ExecutorError):
    """Command did not finish within its timeout."""


class AuthenticationError(ExecutorError):
    """Remote host rejected the credentials."""


class BaseExecutor:
    """Interface for host executors (local subprocess or remote SSH)."""

    def run(self, command, timeout):
        """
        Execute a shell command on the host.

        Args:
            command: Shell command string
            timeout: Seconds before the command is abandoned

        Returns:
            (stdout, stderr, returncode)
        """
        raise NotImplementedError("Subclasses must implement run()")

    def upload(self, local_path, remote_path, timeout):
        """Copy a local file to remote_path on the host."""
        raise NotImplementedError("Subclasses must implement upload()")

    def file_digest(self, remote_path, timeout):
        """sha256 hex digest of a file on the host, or None if it does not exist."""
        raise NotImplementedError("Subclasses must implement file_digest()")

    def run_check(self, command, timeout):
        """Execute command and raise error if it fails."""
        stdout, stderr, returncode = self.run(command, timeout)

        if returncode != 0:
            raise ExecutorError(f"Command failed (exit {returncode}): {stderr.strip()}")

        return stdout
