#!/usr/bin/env python3
"""
Remote execution over SSH.
Provides simple wrappers around sshpass + ssh/scp commands, or plain ssh/scp
with a key file when ssh_key_file is configured.
"""

import os
import shlex
import subprocess

from .base import AuthenticationError, BaseExecutor, ExecutorError, ExecutorTimeout
from ..deployment.utils import get_ssh_credentials

# sshpass exits 5 when the password is rejected
SSHPASS_BAD_PASSWORD = 5
SSH_CONNECTION_ERROR = 255


class RemoteExecutor(BaseExecutor):
    """SSH remote executor bound to one host config."""

    def __init__(self, ssh_config, connect_timeout=10):
        self.ssh_config = ssh_config
        self.connect_timeout = connect_timeout

    @property
    def host(self):
        return self.ssh_config['ssh_host']

    @property
    def port(self):
        return self.ssh_config.get('ssh_port', 22)

    def _common_options(self):
        options = [
            '-o', 'StrictHostKeyChecking=no',
            '-o', 'UserKnownHostsFile=/dev/null',
            '-o', f'ConnectTimeout={self.connect_timeout}',
        ]
        key_file = self.ssh_config.get('ssh_key_file')
        if key_file:
            options += ['-o', 'BatchMode=yes', '-i', os.path.expanduser(str(key_file))]
        return options

    def _prefix_and_env(self):
        """Returns (command prefix, env, username)."""
        username, password = get_ssh_credentials(self.ssh_config)
        env = os.environ.copy()
        if password is None:
            return [], env, username
        env['SSHPASS'] = password
        return ['sshpass', '-e'], env, username

    def build_ssh_cmd(self, remote_command):
        """Build ssh command list (with sshpass prefix for password auth)."""
        prefix, env, username = self._prefix_and_env()
        cmd = prefix + ['ssh'] + self._common_options() + [
            '-p', str(self.port),
            f'{username}@{self.host}',
            remote_command
        ]
        return cmd, env

    def build_scp_cmd(self, local_path, remote_path):
        prefix, env, username = self._prefix_and_env()
        cmd = prefix + ['scp'] + self._common_options() + [
            '-P', str(self.port),
            str(local_path),
            f'{username}@{self.host}:{remote_path}'
        ]
        return cmd, env

    def _invoke(self, cmd, env, timeout, what):
        try:
            result = subprocess.run(cmd, env=env, capture_output=True, text=True, timeout=timeout)
        except subprocess.TimeoutExpired as e:
            raise ExecutorTimeout(f"{what} to {self.host} timed out after {timeout}s") from e
        except FileNotFoundError as e:
            raise ExecutorError(f"{what} failed: {e}") from e

        self._check_connection(result, what)
        return result

    def _check_connection(self, result, what):
        """Raise for authentication and connection failures; command failures pass through."""
        stderr = result.stderr or ''
        if result.returncode == SSHPASS_BAD_PASSWORD or 'Permission denied' in stderr:
            raise AuthenticationError(f"{what} to {self.host}: authentication failed")
        if result.returncode == SSH_CONNECTION_ERROR:
            if 'timed out' in stderr:
                raise ExecutorTimeout(f"{what} to {self.host}: connection timed out")
            raise ExecutorError(f"{what} to {self.host} failed (exit {result.returncode}): {stderr.strip()}")

    def run(self, command, timeout):
        """Execute command on remote server via SSH."""
        cmd, env = self.build_ssh_cmd(command)
        result = self._invoke(cmd, env, timeout, "SSH")
        return result.stdout, result.stderr, result.returncode

    def upload(self, local_path, remote_path, timeout):
        """Upload file to remote server via SCP."""
        cmd, env = self.build_scp_cmd(local_path, remote_path)
        result = self._invoke(cmd, env, timeout, "SCP upload")
        if result.returncode != 0:
            raise ExecutorError(f"SCP upload failed (exit {result.returncode}): {result.stderr.strip()}")
        return remote_path

    def file_digest(self, remote_path, timeout):
        quoted = shlex.quote(remote_path)
        stdout, stderr, returncode = self.run(
            f"if [ -f {quoted} ]; then sha256sum {quoted}; fi", timeout
        )
        if returncode != 0:
            raise ExecutorError(f"sha256sum failed (exit {returncode}): {stderr.strip()}")
        stdout = stdout.strip()
        return stdout.split()[0] if stdout else None
