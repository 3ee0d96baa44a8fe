#!/usr/bin/env python3
"""
Artifact transport: moves artifact bytes to the target host and verifies them.
"""

import shlex

from .errors import ConfigError, TransportError
from ..executors import AuthenticationError, ExecutorError, ExecutorTimeout


class Transport:
    """
    Sends artifacts into the host's incoming directory.

    send() is idempotent: an incoming file that already carries the declared
    digest is left in place. It never retries on its own; callers start a
    fresh attempt instead.
    """

    def __init__(self, executor, transfer_timeout=300, command_timeout=30):
        self.executor = executor
        self.transfer_timeout = transfer_timeout
        self.command_timeout = command_timeout

    def send(self, artifact, host):
        remote_path = f"{host.incoming_dir}/{artifact.filename}"
        print(f"Transferring {artifact.filename} to {host.name}:{remote_path}")

        try:
            self.executor.run_check(f"mkdir -p {shlex.quote(host.incoming_dir)}", self.command_timeout)

            existing = self.executor.file_digest(remote_path, self.command_timeout)
            if existing == artifact.digest:
                print(f"[OK] Already present on {host.name}, digest matches")
                return remote_path

            self.executor.upload(str(artifact.path), remote_path, self.transfer_timeout)
            received = self.executor.file_digest(remote_path, self.command_timeout)
        except (AuthenticationError, ConfigError) as e:
            raise TransportError(f"Authentication failed for {host.name}: {e}") from e
        except ExecutorTimeout as e:
            raise TransportError(f"Connection to {host.name} timed out: {e}") from e
        except ExecutorError as e:
            raise TransportError(f"Transfer to {host.name} failed: {e}") from e

        if received != artifact.digest:
            raise TransportError(
                f"Digest mismatch on {host.name}: expected {artifact.digest}, got {received or 'nothing'}"
            )

        print(f"✓ Transferred and verified sha256 {artifact.digest[:12]}")
        return remote_path
