"""Tests for artifact transport."""

import zipfile
from pathlib import Path

import pytest

from rollout.deployment.errors import ConfigError, TransportError
from rollout.deployment.models import Artifact, utcnow
from rollout.deployment.transport import Transport
from rollout.deployment.utils import file_digest
from rollout.executors import AuthenticationError, ExecutorError, ExecutorTimeout, LocalExecutor


@pytest.fixture
def artifact(tmp_path: Path) -> Artifact:
    path = tmp_path / "web-v1.zip"
    with zipfile.ZipFile(path, 'w') as zipf:
        zipf.writestr('index.js', "console.log('v1')\n")
    return Artifact(app='web', version='v1', digest=file_digest(path), created_at=utcnow(), path=path)


class CountingExecutor(LocalExecutor):
    def __init__(self):
        self.uploads = 0

    def upload(self, local_path, remote_path, timeout):
        self.uploads += 1
        return super().upload(local_path, remote_path, timeout)


class CorruptingExecutor(LocalExecutor):
    """Delivers truncated bytes."""

    def upload(self, local_path, remote_path, timeout):
        Path(remote_path).parent.mkdir(parents=True, exist_ok=True)
        Path(remote_path).write_bytes(Path(local_path).read_bytes()[:10])
        return remote_path


class FailingExecutor(LocalExecutor):
    def __init__(self, error):
        self.error = error

    def upload(self, local_path, remote_path, timeout):
        raise self.error


class TestTransport:
    """Transport.send behaviour."""

    def test_send_places_artifact(self, artifact, host) -> None:
        """The file lands in incoming/ with the declared digest."""
        path = Transport(LocalExecutor()).send(artifact, host)

        assert path == f"{host.incoming_dir}/{artifact.filename}"
        assert file_digest(path) == artifact.digest

    def test_resend_is_idempotent(self, artifact, host) -> None:
        """A second send finds the verified file and does not upload again."""
        executor = CountingExecutor()
        transport = Transport(executor)

        first = transport.send(artifact, host)
        second = transport.send(artifact, host)

        assert first == second
        assert executor.uploads == 1

    def test_stale_file_is_replaced(self, artifact, host) -> None:
        """A leftover partial file with the wrong digest is overwritten."""
        target = Path(host.incoming_dir) / artifact.filename
        target.parent.mkdir(parents=True)
        target.write_bytes(b"partial")

        Transport(LocalExecutor()).send(artifact, host)

        assert file_digest(target) == artifact.digest

    def test_digest_mismatch(self, artifact, host) -> None:
        """Corrupted bytes on the host fail the transfer."""
        with pytest.raises(TransportError, match="Digest mismatch"):
            Transport(CorruptingExecutor()).send(artifact, host)

    @pytest.mark.parametrize("error,message", [
        (AuthenticationError("authentication failed"), "Authentication failed"),
        (ConfigError("SSH credentials not found"), "Authentication failed"),
        (ExecutorTimeout("connection timed out"), "timed out"),
        (ExecutorError("scp: No such file"), "Transfer to"),
    ])
    def test_executor_errors_are_transport_errors(self, artifact, host, error, message) -> None:
        """Every executor failure surfaces as a TransportError."""
        with pytest.raises(TransportError, match=message):
            Transport(FailingExecutor(error)).send(artifact, host)
