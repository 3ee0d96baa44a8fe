"""Pytest configuration and fixtures."""

from pathlib import Path

import pytest

from rollout.deployment.backup import LocalBackupManager
from rollout.deployment.build import Builder
from rollout.deployment.errors import SupervisorError
from rollout.deployment.models import (
    HealthCheckResult, Host, ProbeResult, Release, WorkerState, WorkerStatus, utcnow
)
from rollout.deployment.orchestrator import Orchestrator
from rollout.deployment.records import RecordWriter
from rollout.deployment.transport import Transport
from rollout.executors import LocalExecutor

HEALTH_URL = "http://127.0.0.1:3000/health"


def probe_result(healthy, status_code=None):
    code = status_code if status_code is not None else (200 if healthy else 503)
    check = HealthCheckResult(status_code=code, timed_out=False, latency=0.01, timestamp=utcnow())
    return ProbeResult(healthy=healthy, checks=(check,))


class FakeSupervisor:
    """Records calls; `reload_errors` pops one entry per reload (None means success)."""

    def __init__(self, reload_errors=None, on_reload=None):
        self.calls = []
        self.reload_errors = list(reload_errors or [])
        self.on_reload = on_reload

    def reload(self):
        self.calls.append('reload')
        if self.on_reload is not None:
            self.on_reload()
        if self.reload_errors:
            error = self.reload_errors.pop(0)
            if error is not None:
                raise error

    def restart(self):
        self.calls.append('restart')

    def stop(self):
        self.calls.append('stop')

    def status(self):
        return [WorkerStatus(worker_id=0, name='web', state=WorkerState.ONLINE, pid=100)]


class FakeVerifier:
    """Answers probes from a script of booleans; defaults to healthy once exhausted."""

    def __init__(self, script=None):
        self.script = list(script or [])
        self.calls = []

    def probe(self, endpoint, timeout=5, attempts=3):
        self.calls.append((endpoint, timeout, attempts))
        healthy = self.script.pop(0) if self.script else True
        return probe_result(healthy)


@pytest.fixture
def host(tmp_path: Path) -> Host:
    return Host.from_config("test-host", {
        'deploy_root': str(tmp_path / "srv" / "web"),
        'env_type': 'dev',
        'health': {'url': HEALTH_URL, 'timeout': 2, 'attempts': 3},
        'supervisor': {'type': 'pm2', 'app_name': 'web'},
    })


@pytest.fixture
def make_release(tmp_path: Path):
    """Create a build output directory and return a Release pointing at it."""

    def _make(version, files=None):
        workdir = tmp_path / "src" / version
        dist = workdir / "dist"
        dist.mkdir(parents=True)
        for name, content in (files or {'index.js': f"console.log('{version}')\n"}).items():
            path = dist / name
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(content)
        return Release(app='web', version=version, target_host='test-host',
                       source_dir='dist', workdir=str(workdir))

    return _make


@pytest.fixture
def backups(host: Host) -> LocalBackupManager:
    return LocalBackupManager(host)


@pytest.fixture
def builder(tmp_path: Path) -> Builder:
    return Builder(workspace=tmp_path / "workspace", build_timeout=30)


@pytest.fixture
def supervisor() -> FakeSupervisor:
    return FakeSupervisor()


@pytest.fixture
def verifier() -> FakeVerifier:
    return FakeVerifier()


@pytest.fixture
def recorder(tmp_path: Path) -> RecordWriter:
    return RecordWriter(tmp_path / "records", storage=None)


@pytest.fixture
def orchestrator(host, builder, backups, supervisor, verifier, recorder) -> Orchestrator:
    return Orchestrator(
        host=host,
        builder=builder,
        transport=Transport(LocalExecutor(), transfer_timeout=30, command_timeout=10),
        backups=backups,
        supervisor=supervisor,
        verifier=verifier,
        recorder=recorder,
    )


@pytest.fixture
def supervisor_error() -> SupervisorError:
    return SupervisorError("worker 0 did not come online within 30s")
