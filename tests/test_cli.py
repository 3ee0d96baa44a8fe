"""Tests for the command line entry point."""

import pytest
import yaml

from rollout import deploy
from rollout.deployment.errors import ConcurrentDeploymentError

from conftest import FakeVerifier, HEALTH_URL


@pytest.fixture
def config_path(tmp_path, host):
    path = tmp_path / "deployment-config.yaml"
    path.write_text(yaml.dump({
        'deployment': {'storage_backend': 'local', 'record_dir': str(tmp_path / "records")},
        'hosts': {
            'test-host': {
                'deploy_root': host.deploy_root,
                'env_type': 'dev',
                'health': {'url': HEALTH_URL},
                'supervisor': {'type': 'pm2', 'app_name': 'web'},
            },
        },
    }))
    return path


@pytest.fixture
def release_file(tmp_path, make_release):
    release = make_release('v1')
    path = tmp_path / "release.yaml"
    path.write_text(yaml.dump({
        'app': release.app,
        'version': release.version,
        'target_host': release.target_host,
        'source_dir': release.source_dir,
        'workdir': release.workdir,
    }))
    return path


@pytest.fixture
def wired(monkeypatch, orchestrator):
    calls = []

    def fake_build(config, host_name):
        calls.append(host_name)
        return orchestrator

    monkeypatch.setattr(deploy, "build_orchestrator", fake_build)
    return calls


def run_main(argv):
    with pytest.raises(SystemExit) as exc_info:
        deploy.main(argv)
    return exc_info.value.code


class TestDeployCommand:
    def test_committed_exits_zero(self, wired, config_path, release_file, orchestrator) -> None:
        assert run_main(['deploy', '--release', str(release_file), '--config', str(config_path)]) == 0
        assert wired == ['test-host']
        assert orchestrator.backups.current_release()['version'] == 'v1'

    def test_rolled_back_exits_two(self, wired, config_path, release_file, orchestrator) -> None:
        orchestrator.verifier = FakeVerifier([False, True])
        orchestrator.backups.create()

        assert run_main(['deploy', '--release', str(release_file), '--config', str(config_path)]) == 2

    def test_manual_intervention_exits_three(self, wired, config_path, release_file, orchestrator) -> None:
        orchestrator.verifier = FakeVerifier([False, False])

        assert run_main(['deploy', '--release', str(release_file), '--config', str(config_path)]) == 3

    def test_concurrent_exits_five(self, monkeypatch, wired, config_path, release_file, orchestrator) -> None:
        def busy(source):
            raise ConcurrentDeploymentError("deployment a1b2c3 in progress on test-host")

        monkeypatch.setattr(orchestrator, "deploy", busy)
        assert run_main(['deploy', '--release', str(release_file), '--config', str(config_path)]) == 5

    def test_invalid_release_exits_one(self, wired, config_path, tmp_path) -> None:
        bad = tmp_path / "bad.yaml"
        bad.write_text(yaml.dump({'app': 'web', 'version': 'v1', 'target_host': 'nowhere', 'source_dir': 'dist'}))

        assert run_main(['deploy', '--release', str(bad), '--config', str(config_path)]) == 1
        assert wired == []

    def test_missing_config_exits_one(self, wired, release_file, tmp_path) -> None:
        assert run_main(['deploy', '--release', str(release_file), '--config', str(tmp_path / "nope.yaml")]) == 1

    def test_deploy_requires_release(self) -> None:
        assert run_main(['deploy']) == 2


class TestOtherCommands:
    def test_validate(self, config_path, release_file, capsys) -> None:
        assert run_main(['validate', '--release', str(release_file), '--config', str(config_path)]) == 0
        assert "ALL VALIDATION CHECKS PASSED" in capsys.readouterr().out

    def test_rollback_latest(self, wired, config_path, orchestrator) -> None:
        orchestrator.backups.create()
        assert run_main(['rollback', '--host', 'test-host', '--config', str(config_path)]) == 2

    def test_status(self, wired, config_path, capsys) -> None:
        assert run_main(['status', '--host', 'test-host', '--config', str(config_path)]) == 0
        out = capsys.readouterr().out
        assert "State:   idle" in out
        assert "#0: online" in out

    def test_backups(self, wired, config_path, orchestrator, capsys) -> None:
        orchestrator.backups.create()
        assert run_main(['backups', '--host', 'test-host', '--config', str(config_path)]) == 0
        assert "#1" in capsys.readouterr().out

    def test_probe(self, wired, config_path, orchestrator) -> None:
        orchestrator.verifier = FakeVerifier([False])
        assert run_main(['probe', '--host', 'test-host', '--config', str(config_path)]) == 1

    def test_restart(self, wired, config_path, supervisor) -> None:
        assert run_main(['restart', '--host', 'test-host', '--config', str(config_path)]) == 0
        assert supervisor.calls == ['restart']

    def test_history(self, wired, config_path, release_file, capsys) -> None:
        run_main(['deploy', '--release', str(release_file), '--config', str(config_path)])
        capsys.readouterr()

        assert run_main(['history', '--config', str(config_path)]) == 0
        assert "Committed" in capsys.readouterr().out
