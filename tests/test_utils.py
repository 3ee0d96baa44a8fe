"""Tests for config loading and shared helpers."""

import pytest
import yaml

from rollout.deployment.errors import ConfigError
from rollout.deployment.utils import (
    deep_merge, get_host, get_ssh_credentials, load_config, tree_digest
)


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "deployment-config.yaml"
    path.write_text(yaml.dump({
        'deployment': {'storage_backend': 's3', 'record_dir': 'records'},
        'default_credentials': {'ssh_username': 'DEPLOY_USER', 'ssh_password': 'DEPLOY_PASS'},
        'hosts': {'web-1': {'ssh_host': '10.0.0.5', 'deploy_root': '/srv/web/'}},
    }))
    (tmp_path / "deployment-config.local.yaml").write_text(yaml.dump({
        'deployment': {'storage_backend': 'local'},
    }))
    return path


def test_deep_merge_nested():
    base = {'a': {'b': 1, 'c': 2}, 'd': 3}
    assert deep_merge(base, {'a': {'c': 20}, 'e': 5}) == {'a': {'b': 1, 'c': 20}, 'd': 3, 'e': 5}
    assert base == {'a': {'b': 1, 'c': 2}, 'd': 3}


def test_load_config_without_override(config_file, monkeypatch):
    monkeypatch.delenv('DEPLOYMENT_ENV', raising=False)
    assert load_config(config_file)['deployment']['storage_backend'] == 's3'


def test_load_config_local_override(config_file, monkeypatch):
    monkeypatch.setenv('DEPLOYMENT_ENV', 'local')
    config = load_config(config_file)
    assert config['deployment'] == {'storage_backend': 'local', 'record_dir': 'records'}


def test_load_config_from_env_var(config_file, monkeypatch):
    monkeypatch.setenv('ROLLOUT_CONFIG', str(config_file))
    monkeypatch.delenv('DEPLOYMENT_ENV', raising=False)
    assert 'web-1' in load_config()['hosts']


def test_load_config_missing(tmp_path):
    with pytest.raises(ConfigError):
        load_config(tmp_path / "missing.yaml")


def test_get_host_applies_default_credentials(config_file, monkeypatch):
    monkeypatch.setenv('DEPLOY_USER', 'deployer')
    monkeypatch.setenv('DEPLOY_PASS', 's3cret')

    host = get_host(load_config(config_file), 'web-1')

    assert host.is_remote
    assert host.live_dir == '/srv/web/current'
    assert get_ssh_credentials(host.settings) == ('deployer', 's3cret')


def test_get_host_unknown(config_file):
    with pytest.raises(ConfigError, match="not found"):
        get_host(load_config(config_file), 'web-9')


def test_credentials_not_set(monkeypatch):
    monkeypatch.delenv('DEPLOY_PASS', raising=False)
    monkeypatch.setenv('DEPLOY_USER', 'deployer')
    host_config = {'ssh_env_vars': {'username': 'DEPLOY_USER', 'password': 'DEPLOY_PASS'}}
    with pytest.raises(ConfigError, match="DEPLOY_PASS"):
        get_ssh_credentials(host_config)


def test_key_auth_needs_no_password(monkeypatch):
    monkeypatch.setenv('DEPLOY_USER', 'deployer')
    host_config = {'ssh_key_file': '~/.ssh/id_deploy', 'ssh_env_vars': {'username': 'DEPLOY_USER'}}
    assert get_ssh_credentials(host_config) == ('deployer', None)


def test_tree_digest(tmp_path):
    tree = tmp_path / "tree"
    assert tree_digest(tree) == tree_digest(tmp_path / "also-missing")

    (tree / "sub").mkdir(parents=True)
    (tree / "a.txt").write_text("a")
    (tree / "sub" / "b.txt").write_text("b")
    before = tree_digest(tree)

    (tree / "sub" / "b.txt").write_text("B")
    assert tree_digest(tree) != before
