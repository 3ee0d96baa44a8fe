#!/usr/bin/env python3
"""
Deployment utilities - shared helper functions.
"""

import hashlib
import os
from pathlib import Path

import yaml

from .errors import ConfigError
from .models import Host

DEFAULT_CONFIG_PATH = "config/deployment-config.yaml"
RELEASE_MARKER = ".rollout-release.yaml"


def load_yaml(file_path):
    with open(file_path, 'r') as f:
        return yaml.safe_load(f)


def deep_merge(base, override):
    result = base.copy()

    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = deep_merge(result[key], value)
        else:
            result[key] = value

    return result


def get_config_path(config_path=None):
    return Path(config_path or os.environ.get('ROLLOUT_CONFIG') or DEFAULT_CONFIG_PATH)


def load_config(config_path=None):
    """
    Load configuration with optional local overrides.
    - Default: config/deployment-config.yaml (or $ROLLOUT_CONFIG)
    - DEPLOYMENT_ENV=local: merges deployment-config.local.yaml overrides
    """
    base_path = get_config_path(config_path)
    if not base_path.exists():
        raise ConfigError(f"Configuration file not found: {base_path}")
    base_config = load_yaml(base_path) or {}

    env = os.environ.get('DEPLOYMENT_ENV', '').strip()
    if env == 'local':
        override_path = base_path.with_name(base_path.stem + ".local" + base_path.suffix)
        if override_path.exists():
            override_config = load_yaml(override_path) or {}
            return deep_merge(base_config, override_config)

    return base_config


def load_rules(config_path=None):
    """Governance rules live next to the config file; no rules file is a valid state."""
    rules_path = get_config_path(config_path).with_name("rules.yaml")
    if not rules_path.exists():
        return {}
    return load_yaml(rules_path) or {}


def apply_default_credentials(host_config, config):
    default_creds = config.get('default_credentials', {})

    if 'ssh_env_vars' not in host_config:
        host_config['ssh_env_vars'] = {}

    ssh_vars = host_config['ssh_env_vars']

    if 'username' not in ssh_vars and 'ssh_username' in default_creds:
        ssh_vars['username'] = default_creds['ssh_username']

    if 'password' not in ssh_vars and 'ssh_password' in default_creds:
        ssh_vars['password'] = default_creds['ssh_password']

    if 'ssh_key_file' not in host_config and 'ssh_key_file' in default_creds:
        host_config['ssh_key_file'] = default_creds['ssh_key_file']

    return host_config


def get_ssh_credentials(host_config):
    """
    Resolve SSH credentials from the environment variables named in the host config.

    Returns (username, password). Password is None when key authentication is configured.
    """
    ssh_vars = host_config.get('ssh_env_vars', {})
    username_env = ssh_vars.get('username')
    password_env = ssh_vars.get('password')
    key_auth = bool(host_config.get('ssh_key_file'))

    if not username_env or (not password_env and not key_auth):
        raise ConfigError(
            "Missing ssh_env_vars in host config. "
            "Add to deployment-config.yaml: ssh_env_vars: {username: 'ENV_VAR', password: 'ENV_VAR'}"
        )

    username = os.environ.get(username_env)
    if not username:
        raise ConfigError(f"SSH credentials not set: {username_env}")

    if key_auth:
        return username, None

    password = os.environ.get(password_env)
    if not password:
        raise ConfigError(f"SSH credentials not set: {password_env}")

    return username, password


def get_host_config(config, host_name):
    hosts = config.get('hosts', {})
    if host_name not in hosts:
        raise ConfigError(f"Host '{host_name}' not found in configuration")
    host_config = dict(hosts[host_name])
    apply_default_credentials(host_config, config)
    return host_config


def get_host(config, host_name):
    return Host.from_config(host_name, get_host_config(config, host_name))


def file_digest(path, chunk_size=1024 * 1024):
    """sha256 hex digest of a file."""
    digest = hashlib.sha256()
    with open(path, 'rb') as f:
        for chunk in iter(lambda: f.read(chunk_size), b''):
            digest.update(chunk)
    return digest.hexdigest()


def tree_digest(root):
    """
    sha256 over every file below root: relative path and content digest, in sorted order.
    A missing directory digests the same as an empty one.
    """
    root = Path(root)
    digest = hashlib.sha256()
    if not root.exists():
        return digest.hexdigest()

    for path in sorted(p for p in root.rglob('*') if p.is_file()):
        relative = path.relative_to(root).as_posix()
        digest.update(f"{file_digest(path)}  ./{relative}\n".encode())
    return digest.hexdigest()


def print_phase(phase_name, detail=None):
    """Helper to print phase headers."""
    print(f"\n{'='*60}")
    if detail:
        print(f"{phase_name} ({detail})")
    else:
        print(phase_name)
    print(f"{'='*60}")
