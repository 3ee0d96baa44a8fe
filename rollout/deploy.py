#!/usr/bin/env python3
"""
rollout command line
Deploys a release to its target host and maps the outcome to an exit code.
"""

import argparse
import signal
import sys

from .config.validation import validate_config, validate_release
from .deployment.errors import ConcurrentDeploymentError, DeploymentError
from .deployment.models import Release
from .deployment.orchestrator import EXIT_CODES, EXIT_CONCURRENT, build_orchestrator
from .deployment.records import RecordWriter
from .deployment.utils import load_config, load_rules, load_yaml, print_phase


def _load_validated_config(config_path):
    config = load_config(config_path)
    is_valid, errors = validate_config(config)
    if not is_valid:
        print("Configuration validation failed:")
        for error in errors:
            print(f"  - {error}")
        sys.exit(1)
    return config


def validate_release_before_action(release_file, config, config_path=None):
    """Helper to run validation and exit on failure."""
    print("\n=== VALIDATING RELEASE ===")
    is_valid, errors = validate_release(release_file, config, load_rules(config_path))
    if not is_valid:
        print("Release validation failed:")
        for error in errors:
            print(f"  - {error}")
        sys.exit(1)
    print("[OK] Release validation successful\n")


class _CancelOnSignal:
    """Turns SIGINT/SIGTERM into a cooperative cancel request while a deploy runs."""

    def __init__(self, orchestrator):
        self.orchestrator = orchestrator
        self._previous = {}

    def _handler(self, signum, frame):
        print(f"\nReceived signal {signum}")
        self.orchestrator.cancel()

    def __enter__(self):
        for signum in (signal.SIGINT, signal.SIGTERM):
            self._previous[signum] = signal.signal(signum, self._handler)
        return self

    def __exit__(self, *exc_info):
        for signum, handler in self._previous.items():
            signal.signal(signum, handler)
        return False


def deploy_command(release_file, config_path=None):
    config = _load_validated_config(config_path)
    validate_release_before_action(release_file, config, config_path)

    release = Release.from_dict(load_yaml(release_file))
    orchestrator = build_orchestrator(config, release.target_host)

    print_phase(f"DEPLOYMENT {release.app} {release.version}", f"-> {release.target_host}")
    try:
        with _CancelOnSignal(orchestrator):
            attempt = orchestrator.deploy(release)
    except ConcurrentDeploymentError as e:
        print(f"ERROR: {e}")
        return EXIT_CONCURRENT

    return EXIT_CODES[attempt.outcome]


def rollback_command(host_name, seq=None, config_path=None):
    config = _load_validated_config(config_path)
    orchestrator = build_orchestrator(config, host_name)

    print_phase(f"MANUAL ROLLBACK {host_name}", f"backup #{seq}" if seq else "latest backup")
    try:
        attempt = orchestrator.rollback(seq)
    except ConcurrentDeploymentError as e:
        print(f"ERROR: {e}")
        return EXIT_CONCURRENT

    return EXIT_CODES[attempt.outcome]


def status_command(host_name, config_path=None):
    config = _load_validated_config(config_path)
    status = build_orchestrator(config, host_name).status()

    print_phase(f"STATUS {host_name}")
    release = status['live_release'] or {}
    print(f"State:   {status['state']}")
    print(f"Live:    {release.get('app', '-')} {release.get('version', '-')} (sha256 {release.get('digest', '-')[:12]})")
    print(f"Backups: {', '.join(str(seq) for seq in status['backups']) or 'none'}")
    print("Workers:")
    for worker in status['workers']:
        print(f"  - #{worker['id']}: {worker['state']} (pid {worker['pid']})")
    if not status['workers']:
        print("  none registered")
    return 0


def backups_command(host_name, config_path=None):
    config = _load_validated_config(config_path)
    orchestrator = build_orchestrator(config, host_name)

    print_phase(f"BACKUPS {host_name}")
    backups = orchestrator.backups.list_backups()
    for backup in backups:
        print(f"  #{backup.seq:<4} {backup.created_at.isoformat()}  {backup.version or '(empty)'}")
    if not backups:
        print("  none")
    return 0


def restart_command(host_name, config_path=None):
    """Manual recovery: stop-then-start every worker. Causes a short outage."""
    config = _load_validated_config(config_path)
    orchestrator = build_orchestrator(config, host_name)
    print_phase(f"RESTART {host_name}")
    orchestrator.supervisor.restart()
    print("[OK] Restart issued")
    return 0


def probe_command(host_name, config_path=None):
    config = _load_validated_config(config_path)
    orchestrator = build_orchestrator(config, host_name)
    print_phase(f"HEALTH PROBE {host_name}")
    result = orchestrator.probe()
    print(result.describe())
    return 0 if result.healthy else 1


def validate_command(release_file, config_path=None):
    print_phase("VALIDATING DEPLOYMENT PREREQUISITES")

    print("[1/2] Validating configuration...")
    config = _load_validated_config(config_path)
    print("  ✓ Configuration valid")

    print("[2/2] Validating release file...")
    validate_release_before_action(release_file, config, config_path)

    release = Release.from_dict(load_yaml(release_file))
    print("=" * 60)
    print("✓ ALL VALIDATION CHECKS PASSED")
    print("=" * 60)
    print(f"Ready to deploy {release.app} {release.version} to {release.target_host}")
    print(f"Run: rollout deploy --release {release_file}")
    return 0


def history_command(host_name=None, limit=10, config_path=None):
    config = load_config(config_path)
    records = RecordWriter.from_config(config).history(host_name, limit)

    print_phase("DEPLOYMENT HISTORY", host_name)
    for record in records:
        print(f"  {record.get('started_at', '-')}  {record.get('host')}  "
              f"{record.get('app')} {record.get('version')}  {record.get('outcome')}")
    if not records:
        print("  no records")
    return 0


def main(argv=None):
    """Main entry point - parse command line and run the command."""
    parser = argparse.ArgumentParser(
        description='Single-host deploy / verify / rollback orchestrator',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  rollout validate --release releases/web.yaml
  rollout deploy --release releases/web.yaml
  rollout rollback --host prod-web-1 --seq 4
  rollout status --host prod-web-1
  rollout backups --host prod-web-1
  rollout restart --host prod-web-1
  rollout probe --host prod-web-1
  rollout history --host prod-web-1

Exit codes (deploy/rollback):
  0 Committed, 1 Failed, 2 RolledBack, 3 Failed-ManualInterventionRequired,
  4 Cancelled, 5 another deployment in progress
        """
    )
    parser.add_argument('command', choices=['deploy', 'rollback', 'status', 'backups', 'restart', 'probe', 'validate', 'history'], help='Command')
    parser.add_argument('--release', help='Release file path (e.g., releases/web.yaml)')
    parser.add_argument('--host', help='Host name from deployment-config.yaml')
    parser.add_argument('--seq', type=int, help='Backup sequence number to restore (rollback)')
    parser.add_argument('--limit', type=int, default=10, help='Number of records to show (history)')
    parser.add_argument('--config', help='Config file (default: $ROLLOUT_CONFIG or config/deployment-config.yaml)')
    args = parser.parse_args(argv)

    if args.command in ['deploy', 'validate'] and not args.release:
        parser.error(f"{args.command} requires --release argument")

    if args.command in ['rollback', 'status', 'backups', 'restart', 'probe'] and not args.host:
        parser.error(f"{args.command} requires --host argument")

    try:
        if args.command == 'deploy':
            code = deploy_command(args.release, args.config)
        elif args.command == 'rollback':
            code = rollback_command(args.host, args.seq, args.config)
        elif args.command == 'status':
            code = status_command(args.host, args.config)
        elif args.command == 'backups':
            code = backups_command(args.host, args.config)
        elif args.command == 'restart':
            code = restart_command(args.host, args.config)
        elif args.command == 'probe':
            code = probe_command(args.host, args.config)
        elif args.command == 'validate':
            code = validate_command(args.release, args.config)
        else:
            code = history_command(args.host, args.limit, args.config)
    except DeploymentError as e:
        print(f"ERROR: {e}")
        code = 1

    sys.exit(code)


if __name__ == '__main__':
    main()
