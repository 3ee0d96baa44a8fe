#!/usr/bin/env python3
"""
Deployment Orchestrator
Drives one artifact through build -> transfer -> backup -> deploy -> verify,
committing on a healthy probe and rolling back to the latest backup otherwise.
"""

import threading

import yaml

from .backup import get_backup_manager
from .build import Builder
from .errors import (
    BackupError, BuildError, ConcurrentDeploymentError, ConfigError,
    HealthCheckFailure, InstallError, InvalidTransitionError, RestoreError,
    SupervisorError, TransportError
)
from .health import DEFAULT_ATTEMPTS, DEFAULT_BACKOFF, DEFAULT_TIMEOUT, HealthVerifier
from .models import DeploymentAttempt, Outcome, StageRecord, State, utcnow
from .records import RecordWriter, format_stage_log
from .transport import Transport
from .utils import get_host, print_phase
from ..executors import ExecutorError, get_executor
from ..supervisor import get_supervisor

TRANSITIONS = {
    State.IDLE: frozenset({State.BUILDING, State.ROLLING_BACK}),
    State.BUILDING: frozenset({State.PACKAGED, State.IDLE}),
    State.PACKAGED: frozenset({State.TRANSFERRING, State.IDLE}),
    State.TRANSFERRING: frozenset({State.BACKING_UP, State.IDLE}),
    State.BACKING_UP: frozenset({State.DEPLOYING, State.IDLE}),
    State.DEPLOYING: frozenset({State.VERIFYING, State.ROLLING_BACK}),
    State.VERIFYING: frozenset({State.COMMITTED, State.ROLLING_BACK}),
    State.COMMITTED: frozenset({State.IDLE}),
    State.ROLLING_BACK: frozenset({State.IDLE, State.INCIDENT}),
    State.INCIDENT: frozenset({State.IDLE}),
}

# Nothing on the host has been touched yet in these states
CANCELLABLE = frozenset({State.BUILDING, State.PACKAGED, State.TRANSFERRING})

# Exit codes for the CLI layer
EXIT_CODES = {
    Outcome.COMMITTED: 0,
    Outcome.FAILED: 1,
    Outcome.ROLLED_BACK: 2,
    Outcome.MANUAL_INTERVENTION: 3,
    Outcome.CANCELLED: 4,
}
EXIT_CONCURRENT = 5


class HostSlot:
    """
    State token for one host: Idle, or owned by exactly one attempt.

    Every check-and-move happens under the slot's lock, so acquiring from a
    non-Idle state fails instead of queueing. The host lock extends the same
    guarantee to other Orchestrator instances and other processes.
    """

    def __init__(self, host_name, host_lock=None):
        self.host_name = host_name
        self.host_lock = host_lock
        self.state = State.IDLE
        self.attempt = None
        self._lock = threading.Lock()
        self._cancel = threading.Event()

    def _move(self, new_state):
        if new_state not in TRANSITIONS[self.state]:
            raise InvalidTransitionError(f"{self.state.value} -> {new_state.value} is not allowed")
        self.state = new_state
        if new_state != State.IDLE:
            self.attempt.state = new_state

    def acquire(self, attempt, first_state):
        with self._lock:
            if self.state != State.IDLE:
                raise ConcurrentDeploymentError(
                    f"Deployment {self.attempt.attempt_id} is {self.state.value} on {self.host_name}"
                )
            if self.host_lock is not None and not self.host_lock.acquire(attempt.attempt_id):
                raise ConcurrentDeploymentError(
                    f"Another deployment holds {self.host_name} ({self.host_lock.holder()})"
                )
            self._cancel.clear()
            self.attempt = attempt
            self._move(first_state)

    def transition(self, new_state):
        """
        Move to new_state. Returns False without moving when a pending cancel
        stops the attempt at the BackingUp boundary.
        """
        with self._lock:
            if new_state == State.BACKING_UP and self._cancel.is_set():
                return False
            self._move(new_state)
            return True

    def release(self):
        with self._lock:
            try:
                self._move(State.IDLE)
                self.attempt = None
                self._cancel.clear()
            finally:
                if self.host_lock is not None:
                    self.host_lock.release()

    def request_cancel(self):
        with self._lock:
            if self.state in CANCELLABLE:
                self._cancel.set()
                return True
            return False

    @property
    def cancel_requested(self):
        return self._cancel.is_set()


class Orchestrator:
    """Single-host deployment state machine."""

    def __init__(self, host, builder, transport, backups, supervisor, verifier,
                 health=None, recorder=None, host_lock=None):
        self.host = host
        self.builder = builder
        self.transport = transport
        self.backups = backups
        self.supervisor = supervisor
        self.verifier = verifier
        self.health = health if health is not None else host.settings.get('health', {})
        self.recorder = recorder
        self.slot = HostSlot(host.name, host_lock if host_lock is not None else backups.host_lock)

    @property
    def state(self):
        return self.slot.state

    # Stage bookkeeping

    def _begin_stage(self, attempt):
        attempt.stages.append(StageRecord(state=attempt.state, started_at=utcnow()))
        print_phase(attempt.state.value.upper().replace('_', ' '), f"{attempt.app} {attempt.version}")

    def _close_stage(self, attempt, status, detail=""):
        stage = attempt.current_stage
        if stage is not None and stage.finished_at is None:
            stage.finish(status, detail)

    def _advance(self, attempt, new_state, detail=""):
        """Close the current stage and open the next; False if a cancel stopped the move."""
        if not self.slot.transition(new_state):
            return False
        self._close_stage(attempt, "ok", detail)
        self._begin_stage(attempt)
        return True

    # Public operations

    def deploy(self, source):
        """
        Deploy an Artifact (or a Release to build) to this host.

        Returns the finished DeploymentAttempt; its outcome is one of
        Committed, RolledBack, Failed, Failed-ManualInterventionRequired or
        Cancelled. Raises ConcurrentDeploymentError when the host is busy.
        """
        self._check_health_config()
        attempt = DeploymentAttempt(host=self.host.name, source=source)
        self.slot.acquire(attempt, State.BUILDING)
        try:
            self._begin_stage(attempt)
            self._run(attempt)
        except Exception as e:
            self._handle_unexpected(attempt, e)
        finally:
            self._finish(attempt)
        return attempt

    def rollback(self, seq=None):
        """Manual rollback: restore `seq` (default latest), reload, verify once."""
        self._check_health_config()
        attempt = DeploymentAttempt(host=self.host.name, source=None, kind="rollback")
        self.slot.acquire(attempt, State.ROLLING_BACK)
        try:
            self._begin_stage(attempt)
            self._restore_and_verify(attempt, seq)
        except Exception as e:
            self._handle_unexpected(attempt, e)
        finally:
            self._finish(attempt)
        return attempt

    def cancel(self):
        """Request cancellation. Only honoured before BackingUp starts."""
        accepted = self.slot.request_cancel()
        if accepted:
            print(f"Cancellation requested for {self.host.name}")
        else:
            print(f"Cancellation refused: {self.host.name} is {self.state.value}")
        return accepted

    def probe(self):
        """Probe the service with the host's health settings."""
        self._check_health_config()
        return self._probe()

    def status(self):
        attempt = self.slot.attempt
        return {
            'host': self.host.name,
            'state': self.state.value,
            'attempt_id': attempt.attempt_id if attempt else None,
            'live_release': self.backups.current_release(),
            'backups': [backup.seq for backup in self.backups.list_backups()],
            'workers': [
                {'id': worker.worker_id, 'state': worker.state.value, 'pid': worker.pid}
                for worker in self.supervisor.status()
            ],
        }

    # Pipeline

    def _run(self, attempt):
        try:
            attempt.artifact = self.builder.prepare(attempt.source)
        except BuildError as e:
            return self._abort(attempt, e)

        self._advance(attempt, State.PACKAGED, f"sha256 {attempt.artifact.digest[:12]}")
        if self._cancelled(attempt):
            return

        self._advance(attempt, State.TRANSFERRING)
        try:
            remote_path = self.transport.send(attempt.artifact, self.host)
        except TransportError as e:
            return self._abort(attempt, e)

        # Cancel is checked and refused atomically with this move
        if not self._advance(attempt, State.BACKING_UP, remote_path):
            return self._mark_cancelled(attempt)
        try:
            backup = self.backups.create()
        except BackupError as e:
            return self._abort(attempt, e)
        attempt.backup_seq = backup.seq

        self._advance(attempt, State.DEPLOYING, f"backup #{backup.seq}")
        try:
            self.backups.install(remote_path, attempt.artifact)
            self.supervisor.reload()
        except (InstallError, SupervisorError) as e:
            return self._rollback(attempt, e)

        self._advance(attempt, State.VERIFYING)
        result = self._probe()
        if not result.healthy:
            return self._rollback(attempt, HealthCheckFailure(result))

        self._advance(attempt, State.COMMITTED, result.describe())
        attempt.outcome = Outcome.COMMITTED
        self._close_stage(attempt, "ok")

    def _check_health_config(self):
        if not self.health.get('url'):
            raise ConfigError(f"Host '{self.host.name}' has no health.url")

    def _probe(self):
        return self.verifier.probe(
            self.health['url'],
            timeout=self.health.get('timeout', DEFAULT_TIMEOUT),
            attempts=self.health.get('attempts', DEFAULT_ATTEMPTS),
        )

    def _abort(self, attempt, error):
        """Failure before the live deployment changed: no rollback needed."""
        print(f"ERROR: {error}")
        print("Live deployment untouched.")
        self._close_stage(attempt, "failed", str(error))
        attempt.error = str(error)
        attempt.outcome = Outcome.FAILED

    def _cancelled(self, attempt):
        if not self.slot.cancel_requested:
            return False
        self._mark_cancelled(attempt)
        return True

    def _mark_cancelled(self, attempt):
        print("Deployment cancelled before backup; live deployment untouched.")
        self._close_stage(attempt, "cancelled")
        attempt.outcome = Outcome.CANCELLED

    def _rollback(self, attempt, cause):
        print(f"ERROR: {cause}")
        self._close_stage(attempt, "failed", str(cause))
        attempt.error = str(cause)
        self.slot.transition(State.ROLLING_BACK)
        self._begin_stage(attempt)
        self._restore_and_verify(attempt, None)

    def _restore_and_verify(self, attempt, seq):
        """restore -> reload -> probe exactly once. Any failure here is an incident."""
        try:
            if seq is None:
                seq = self.backups.latest_seq()
            if seq is None:
                raise RestoreError(f"No backup available on {self.host.name}")
            self.backups.restore(seq)
            self.supervisor.reload()
        except (RestoreError, SupervisorError, ExecutorError) as e:
            return self._incident(attempt, e)

        result = self._probe()
        if not result.healthy:
            return self._incident(attempt, HealthCheckFailure(result))

        attempt.backup_seq = seq
        self._close_stage(attempt, "ok", f"restored backup #{seq}, {result.describe()}")
        attempt.outcome = Outcome.ROLLED_BACK

    def _incident(self, attempt, error):
        print(f"ERROR: Rollback failed: {error}")
        self._close_stage(attempt, "failed", str(error))
        self.slot.transition(State.INCIDENT)
        self._begin_stage(attempt)
        self._close_stage(attempt, "failed", "manual intervention required")
        attempt.error = f"{attempt.error}; rollback: {error}" if attempt.error else str(error)
        attempt.outcome = Outcome.MANUAL_INTERVENTION
        print("!" * 60)
        print(f"MANUAL INTERVENTION REQUIRED on {self.host.name}")
        print("No further automatic action will be taken.")
        print("!" * 60)

    def _handle_unexpected(self, attempt, error):
        """Route an error no stage anticipated to the branch its state calls for."""
        if attempt.outcome is not None:
            raise error
        wrapped = RuntimeError(f"{type(error).__name__}: {error}")
        if self.slot.state in (State.DEPLOYING, State.VERIFYING):
            self._rollback(attempt, wrapped)
        elif self.slot.state == State.ROLLING_BACK:
            self._incident(attempt, wrapped)
        else:
            self._abort(attempt, wrapped)

    def _finish(self, attempt):
        try:
            self._close_stage(attempt, "failed" if attempt.outcome is None else "ok")
            attempt.finished_at = utcnow()
            outcome = attempt.outcome.value if attempt.outcome else "unknown"

            print_phase(f"OUTCOME: {outcome}", f"{self.host.name}")
            print(format_stage_log(attempt))
            if self.recorder is not None:
                try:
                    self.recorder.write(attempt)
                except (OSError, yaml.YAMLError) as e:
                    # The attempt outcome stands even when the record cannot be written
                    print(f"WARNING: Could not write deployment record: {e}")
        finally:
            try:
                self.slot.release()
            except (OSError, ExecutorError) as e:
                print(f"WARNING: Could not release the deployment lock on {self.host.name}: {e}")
                print(f"Remove {self.host.deploy_root}/.rollout.lock* by hand once no deploy is running.")


def build_orchestrator(config, host_name):
    """Wire an Orchestrator for one host from the deployment configuration."""
    host = get_host(config, host_name)
    executor = get_executor(config, host.settings)
    deployment = config.get('deployment', {})
    transport_settings = config.get('transport', {})

    builder = Builder(
        workspace=deployment.get('workspace', '.rollout'),
        build_timeout=deployment.get('build_timeout', 900),
    )
    transport = Transport(
        executor,
        transfer_timeout=transport_settings.get('transfer_timeout', 300),
        command_timeout=transport_settings.get('command_timeout', 30),
    )
    health = host.settings.get('health', {})
    verifier = HealthVerifier(backoff=health.get('backoff', DEFAULT_BACKOFF))

    return Orchestrator(
        host=host,
        builder=builder,
        transport=transport,
        backups=get_backup_manager(config, host, executor),
        supervisor=get_supervisor(host, executor),
        verifier=verifier,
        health=health,
        recorder=RecordWriter.from_config(config),
    )
