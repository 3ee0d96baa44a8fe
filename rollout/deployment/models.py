#!/usr/bin/env python3
"""
Data model for deployments: artifacts, backups, attempts and probe results.
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Optional


def utcnow():
    return datetime.now(timezone.utc)


class State(str, Enum):
    IDLE = "idle"
    BUILDING = "building"
    PACKAGED = "packaged"
    TRANSFERRING = "transferring"
    BACKING_UP = "backing_up"
    DEPLOYING = "deploying"
    VERIFYING = "verifying"
    COMMITTED = "committed"
    ROLLING_BACK = "rolling_back"
    INCIDENT = "incident"


class Outcome(str, Enum):
    COMMITTED = "Committed"
    ROLLED_BACK = "RolledBack"
    FAILED = "Failed"
    MANUAL_INTERVENTION = "Failed-ManualInterventionRequired"
    CANCELLED = "Cancelled"


class WorkerState(str, Enum):
    STARTING = "starting"
    ONLINE = "online"
    ERRORED = "errored"
    STOPPED = "stopped"


@dataclass(frozen=True)
class Artifact:
    """Immutable, content-addressed build output."""

    app: str
    version: str
    digest: str
    created_at: datetime
    path: Path

    @property
    def filename(self):
        return self.path.name

    def to_dict(self):
        return {
            'app': self.app,
            'version': self.version,
            'digest': self.digest,
            'created_at': self.created_at.isoformat(),
            'file': self.filename,
        }


@dataclass(frozen=True)
class Release:
    """What to build and deploy, as read from a release file."""

    app: str
    version: str
    target_host: str
    source_dir: Optional[str] = None
    build_command: Optional[str] = None
    workdir: str = "."
    artifact: Optional[str] = None
    digest: Optional[str] = None
    change_request: Optional[str] = None

    @classmethod
    def from_dict(cls, data):
        return cls(
            app=data['app'],
            version=str(data['version']),
            target_host=data['target_host'],
            source_dir=data.get('source_dir'),
            build_command=data.get('build_command'),
            workdir=data.get('workdir', '.'),
            artifact=data.get('artifact'),
            digest=data.get('digest'),
            change_request=data.get('change_request'),
        )


@dataclass(frozen=True)
class Backup:
    seq: int
    created_at: datetime
    name: str
    version: Optional[str] = None
    digest: Optional[str] = None


@dataclass(frozen=True)
class Host:
    name: str
    deploy_root: str
    address: Optional[str] = None
    port: int = 22
    env_type: str = "dev"
    settings: dict = field(default_factory=dict, compare=False, repr=False)

    @property
    def is_remote(self):
        return self.address is not None

    @property
    def live_dir(self):
        return f"{self.deploy_root}/current"

    @property
    def backup_dir(self):
        return f"{self.deploy_root}/backups"

    @property
    def releases_dir(self):
        return f"{self.deploy_root}/releases"

    @property
    def incoming_dir(self):
        return f"{self.deploy_root}/incoming"

    @classmethod
    def from_config(cls, name, host_config):
        return cls(
            name=name,
            deploy_root=str(host_config['deploy_root']).rstrip('/'),
            address=host_config.get('ssh_host'),
            port=int(host_config.get('ssh_port', 22)),
            env_type=host_config.get('env_type', 'dev'),
            settings=host_config,
        )


@dataclass(frozen=True)
class HealthCheckResult:
    status_code: Optional[int]
    timed_out: bool
    latency: float
    timestamp: datetime
    error: Optional[str] = None

    @property
    def ok(self):
        return self.status_code is not None and 200 <= self.status_code < 300


@dataclass(frozen=True)
class ProbeResult:
    """Healthy, or Unhealthy carrying the last status code or a timeout."""

    healthy: bool
    checks: tuple = ()

    @property
    def last(self):
        return self.checks[-1] if self.checks else None

    @property
    def last_status_code(self):
        return self.last.status_code if self.last else None

    @property
    def timed_out(self):
        return bool(self.last and self.last.timed_out)

    def describe(self):
        if self.healthy:
            return "Healthy"
        if self.timed_out:
            return f"Unhealthy(timeout after {len(self.checks)} attempts)"
        if self.last_status_code is not None:
            return f"Unhealthy(status {self.last_status_code} after {len(self.checks)} attempts)"
        error = self.last.error if self.last else "no attempts made"
        return f"Unhealthy({error})"


@dataclass(frozen=True)
class WorkerStatus:
    worker_id: int
    name: str
    state: WorkerState
    pid: Optional[int] = None


@dataclass
class StageRecord:
    state: State
    started_at: datetime
    finished_at: Optional[datetime] = None
    status: str = "running"
    detail: str = ""

    @property
    def duration(self):
        if self.finished_at is None:
            return None
        return (self.finished_at - self.started_at).total_seconds()

    def finish(self, status, detail=""):
        self.finished_at = utcnow()
        self.status = status
        if detail:
            self.detail = detail

    def to_dict(self):
        return {
            'stage': self.state.value,
            'started_at': self.started_at.isoformat(),
            'finished_at': self.finished_at.isoformat() if self.finished_at else None,
            'duration_seconds': round(self.duration, 3) if self.duration is not None else None,
            'status': self.status,
            'detail': self.detail,
        }


@dataclass
class DeploymentAttempt:
    host: str
    source: object
    kind: str = "deploy"
    attempt_id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])
    started_at: datetime = field(default_factory=utcnow)
    state: State = State.IDLE
    outcome: Optional[Outcome] = None
    artifact: Optional[Artifact] = None
    backup_seq: Optional[int] = None
    error: Optional[str] = None
    stages: list = field(default_factory=list)
    finished_at: Optional[datetime] = None

    @property
    def current_stage(self):
        return self.stages[-1] if self.stages else None

    @property
    def version(self):
        if self.artifact is not None:
            return self.artifact.version
        return getattr(self.source, 'version', self.kind)

    @property
    def app(self):
        if self.artifact is not None:
            return self.artifact.app
        return getattr(self.source, 'app', self.host)

    def to_dict(self):
        return {
            'attempt_id': self.attempt_id,
            'kind': self.kind,
            'host': self.host,
            'app': self.app,
            'version': self.version,
            'artifact': self.artifact.to_dict() if self.artifact else None,
            'started_at': self.started_at.isoformat(),
            'finished_at': self.finished_at.isoformat() if self.finished_at else None,
            'outcome': self.outcome.value if self.outcome else None,
            'final_state': self.state.value,
            'backup_seq': self.backup_seq,
            'error': self.error,
            'stages': [stage.to_dict() for stage in self.stages],
        }
