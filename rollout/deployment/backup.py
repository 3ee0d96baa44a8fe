#!/usr/bin/env python3
"""
Backup manager for the live deployment directory.

Keeps a bounded ring of snapshots under <deploy_root>/backups, one directory
per backup named <seq>_<timestamp>, each with a <name>.sha256 file holding the
tree digest taken when the snapshot was made. Sequence numbers come from a
persisted counter so they stay monotonic after pruning. The same directory
lock guards snapshot creation, pruning, restore and the install step.

The live directory <deploy_root>/current is a symlink into
<deploy_root>/releases, so switching releases is a single rename.
"""

import os
import re
import shlex
import shutil
import threading
import uuid
import zipfile
from datetime import datetime, timezone
from pathlib import Path

import yaml

from .errors import BackupError, InstallError, RestoreError
from .lock import LocalHostLock, RemoteHostLock
from .models import Backup, utcnow
from .utils import RELEASE_MARKER, load_yaml, tree_digest
from ..executors import ExecutorError

MAX_BACKUPS = 5
TIMESTAMP_FORMAT = "%Y%m%dT%H%M%S"
ENTRY_PATTERN = re.compile(r"^(\d{6})_(\d{8}T\d{6})$")
COUNTER_FILE = "SEQUENCE"


def entry_name(seq, created_at):
    return f"{seq:06d}_{created_at.strftime(TIMESTAMP_FORMAT)}"


def digest_name(name):
    return f"{name}.sha256"


def release_name():
    return f"{utcnow().strftime(TIMESTAMP_FORMAT)}-{uuid.uuid4().hex[:8]}"


def parse_entry(name):
    """Returns (seq, created_at) for a backup directory name, or None for anything else."""
    match = ENTRY_PATTERN.match(name)
    if not match:
        return None
    created_at = datetime.strptime(match.group(2), TIMESTAMP_FORMAT).replace(tzinfo=timezone.utc)
    return int(match.group(1)), created_at


def prune_plan(seqs, keep=MAX_BACKUPS):
    """Sequences to evict, lowest first, so that exactly `keep` remain."""
    ordered = sorted(seqs)
    if len(ordered) <= keep:
        return []
    return ordered[:len(ordered) - keep]


def release_marker(artifact):
    return {
        'app': artifact.app,
        'version': artifact.version,
        'digest': artifact.digest,
        'installed_at': utcnow().isoformat(),
    }


class BackupManager:
    """Sequencing, retention and locking shared by the local and remote stores."""

    def __init__(self, host):
        self.host = host
        self._lock = threading.Lock()
        # Cross-process lock for whole attempts, taken by the orchestrator
        self.host_lock = None

    # Storage primitives implemented per backend

    def _entries(self):
        raise NotImplementedError

    def _marker(self, name):
        raise NotImplementedError

    def _snapshot(self, name):
        raise NotImplementedError

    def _delete(self, name):
        raise NotImplementedError

    def _read_counter(self):
        raise NotImplementedError

    def _write_counter(self, seq):
        raise NotImplementedError

    def _restore_entry(self, backup):
        raise NotImplementedError

    def _install(self, archive_path, marker):
        raise NotImplementedError

    def live_digest(self):
        raise NotImplementedError

    def current_release(self):
        raise NotImplementedError

    # Public operations

    def list_backups(self):
        backups = []
        for name in self._entries():
            parsed = parse_entry(name)
            if parsed is None:
                continue
            seq, created_at = parsed
            marker = self._marker(name) or {}
            backups.append(Backup(
                seq=seq, created_at=created_at, name=name,
                version=marker.get('version'), digest=marker.get('digest')
            ))
        return sorted(backups, key=lambda backup: backup.seq)

    def latest_seq(self):
        backups = self.list_backups()
        return backups[-1].seq if backups else None

    def get(self, seq):
        for backup in self.list_backups():
            if backup.seq == seq:
                return backup
        return None

    def create(self):
        """Snapshot the live directory, then prune down to MAX_BACKUPS."""
        with self._lock:
            try:
                stored = [backup.seq for backup in self.list_backups()]
                seq = max([self._read_counter()] + stored) + 1
                created_at = utcnow()
                name = entry_name(seq, created_at)
                self._snapshot(name)
                self._write_counter(seq)
            except (OSError, ExecutorError) as e:
                raise BackupError(f"Backup of {self.host.live_dir} failed: {e}") from e

            print(f"[OK] Created backup #{seq}: {name}")

            try:
                for old_seq in prune_plan(stored + [seq]):
                    old = next(b for b in self.list_backups() if b.seq == old_seq)
                    self._delete(old.name)
                    print(f"Pruned backup #{old_seq}: {old.name}")
            except (OSError, ExecutorError) as e:
                raise BackupError(f"Pruning backups failed: {e}") from e

            return self.get(seq)

    def restore(self, seq):
        """Replace the live directory with backup `seq`."""
        with self._lock:
            try:
                backup = self.get(seq)
            except (OSError, ExecutorError) as e:
                raise RestoreError(f"Cannot read backup store: {e}") from e
            if backup is None:
                raise RestoreError(f"Backup #{seq} does not exist on {self.host.name}")

            print(f"Restoring backup #{seq} ({backup.version or 'empty'}) into {self.host.live_dir}")
            try:
                self._restore_entry(backup)
            except (OSError, ExecutorError) as e:
                raise RestoreError(f"Restore of backup #{seq} failed: {e}") from e
            print(f"[OK] Restored backup #{seq}")
            return backup

    def install(self, archive_path, artifact):
        """Unpack a transferred artifact and swap it in as the live directory."""
        with self._lock:
            try:
                self._install(archive_path, release_marker(artifact))
            except (OSError, ExecutorError, zipfile.BadZipFile) as e:
                raise InstallError(f"Install of {artifact.version} failed: {e}") from e
            print(f"[OK] Installed {artifact.app} {artifact.version} into {self.host.live_dir}")


class LocalBackupManager(BackupManager):
    """Backup store on this machine's filesystem."""

    def __init__(self, host):
        super().__init__(host)
        self.root = Path(host.deploy_root)
        self.live = Path(host.live_dir)
        self.store = Path(host.backup_dir)
        self.releases = Path(host.releases_dir)
        self.host_lock = LocalHostLock(host)

    def _entries(self):
        if not self.store.exists():
            return []
        return [path.name for path in self.store.iterdir() if path.is_dir()]

    def _marker(self, name):
        marker = self.store / name / RELEASE_MARKER
        return load_yaml(marker) if marker.exists() else None

    def _stored_digest(self, name):
        path = self.store / digest_name(name)
        if not path.exists():
            return None
        return path.read_text().strip() or None

    def _snapshot(self, name):
        self.store.mkdir(parents=True, exist_ok=True)
        partial = self.store / f".{name}.partial"
        if partial.exists():
            shutil.rmtree(partial)
        if self.live.exists():
            shutil.copytree(self.live.resolve(), partial, symlinks=True)
        else:
            partial.mkdir()

        # The digest is durable before the entry becomes visible
        with open(self.store / digest_name(name), 'w') as f:
            f.write(f"{tree_digest(partial)}\n")
            f.flush()
            os.fsync(f.fileno())
        os.replace(partial, self.store / name)
        os.sync()

    def _delete(self, name):
        shutil.rmtree(self.store / name)
        (self.store / digest_name(name)).unlink(missing_ok=True)

    def _read_counter(self):
        counter = self.store / COUNTER_FILE
        if not counter.exists():
            return 0
        return int(counter.read_text().strip() or 0)

    def _write_counter(self, seq):
        counter = self.store / COUNTER_FILE
        partial = self.store / f".{COUNTER_FILE}.partial"
        with open(partial, 'w') as f:
            f.write(f"{seq}\n")
            f.flush()
            os.fsync(f.fileno())
        os.replace(partial, counter)

    def _new_release_dir(self):
        staging = self.releases / release_name()
        staging.mkdir(parents=True)
        return staging

    def _swap_in(self, staging):
        """Repoint `current` at staging by renaming a fresh symlink over it."""
        if self.live.exists() and not self.live.is_symlink():
            # Plain directory left by an older layout
            self.releases.mkdir(parents=True, exist_ok=True)
            os.replace(self.live, self.releases / f"adopted-{release_name()}")

        link = self.root / "current.link"
        if link.is_symlink() or link.exists():
            link.unlink()
        os.symlink(os.path.relpath(staging, self.root), link)
        os.replace(link, self.live)
        os.sync()

        for path in self.releases.iterdir():
            if path.name == staging.name:
                continue
            if path.is_dir() and not path.is_symlink():
                shutil.rmtree(path)
            else:
                path.unlink()

    def _restore_entry(self, backup):
        expected = self._stored_digest(backup.name)
        if expected is None:
            raise RestoreError(f"Backup #{backup.seq} has no stored digest, refusing to restore it")

        staging = self._new_release_dir()
        shutil.copytree(self.store / backup.name, staging, symlinks=True, dirs_exist_ok=True)
        actual = tree_digest(staging)
        if actual != expected:
            shutil.rmtree(staging)
            raise RestoreError(
                f"Backup #{backup.seq} is corrupt: digest {actual[:12]} does not match "
                f"{expected[:12]} recorded when it was taken"
            )
        self._swap_in(staging)

    def _install(self, archive_path, marker):
        staging = self._new_release_dir()
        with zipfile.ZipFile(archive_path, 'r') as zipf:
            zipf.extractall(staging)
        with open(staging / RELEASE_MARKER, 'w') as f:
            yaml.dump(marker, f, default_flow_style=False, sort_keys=False)
        self._swap_in(staging)

    def live_digest(self):
        return tree_digest(self.live.resolve())

    def current_release(self):
        marker = self.live / RELEASE_MARKER
        return load_yaml(marker) if marker.exists() else None


class RemoteBackupManager(BackupManager):
    """Backup store on a remote host, driven through shell commands over the executor."""

    def __init__(self, host, executor, command_timeout=120):
        super().__init__(host)
        self.executor = executor
        self.command_timeout = command_timeout
        self.host_lock = RemoteHostLock(host, executor, command_timeout)

    def _sh(self, command):
        return self.executor.run_check(command, self.command_timeout)

    def _path(self, *parts):
        return shlex.quote("/".join(parts))

    def _entries(self):
        store = self._path(self.host.backup_dir)
        stdout = self._sh(f"mkdir -p {store} && ls -1 {store}")
        return [line.strip() for line in stdout.splitlines() if line.strip()]

    def _marker(self, name):
        marker = self._path(self.host.backup_dir, name, RELEASE_MARKER)
        stdout = self._sh(f"cat {marker} 2>/dev/null || true")
        return yaml.safe_load(stdout) if stdout.strip() else None

    def _stored_digest(self, name):
        path = self._path(self.host.backup_dir, digest_name(name))
        return self._sh(f"cat {path} 2>/dev/null || true").strip() or None

    def _snapshot(self, name):
        store = self._path(self.host.backup_dir)
        live = self._path(self.host.live_dir)
        partial_path = f"{self.host.backup_dir}/.{name}.partial"
        partial = shlex.quote(partial_path)
        target = self._path(self.host.backup_dir, name)
        digest_file = self._path(self.host.backup_dir, digest_name(name))
        self._sh(
            f"mkdir -p {store} && rm -rf {partial} && mkdir {partial} && "
            f"if [ -d {live} ]; then cp -a {live}/. {partial}/; fi"
        )
        digest = self._tree_digest(partial_path)
        self._sh(f"echo {digest} > {digest_file} && sync && mv {partial} {target} && sync")

    def _delete(self, name):
        target = self._path(self.host.backup_dir, name)
        digest_file = self._path(self.host.backup_dir, digest_name(name))
        self._sh(f"rm -rf {target} {digest_file}")

    def _read_counter(self):
        counter = self._path(self.host.backup_dir, COUNTER_FILE)
        stdout = self._sh(f"cat {counter} 2>/dev/null || true").strip()
        return int(stdout) if stdout else 0

    def _write_counter(self, seq):
        counter = self._path(self.host.backup_dir, COUNTER_FILE)
        partial = self._path(self.host.backup_dir, f".{COUNTER_FILE}.partial")
        self._sh(f"echo {seq} > {partial} && mv {partial} {counter} && sync")

    def _swap_in_command(self, release):
        # mv -T renames the new link over `current` in one step (GNU coreutils)
        live = self._path(self.host.live_dir)
        releases = self._path(self.host.releases_dir)
        adopted = self._path(self.host.releases_dir, f"adopted-{release_name()}")
        link = self._path(self.host.deploy_root, "current.link")
        target = shlex.quote(f"releases/{release}")
        return (
            f"if [ -d {live} ] && [ ! -L {live} ]; then mv {live} {adopted}; fi && "
            f"rm -f {link} && ln -s {target} {link} && mv -T {link} {live} && sync && "
            f"find {releases} -mindepth 1 -maxdepth 1 ! -name {shlex.quote(release)} -exec rm -rf {{}} +"
        )

    def _tree_digest(self, path):
        quoted = shlex.quote(path)
        stdout = self._sh(
            f"if [ -d {quoted} ]; then cd {quoted} && "
            f"find . -type f -print0 | LC_ALL=C sort -z | xargs -0 -r sha256sum; fi | sha256sum"
        )
        return stdout.split()[0]

    def _restore_entry(self, backup):
        expected = self._stored_digest(backup.name)
        if expected is None:
            raise RestoreError(f"Backup #{backup.seq} has no stored digest, refusing to restore it")

        release = release_name()
        staging_path = f"{self.host.releases_dir}/{release}"
        source = self._path(self.host.backup_dir, backup.name)
        staging = shlex.quote(staging_path)
        self._sh(f"mkdir -p {staging} && cp -a {source}/. {staging}/")
        actual = self._tree_digest(staging_path)
        if actual != expected:
            self._sh(f"rm -rf {staging}")
            raise RestoreError(
                f"Backup #{backup.seq} is corrupt: digest {actual[:12]} does not match "
                f"{expected[:12]} recorded when it was taken"
            )
        self._sh(self._swap_in_command(release))

    def _install(self, archive_path, marker):
        release = release_name()
        staging = self._path(self.host.releases_dir, release)
        marker_path = self._path(self.host.releases_dir, release, RELEASE_MARKER)
        marker_text = yaml.dump(marker, default_flow_style=False, sort_keys=False)
        self._sh(
            f"mkdir -p {staging} && "
            f"unzip -q {shlex.quote(archive_path)} -d {staging} && "
            f"printf %s {shlex.quote(marker_text)} > {marker_path}"
        )
        self._sh(self._swap_in_command(release))

    def live_digest(self):
        return self._tree_digest(self.host.live_dir)

    def current_release(self):
        marker = self._path(self.host.live_dir, RELEASE_MARKER)
        stdout = self._sh(f"cat {marker} 2>/dev/null || true")
        return yaml.safe_load(stdout) if stdout.strip() else None


def get_backup_manager(config, host, executor):
    """Factory: remote hosts are driven over SSH, local hosts through the filesystem."""
    if host.is_remote:
        timeout = config.get('backup', {}).get('command_timeout', 120)
        return RemoteBackupManager(host, executor, command_timeout=timeout)
    return LocalBackupManager(host)
