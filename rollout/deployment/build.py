#!/usr/bin/env python3
"""
Artifact building and packaging.
Runs the release's build command and zips the build output into an immutable artifact.
"""

import subprocess
import zipfile
from datetime import datetime, timezone
from pathlib import Path

import yaml

from .errors import BuildError
from .models import Artifact, Release, utcnow
from .utils import file_digest


class Builder:
    """Produces Artifacts from releases, or verifies prebuilt ones."""

    def __init__(self, workspace=".rollout", build_timeout=900):
        self.workspace = Path(workspace)
        self.build_timeout = build_timeout

    @property
    def artifact_dir(self):
        return self.workspace / "artifacts"

    def prepare(self, source):
        """Turn a deploy source (Artifact or Release) into a verified Artifact."""
        if isinstance(source, Artifact):
            return self.verify(source)
        if isinstance(source, Release):
            if source.artifact:
                return self.load(source.artifact, source.app, source.version, source.digest)
            self.run_build(source)
            return self.package(source)
        raise BuildError(f"Cannot deploy from {type(source).__name__}")

    def run_build(self, release):
        if not release.build_command:
            print("No build command, packaging source_dir as-is")
            return

        print(f"Running build: {release.build_command} (in {release.workdir})")
        try:
            result = subprocess.run(
                release.build_command, shell=True, cwd=release.workdir,
                capture_output=True, text=True, timeout=self.build_timeout
            )
        except subprocess.TimeoutExpired as e:
            raise BuildError(f"Build timed out after {self.build_timeout}s") from e
        except OSError as e:
            raise BuildError(f"Build could not start: {e}") from e

        if result.stdout:
            print(result.stdout.rstrip())
        if result.returncode != 0:
            raise BuildError(f"Build failed (exit {result.returncode}): {result.stderr.strip()}")
        print("[OK] Build finished")

    def package(self, release):
        """Zip the build output. Never overwrites an existing artifact file."""
        if not release.source_dir:
            raise BuildError("Release has neither source_dir nor artifact")
        source_dir = Path(release.workdir) / release.source_dir
        if not source_dir.is_dir():
            raise BuildError(f"Build output not found: {source_dir}")

        created_at = utcnow()
        timestamp = created_at.strftime('%Y%m%d-%H%M%S')
        archive_name = f"{release.app}-{release.version}-{timestamp}.zip"
        self.artifact_dir.mkdir(parents=True, exist_ok=True)
        archive_path = self.artifact_dir / archive_name
        if archive_path.exists():
            raise BuildError(f"Artifact already exists, refusing to overwrite: {archive_path}")

        files = sorted(p for p in source_dir.rglob('*') if p.is_file())
        print(f"Packaging {len(files)} files from {source_dir} into {archive_name}")
        try:
            with zipfile.ZipFile(archive_path, 'x', zipfile.ZIP_DEFLATED) as zipf:
                for path in files:
                    zipf.write(path, arcname=path.relative_to(source_dir).as_posix())
        except OSError as e:
            raise BuildError(f"Packaging failed: {e}") from e

        artifact = Artifact(
            app=release.app, version=release.version,
            digest=file_digest(archive_path), created_at=created_at, path=archive_path
        )
        with open(archive_path.with_suffix('.yaml'), 'w') as f:
            yaml.dump(artifact.to_dict(), f, default_flow_style=False, sort_keys=False)

        print(f"[OK] Artifact {artifact.version} sha256 {artifact.digest}")
        return artifact

    def load(self, path, app, version, digest=None):
        """Wrap a prebuilt zip. A declared digest must match the file."""
        path = Path(path)
        if not path.is_file():
            raise BuildError(f"Artifact not found: {path}")
        actual = file_digest(path)
        if digest and digest != actual:
            raise BuildError(f"Artifact digest mismatch: declared {digest}, file has {actual}")
        created_at = datetime.fromtimestamp(path.stat().st_mtime, tz=timezone.utc)
        return Artifact(app=app, version=str(version), digest=actual, created_at=created_at, path=path)

    def verify(self, artifact):
        if not Path(artifact.path).is_file():
            raise BuildError(f"Artifact not found: {artifact.path}")
        actual = file_digest(artifact.path)
        if actual != artifact.digest:
            raise BuildError(f"Artifact {artifact.version} changed since it was built (sha256 {actual})")
        return artifact
