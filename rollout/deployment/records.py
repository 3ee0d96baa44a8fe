#!/usr/bin/env python3
"""
Deployment records: the structured per-stage timing log of each attempt.
Written as YAML locally and published to the configured storage backend.
"""

import os
from pathlib import Path

import yaml

from .utils import load_yaml
from ..storage import get_storage_backend


class RecordWriter:
    def __init__(self, record_dir="records", storage=None):
        self.record_dir = Path(record_dir)
        self.storage = storage

    @classmethod
    def from_config(cls, config):
        deployment = config.get('deployment', {})
        return cls(deployment.get('record_dir', 'records'), get_storage_backend(config))

    def record_name(self, attempt):
        return f"{attempt.app}-{attempt.version}-{attempt.attempt_id}.yaml"

    def write(self, attempt):
        self.record_dir.mkdir(parents=True, exist_ok=True)
        record = attempt.to_dict()
        record['deployed_by'] = os.environ.get('GITLAB_USER_LOGIN', os.environ.get('USER', 'unknown'))
        record['ci_pipeline_id'] = os.environ.get('CI_PIPELINE_ID', 'local')

        record_path = self.record_dir / self.record_name(attempt)
        with open(record_path, 'w') as f:
            yaml.dump(record, f, default_flow_style=False, sort_keys=False)
        print(f"Saved deployment record: {record_path}")

        if self.storage is not None:
            key = f"{attempt.host}/{record_path.name}"
            try:
                self.storage.upload_file(record_path, key)
            except Exception as e:
                # The attempt outcome stands even when publishing fails
                print(f"WARNING: Could not publish deployment record: {e}")
        return record_path

    def history(self, host=None, limit=10):
        """Most recent records first."""
        if not self.record_dir.exists():
            return []
        records = [load_yaml(path) for path in self.record_dir.glob("*.yaml")]
        if host:
            records = [r for r in records if r.get('host') == host]
        records.sort(key=lambda r: r.get('started_at') or '', reverse=True)
        return records[:limit]


def format_stage_log(attempt):
    """Render the stage log as a fixed-width table for the console."""
    lines = [f"{'STAGE':<14} {'STATUS':<10} {'SECONDS':>8}  DETAIL"]
    for stage in attempt.stages:
        duration = f"{stage.duration:.2f}" if stage.duration is not None else "-"
        lines.append(f"{stage.state.value:<14} {stage.status:<10} {duration:>8}  {stage.detail}")
    return "\n".join(lines)
