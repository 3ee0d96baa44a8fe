#!/usr/bin/env python3
"""
PM2 cluster-mode supervisor adapter.
"""

import json
import shlex
import time

from .base import ProcessSupervisor
from ..deployment.errors import SupervisorError
from ..deployment.models import WorkerState, WorkerStatus
from ..executors import ExecutorError

PM2_STATES = {
    'launching': WorkerState.STARTING,
    'online': WorkerState.ONLINE,
    'errored': WorkerState.ERRORED,
    'one-launch-status': WorkerState.ERRORED,
    'stopping': WorkerState.STOPPED,
    'stopped': WorkerState.STOPPED,
}


class Pm2Supervisor(ProcessSupervisor):
    """
    Drives PM2 through the host executor.

    reload() reloads worker by worker (pm2 reload <pm_id>) and waits for each
    replacement to report online with a new pid before moving on, so at most
    one worker is out of rotation at any time.
    """

    def __init__(self, executor, app_name, pm2_bin="pm2", command_timeout=60,
                 online_timeout=30, poll_interval=1, sleep=time.sleep, clock=time.monotonic):
        self.executor = executor
        self.app_name = app_name
        self.pm2_bin = pm2_bin
        self.command_timeout = command_timeout
        self.online_timeout = online_timeout
        self.poll_interval = poll_interval
        self.sleep = sleep
        self.clock = clock

    def _pm2(self, args):
        command = f"{self.pm2_bin} {args}"
        try:
            stdout, stderr, returncode = self.executor.run(command, self.command_timeout)
        except ExecutorError as e:
            raise SupervisorError(f"'{command}' failed: {e}") from e
        if returncode != 0:
            raise SupervisorError(f"'{command}' failed (exit {returncode}): {stderr.strip()}")
        return stdout

    def status(self):
        stdout = self._pm2("jlist")
        try:
            processes = json.loads(stdout or "[]")
        except ValueError as e:
            raise SupervisorError(f"Unreadable pm2 jlist output: {e}") from e

        workers = []
        for proc in processes:
            if proc.get('name') != self.app_name:
                continue
            pm2_status = proc.get('pm2_env', {}).get('status', 'stopped')
            workers.append(WorkerStatus(
                worker_id=proc['pm_id'],
                name=proc['name'],
                state=PM2_STATES.get(pm2_status, WorkerState.ERRORED),
                pid=proc.get('pid') or None,
            ))
        return sorted(workers, key=lambda worker: worker.worker_id)

    def _wait_online(self, previous):
        deadline = self.clock() + self.online_timeout
        while True:
            current = next((w for w in self.status() if w.worker_id == previous.worker_id), None)
            if current is not None:
                if current.state == WorkerState.ONLINE and current.pid != previous.pid:
                    return current
                if current.state == WorkerState.ERRORED:
                    raise SupervisorError(f"Worker {previous.worker_id} errored during reload")
            if self.clock() >= deadline:
                raise SupervisorError(
                    f"Worker {previous.worker_id} did not come online within {self.online_timeout}s"
                )
            self.sleep(self.poll_interval)

    def reload(self):
        workers = self.status()
        if not workers:
            raise SupervisorError(f"No process registered with pm2 for app '{self.app_name}'")

        print(f"Reloading {len(workers)} workers of '{self.app_name}' one at a time...")
        for worker in workers:
            self._pm2(f"reload {worker.worker_id}")
            replacement = self._wait_online(worker)
            print(f"  ✓ worker {worker.worker_id} online (pid {worker.pid} -> {replacement.pid})")
        print(f"[OK] Reloaded '{self.app_name}'")

    def restart(self):
        print(f"Restarting '{self.app_name}' (stop then start)...")
        self._pm2(f"restart {shlex.quote(self.app_name)}")

    def stop(self):
        print(f"Stopping '{self.app_name}'...")
        self._pm2(f"stop {shlex.quote(self.app_name)}")
