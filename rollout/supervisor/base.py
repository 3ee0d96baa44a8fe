#!/usr/bin/env python3
"""
Base interface for the process supervisor running the application workers.
"""


class ProcessSupervisor:
    """
    Interface for clustered multi-worker process managers.

    reload() must replace workers one at a time, keeping each old worker
    serving until its replacement accepts connections.
    """

    def reload(self):
        """Zero-downtime rolling reload of every worker."""
        raise NotImplementedError("Subclasses must implement reload()")

    def restart(self):
        """Stop then start all workers. Briefly unavailable; manual recovery only."""
        raise NotImplementedError("Subclasses must implement restart()")

    def stop(self):
        raise NotImplementedError("Subclasses must implement stop()")

    def status(self):
        """List of WorkerStatus, one per registered worker."""
        raise NotImplementedError("Subclasses must implement status()")
