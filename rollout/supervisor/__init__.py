"""
Process supervisor adapters.
"""

from .base import ProcessSupervisor
from .pm2 import Pm2Supervisor
from ..deployment.errors import ConfigError


def get_supervisor(host, executor):
    """Factory function to build the supervisor named in the host's `supervisor` section."""
    settings = host.settings.get('supervisor', {})
    kind = settings.get('type', 'pm2')

    if kind == 'pm2':
        if 'app_name' not in settings:
            raise ConfigError(f"Host '{host.name}' supervisor config needs app_name")
        return Pm2Supervisor(
            executor,
            settings['app_name'],
            pm2_bin=settings.get('pm2_bin', 'pm2'),
            command_timeout=settings.get('command_timeout', 60),
            online_timeout=settings.get('online_timeout', 30),
            poll_interval=settings.get('poll_interval', 1),
        )
    raise ConfigError(f"Unknown supervisor type: {kind}")


__all__ = ['ProcessSupervisor', 'Pm2Supervisor', 'get_supervisor']
