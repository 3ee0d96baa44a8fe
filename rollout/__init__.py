"""
rollout - single-host deploy, verify and rollback orchestration.
"""

__version__ = "1.0.0"
