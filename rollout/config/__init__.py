"""
Configuration validation package.

This package contains modules for validating release files and the
deployment configuration against JSON schemas and governance rules.
"""

__all__ = ['validation']
