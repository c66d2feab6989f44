"""
CLI runner module.

Provides commands:
- status / discover: inspect connectivity and the chosen endpoint
- init-remote / verify-empty / purge: remote database maintenance
- sync: one-shot or live replication
- add-business / add-article / list / reset: local data
"""

from .main import create_cli, main

__all__ = [
    "create_cli",
    "main",
]
