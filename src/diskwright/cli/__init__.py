"""
Diskwright CLI Module.

Provides the ``diskwright`` command-line interface.
"""

from diskwright.cli.main import cli, main

__all__ = ["cli", "main"]
