"""
Entry point of `treesync` CLI, invoked as `python -m treesync.tools.cli`.
"""

from .main import app

app()
