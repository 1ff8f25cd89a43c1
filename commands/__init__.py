"""
Command Modules
Caller-driven operations with progress reporting
"""

from .sync_commands import SyncProjectCommand

__all__ = ["SyncProjectCommand"]
