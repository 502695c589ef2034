"""
Monitor Package
===============

Long-running liquidation monitor service.

Components:
- orchestrator.py: MonitorService wiring the source, store, fetcher and scheduler
"""

from .orchestrator import MonitorService, SourceUnavailableError, SyncResult

__all__ = [
    "MonitorService",
    "SourceUnavailableError",
    "SyncResult",
]
