"""
Persistent cron scheduler
"""

from .scheduler import CronJobRecord, PersistentScheduler

__all__ = [
    "CronJobRecord",
    "PersistentScheduler",
]
