"""
Critical Lane - serialized marketplace writes
"""

from .critical_lane import CriticalLane, Priority, QueueTask

__all__ = [
    "CriticalLane",
    "Priority",
    "QueueTask",
]
