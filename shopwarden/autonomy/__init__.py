"""
Autonomy Gate
"""

from .gate import AUTONOMY_THRESHOLD, SCORE_WEIGHTS, AutonomyGate, ScoreEvent

__all__ = [
    "AUTONOMY_THRESHOLD",
    "SCORE_WEIGHTS",
    "AutonomyGate",
    "ScoreEvent",
]
