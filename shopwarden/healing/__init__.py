"""
Self-Healer
"""

from .healer import REMEDIES, HealResult, HealStrategy, SelfHealer, classify

__all__ = [
    "REMEDIES",
    "HealResult",
    "HealStrategy",
    "SelfHealer",
    "classify",
]
