"""
Agent Loop
"""

from .agent_loop import AgentLoop, LoopModule

__all__ = [
    "AgentLoop",
    "LoopModule",
]
