"""
runner/ — Agent runner contract and the subprocess-backed implementation.
"""

from cronpilot.runner.base import AgentRunner, AgentStatus, CompletedAgentInfo, Subscription
from cronpilot.runner.subprocess_runner import SubprocessAgentRunner

__all__ = [
    "AgentRunner",
    "AgentStatus",
    "CompletedAgentInfo",
    "Subscription",
    "SubprocessAgentRunner",
]
