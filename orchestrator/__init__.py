"""
Orchestrator - Central coordination service for DevPilot

The orchestrator federates agent nodes by heartbeat, resolves projects to
the node hosting them, runs the bounded tool-calling loop for each task and
reports task status back to clients.
"""

from .audit_log import AuditLog
from .auth import SessionAuthenticator, SharedSecretGuard
from .agent_client import AgentClient
from .rate_limiter import RateLimiter
from .registry import AgentRegistry, ProjectResolver
from .react_loop import OrchestrationLoop
from .status_streamer import StatusStreamer
from .task_store import TaskStore
from .users import UserStore

__all__ = [
    "AuditLog",
    "SessionAuthenticator",
    "SharedSecretGuard",
    "AgentClient",
    "RateLimiter",
    "AgentRegistry",
    "ProjectResolver",
    "OrchestrationLoop",
    "StatusStreamer",
    "TaskStore",
    "UserStore",
]
