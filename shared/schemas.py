"""
DevPilot - Record Schemas

Pydantic models for every record the orchestrator persists or returns.
Records serialize to camelCase JSON, which is also the wire format used by
agent nodes and clients.
"""

from pydantic import BaseModel, Field, ConfigDict
from pydantic.alias_generators import to_camel
from datetime import datetime, UTC
from typing import Optional, Dict, Any, List, Literal
import uuid


class DevPilotRecord(BaseModel):
    """Base class for all DevPilot records"""
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True
    )

    def to_json(self) -> str:
        """Serialize to JSON string"""
        return self.model_dump_json(by_alias=True)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to a JSON-compatible dict"""
        return self.model_dump(mode="json", by_alias=True)

    @classmethod
    def from_json(cls, json_str: str):
        """Deserialize from JSON string"""
        return cls.model_validate_json(json_str)


def utc_now() -> datetime:
    return datetime.now(UTC)


# ============================================
# Task Lifecycle
# ============================================

TaskStatus = Literal["pending", "planning", "running", "done", "error"]

# Rank of each status along the lifecycle; a task may only move to a
# status of strictly higher rank. done and error share the terminal rank.
STATUS_RANK = {
    "pending": 0,
    "planning": 1,
    "running": 2,
    "done": 3,
    "error": 3,
}

TERMINAL_STATUSES = frozenset({"done", "error"})


class InvalidTransitionError(ValueError):
    """Raised when a task mutation would break its lifecycle invariants."""


class Task(DevPilotRecord):
    """A natural-language coding task and its execution record"""
    id: str = Field(default_factory=lambda: f"task_{uuid.uuid4().hex[:8]}")
    user_id: str
    project_id: str
    prompt: str
    mode: str
    model_id: str
    provider: Optional[str] = None
    status: TaskStatus = "pending"
    logs: List[str] = Field(default_factory=list)
    result_summary: Optional[str] = None
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def advance(self, status: str) -> None:
        """
        Move the task forward in its lifecycle.

        Args:
            status: Target status

        Raises:
            InvalidTransitionError: If the target is not strictly ahead of
                the current status
        """
        if status not in STATUS_RANK:
            raise InvalidTransitionError(f"Unknown task status: {status}")
        if self.is_terminal or STATUS_RANK[status] <= STATUS_RANK[self.status]:
            raise InvalidTransitionError(
                f"Task {self.id} cannot move from {self.status} to {status}"
            )
        self.status = status
        self.touch()

    def append_log(self, line: str) -> None:
        self.logs.append(line)
        self.touch()

    def finish(self, summary: str) -> None:
        """
        Mark the task done and record its result summary.

        The summary is written exactly once, together with the transition
        to done.
        """
        if self.result_summary is not None:
            raise InvalidTransitionError(f"Task {self.id} already has a result")
        self.advance("done")
        self.result_summary = summary

    def touch(self) -> None:
        self.updated_at = utc_now()


# ============================================
# Federation
# ============================================

class Project(DevPilotRecord):
    """A project exposed by an agent node"""
    id: str
    name: str
    root: str = ""
    allowed_commands: List[str] = Field(default_factory=list)


class AgentNode(DevPilotRecord):
    """A live agent node, as reported by its most recent heartbeat"""
    id: str
    url: str
    region: str = "unknown"
    projects: List[Project] = Field(default_factory=list)
    last_seen: float = 0.0

    def hosts(self, project_id: str) -> bool:
        return any(project.id == project_id for project in self.projects)


class HeartbeatRequest(DevPilotRecord):
    """Registration payload sent by agent nodes"""
    agent_id: str = Field(..., min_length=1)
    url: str = Field(..., min_length=1)
    projects: List[Project] = Field(default_factory=list)


class ProjectListing(Project):
    """A project tagged with the agent node that currently hosts it"""
    agent_id: str


# ============================================
# Security
# ============================================

class AuditEntry(DevPilotRecord):
    """A single allow/deny routing decision"""
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    timestamp: datetime = Field(default_factory=utc_now)
    action: Literal["ALLOW", "DENY"]
    description: str
    actor: str
    metadata: Optional[Dict[str, Any]] = None


class User(DevPilotRecord):
    """An authenticated user"""
    id: str = Field(default_factory=lambda: f"user_{uuid.uuid4()}")
    email: str
    name: str
    avatar_url: Optional[str] = None
    provider: str
    provider_id: str
    created_at: datetime = Field(default_factory=utc_now)
    last_login: datetime = Field(default_factory=utc_now)


class IdentityProfile(BaseModel):
    """Profile returned by an identity provider after a code exchange"""
    provider_id: str
    email: str
    name: str
    avatar_url: Optional[str] = None
