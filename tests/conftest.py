"""
DevPilot - Test Fixtures

Shared fixtures for integration testing. Agent nodes are simulated with
httpx.MockTransport, the model with unittest.mock, and time with a manual
clock so TTLs and token buckets can be driven deterministically.
"""

import json
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional
from unittest.mock import MagicMock

import httpx
import pytest
from fastapi.testclient import TestClient

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from shared.config import Settings
from shared.kv_store import InMemoryKeyValueStore
from shared.schemas import AgentNode, IdentityProfile, Project, Task, User
from orchestrator.agent_client import AgentClient
from orchestrator.audit_log import AuditLog
from orchestrator.registry import AgentRegistry, ProjectResolver
from orchestrator.task_store import TaskStore

AGENT_SECRET = "devpilot-secret-key"
AGENT_URL = "http://agent-n1.test"


class ManualClock:
    """Time source that only moves when told to"""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeAgent:
    """
    In-memory agent node served through httpx.MockTransport.

    Holds a flat file map for one or more projects and records every
    request it receives.
    """

    def __init__(self, files: Optional[Dict[str, str]] = None):
        self.files = dict(files or {"README.md": "# demo", "src/app.py": "print('hi')"})
        self.projects: List[Dict[str, Any]] = [
            {"id": "p1", "name": "Demo", "root": "/work/demo", "allowedCommands": ["npm test"]}
        ]
        self.requests: List[httpx.Request] = []
        self.failures: Dict[str, httpx.Response] = {}
        self.offline = False

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handle)

    def calls_to(self, tool: str) -> List[dict]:
        return [
            json.loads(request.content)
            for request in self.requests
            if request.url.path == f"/tools/{tool}"
        ]

    def handle(self, request: httpx.Request) -> httpx.Response:
        if self.offline:
            raise httpx.ConnectError("connection refused", request=request)
        self.requests.append(request)

        if request.headers.get("X-Agent-Secret") != AGENT_SECRET:
            return httpx.Response(401, json={"error": "bad secret"})

        path = request.url.path
        if path == "/projects":
            return httpx.Response(200, json=self.projects)

        tool = path.rsplit("/", 1)[-1]
        if tool in self.failures:
            return self.failures[tool]

        body = json.loads(request.content or b"{}")
        if tool == "list_files":
            names = sorted({name.split("/")[0] for name in self.files})
            return httpx.Response(200, json=[
                {"name": name, "isDir": name not in self.files, "size": 0} for name in names
            ])
        if tool == "read_file":
            return httpx.Response(200, json={"content": self.files.get(body.get("path"), "")})
        if tool == "apply_patch":
            for op in body.get("operations", []):
                self.files[op["path"]] = op["content"]
            return httpx.Response(200, json={"applied": len(body.get("operations", [])), "errors": []})
        if tool == "run_command":
            return httpx.Response(200, json={"stdout": f"ran {body.get('command')}", "stderr": "", "exitCode": 0})
        return httpx.Response(404, text="unknown tool")


class StaticIdentityProvider:
    """Identity provider returning a fixed profile for any code"""

    def __init__(self, profile: IdentityProfile):
        self.profile = profile
        self.codes: List[str] = []

    def exchange(self, provider: str, code: str) -> IdentityProfile:
        self.codes.append(code)
        return self.profile


def scripted_model(*replies: str) -> MagicMock:
    """Model mock whose complete() returns the given replies in order"""
    model = MagicMock()
    model.complete.side_effect = list(replies)
    return model


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def kv_store(clock):
    return InMemoryKeyValueStore(clock=clock)


@pytest.fixture
def fake_agent():
    return FakeAgent()


@pytest.fixture
def agent_client(fake_agent):
    return AgentClient(AGENT_SECRET, timeout=5.0, transport=fake_agent.transport())


@pytest.fixture
def audit_log(kv_store):
    return AuditLog(kv_store)


@pytest.fixture
def task_store(kv_store):
    return TaskStore(kv_store)


@pytest.fixture
def registry(kv_store, clock):
    return AgentRegistry(kv_store, ttl_seconds=60.0, clock=clock)


@pytest.fixture
def resolver(registry, agent_client):
    return ProjectResolver(registry, agent_client)


@pytest.fixture
def register_agent(registry):
    """Register node n1 serving project p1 at AGENT_URL"""
    def _register(node_id: str = "n1", project_ids=("p1",), url: str = AGENT_URL) -> AgentNode:
        return registry.register(AgentNode(
            id=node_id,
            url=url,
            projects=[Project(id=pid, name=pid.upper()) for pid in project_ids],
        ))
    return _register


@pytest.fixture
def pending_task(task_store):
    task = Task(
        user_id="user_1",
        project_id="p1",
        prompt="Add a README section",
        mode="agent",
        model_id="gpt-oss-120b",
        provider="openai",
    )
    task_store.put(task)
    return task


@pytest.fixture
def test_settings():
    return Settings(
        llm_api_key="",
        stream_interval=0.01,
        stream_lifetime=2.0,
    )


@pytest.fixture
def identity_provider():
    return StaticIdentityProvider(IdentityProfile(
        provider_id="gh-42",
        email="ada@example.com",
        name="Ada",
        avatar_url="https://avatars.example.com/42",
    ))


@pytest.fixture
def make_app(test_settings, kv_store, agent_client, identity_provider, clock):
    """Factory building the API with test doubles; pass llm= to script the model"""
    from api.main import create_app

    def _make(llm=None, settings: Settings = None):
        return create_app(
            settings=settings or test_settings,
            store=kv_store,
            llm=llm,
            agent_client=agent_client,
            identity_provider=identity_provider,
            clock=clock,
        )
    return _make


@pytest.fixture
def session_user(kv_store):
    """A persisted user"""
    from orchestrator.users import UserStore

    user = User(email="ada@example.com", name="Ada", provider="github", provider_id="gh-42")
    UserStore(kv_store).save(user)
    return user


def auth_headers(app, user: User) -> Dict[str, str]:
    return {"Authorization": f"Bearer {app.state.authenticator.issue(user)}"}


def heartbeat(client: TestClient, agent_id: str = "n1", project_ids=("p1",), url: str = AGENT_URL):
    return client.post(
        "/api/agents/heartbeat",
        json={
            "agentId": agent_id,
            "url": url,
            "projects": [{"id": pid, "name": pid.upper(), "root": f"/work/{pid}", "allowedCommands": []} for pid in project_ids],
        },
        headers={"X-Agent-Secret": AGENT_SECRET},
    )
