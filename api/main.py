"""
FastAPI Service for the DevPilot orchestrator

Exposes the HTTP surface used by clients (tasks, projects, models, status
streams) and by agent nodes (heartbeat). Every request passes the per-client
rate limiter first; heartbeat calls must also present the shared agent
secret.
"""

import logging
from typing import Any, Callable, Dict, Optional

from fastapi import BackgroundTasks, Depends, FastAPI, Header, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, RedirectResponse, StreamingResponse
from pydantic import Field

from shared.config import Settings, load_settings
from shared.file_logger import setup_file_logger
from shared.kv_store import InMemoryKeyValueStore, KeyValueStore
from shared.llm_client import LLMClient
from shared.schemas import AgentNode, AuditEntry, DevPilotRecord, HeartbeatRequest, Task
from orchestrator.agent_client import AgentClient
from orchestrator.audit_log import AuditLog
from orchestrator.auth import AGENT_SECRET_HEADER, SessionAuthenticator, SharedSecretGuard
from orchestrator.errors import AgentUnreachableError
from orchestrator.model_routing import AVAILABLE_MODELS, route_provider
from orchestrator.rate_limiter import RateLimiter
from orchestrator.react_loop import OrchestrationLoop
from orchestrator.registry import AgentRegistry, ProjectResolver
from orchestrator.status_streamer import StatusStreamer
from orchestrator.task_store import TaskStore
from orchestrator.users import IdentityProvider, UserStore

logger = logging.getLogger(__name__)

REGION_HEADER = "X-Edge-Region"
CLIENT_IP_HEADER = "CF-Connecting-IP"


# Pydantic models
class CreateTaskRequest(DevPilotRecord):
    """Request model for POST /api/tasks"""
    project_id: str = Field(..., min_length=1)
    prompt: str = Field(..., min_length=1, max_length=10000)
    mode: str = "agent"
    model_id: str = Field(..., min_length=1)


def client_identifier(request: Request) -> str:
    """Edge-provided client IP, else the socket peer, else loopback"""
    forwarded = request.headers.get(CLIENT_IP_HEADER)
    if forwarded:
        return forwarded
    if request.client and request.client.host:
        return request.client.host
    return "127.0.0.1"


def create_app(
    settings: Optional[Settings] = None,
    store: Optional[KeyValueStore] = None,
    llm: Optional[Any] = None,
    agent_client: Optional[AgentClient] = None,
    identity_provider: Optional[IdentityProvider] = None,
    clock: Optional[Callable[[], float]] = None
) -> FastAPI:
    """
    Application factory.

    Args:
        settings: Runtime settings (read from the environment when omitted)
        store: Key-value backend (in-memory when omitted)
        llm: Model client; built from LLM_* settings when omitted and a key
            is configured
        agent_client: HTTP client for agent nodes
        identity_provider: OAuth code exchange used by the auth callback
        clock: Time source shared by every time-dependent component

    Returns:
        Configured FastAPI app
    """
    settings = settings or load_settings()
    clock_kwargs = {"clock": clock} if clock else {}

    store = store if store is not None else InMemoryKeyValueStore(**clock_kwargs)
    if llm is None and settings.llm_api_key:
        llm = LLMClient(
            api_key=settings.llm_api_key,
            base_url=settings.llm_base_url,
            model=settings.llm_model
        )
    if llm is None:
        logger.warning("[API] No LLM_API_KEY configured; tasks will not run")

    agent_client = agent_client or AgentClient(settings.agent_secret, timeout=settings.agent_timeout)
    audit_log = AuditLog(store)
    task_store = TaskStore(store)
    users = UserStore(store)
    registry = AgentRegistry(store, ttl_seconds=settings.agent_ttl_seconds, **clock_kwargs)
    resolver = ProjectResolver(registry, agent_client, static_endpoint=settings.agent_endpoint)
    authenticator = SessionAuthenticator(settings.jwt_secret, **clock_kwargs)
    secret_guard = SharedSecretGuard(settings.agent_secret, audit_log)
    rate_limiter = RateLimiter(
        capacity=settings.rate_limit_capacity,
        refill_rate=settings.rate_limit_refill,
        **clock_kwargs
    )
    loop = OrchestrationLoop(
        task_store=task_store,
        resolver=resolver,
        agent_client=agent_client,
        llm=llm,
        audit_log=audit_log,
        max_steps=settings.max_steps
    )
    streamer = StatusStreamer(
        task_store,
        interval=settings.stream_interval,
        max_lifetime=settings.stream_lifetime
    )

    app = FastAPI(
        title="DevPilot Orchestrator API",
        version=settings.version,
        description="Routes coding tasks to federated local agents"
    )
    app.state.settings = settings
    app.state.store = store
    app.state.task_store = task_store
    app.state.audit_log = audit_log
    app.state.registry = registry
    app.state.resolver = resolver
    app.state.authenticator = authenticator
    app.state.rate_limiter = rate_limiter
    app.state.loop = loop
    app.state.users = users

    @app.middleware("http")
    async def edge_gate(request: Request, call_next):
        source = client_identifier(request)
        if not rate_limiter.allow(source):
            logger.warning(f"[API] Rate limit exceeded for {source}")
            response = JSONResponse({"detail": "Rate limit exceeded"}, status_code=429)
        elif secret_guard.applies_to(request.url.path) and not secret_guard.check(
            request.headers.get(AGENT_SECRET_HEADER), source
        ):
            response = JSONResponse({"detail": "Unauthorized Agent"}, status_code=401)
        else:
            response = await call_next(request)
        response.headers[REGION_HEADER] = settings.edge_region
        return response

    # Outermost, so edge_gate rejections carry CORS headers as well
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    def current_claims(authorization: Optional[str] = Header(default=None)) -> Dict[str, Any]:
        if not authorization or not authorization.startswith("Bearer "):
            raise HTTPException(status_code=401, detail="Unauthorized")
        claims = authenticator.verify(authorization[len("Bearer "):].strip())
        if claims is None:
            raise HTTPException(status_code=401, detail="Invalid Token")
        return claims

    # Endpoints
    @app.get("/health")
    async def health_check():
        """Health check endpoint"""
        return {
            "status": "ok",
            "service": settings.service_name,
            "region": settings.edge_region,
            "version": settings.version,
        }

    @app.get("/api/models")
    async def list_models():
        return AVAILABLE_MODELS

    @app.get("/api/projects")
    async def list_projects():
        """Projects from the static agent and every live agent node"""
        return await resolver.aggregate()

    @app.post("/api/agents/heartbeat")
    async def heartbeat(body: HeartbeatRequest, request: Request):
        """Register or refresh an agent node"""
        registry.register(AgentNode(
            id=body.agent_id,
            url=body.url.rstrip("/"),
            region=request.headers.get(REGION_HEADER) or "unknown",
            projects=body.projects,
        ))
        return {"status": "registered", "ttl": int(registry.ttl_seconds)}

    @app.get("/api/auth/{provider}/callback")
    async def auth_callback(provider: str, code: Optional[str] = None):
        """
        Complete an OAuth login.

        Exchanges the code with the identity provider, upserts the user and
        issues a session token. The token is handed to the frontend by
        redirect when FRONTEND_URL is configured, else returned as JSON.
        """
        if not code:
            raise HTTPException(status_code=400, detail="No code provided")
        if identity_provider is None:
            raise HTTPException(status_code=501, detail="No identity provider configured")

        try:
            profile = identity_provider.exchange(provider, code)
        except Exception as e:
            logger.error(f"[API] Identity exchange with {provider} failed: {e}", exc_info=True)
            raise HTTPException(status_code=500, detail="Auth failed")

        user = users.upsert_login(provider, profile)
        token = authenticator.issue(user)
        logger.info(f"[API] User {user.id} logged in via {provider}")

        if settings.frontend_url:
            return RedirectResponse(f"{settings.frontend_url}?token={token}", status_code=302)
        return {"token": token, "user": user.to_dict()}

    @app.get("/api/user/me")
    async def current_user(claims: Dict[str, Any] = Depends(current_claims)):
        user = users.get(claims["sub"])
        if user is None:
            raise HTTPException(status_code=404, detail="User not found")
        return user.to_dict()

    @app.get("/api/admin/audit-logs")
    async def audit_logs(claims: Dict[str, Any] = Depends(current_claims)):
        return [entry.to_dict() for entry in audit_log.list()]

    @app.get("/api/tasks")
    async def list_tasks(claims: Dict[str, Any] = Depends(current_claims)):
        """Caller's tasks, newest first"""
        return [task.to_dict() for task in task_store.list_by_user(claims["sub"])]

    @app.post("/api/tasks", status_code=201)
    async def create_task(
        body: CreateTaskRequest,
        background_tasks: BackgroundTasks,
        claims: Dict[str, Any] = Depends(current_claims)
    ):
        """
        Submit a coding task.

        The task is persisted as pending and returned immediately; the
        orchestration loop runs after the response is sent.
        """
        provider = route_provider(body.model_id)
        task = Task(
            user_id=claims["sub"],
            project_id=body.project_id,
            prompt=body.prompt,
            mode=body.mode,
            model_id=body.model_id,
            provider=provider,
        )
        task_store.put(task)
        logger.info(f"[API] Task {task.id} created for project {task.project_id} ({body.model_id} via {provider})")

        background_tasks.add_task(loop.run, task.id)
        return task.to_dict()

    @app.get("/api/tasks/{task_id}")
    async def get_task(task_id: str, claims: Dict[str, Any] = Depends(current_claims)):
        task = task_store.get(task_id)
        if task is None:
            raise HTTPException(status_code=404, detail="Task not found")
        if task.user_id != claims["sub"]:
            raise HTTPException(status_code=403, detail="Forbidden")
        return task.to_dict()

    @app.get("/api/tasks/{task_id}/events")
    async def task_events(task_id: str):
        """Server-sent task snapshots until the task ends or the stream times out"""
        return StreamingResponse(
            streamer.stream(task_id),
            media_type="text/event-stream",
            headers={"Cache-Control": "no-cache", "Connection": "keep-alive"},
        )

    @app.post("/api/agent/tools/{tool}")
    async def proxy_tool(
        tool: str,
        request: Request,
        claims: Dict[str, Any] = Depends(current_claims)
    ):
        """
        Forward a tool call to the agent that owns the body's projectId.

        The agent's status code and body are relayed unchanged.
        """
        try:
            body = await request.json()
        except ValueError:
            raise HTTPException(status_code=400, detail="Request body must be JSON")
        project_id = body.get("projectId") if isinstance(body, dict) else None

        url, agent_id = resolver.resolve_target(project_id)
        if not url:
            audit_log.append(AuditEntry(
                action="DENY",
                description=f"Tool {tool} blocked: Project {project_id} not found",
                actor="Worker-Router",
                metadata={"tool": tool, "projectId": project_id, "userId": claims["sub"]},
            ))
            raise HTTPException(status_code=404, detail="No agent found for this project")

        audit_log.append(AuditEntry(
            action="ALLOW",
            description=f"Tool {tool} routed to {agent_id}",
            actor=agent_id,
            metadata={"tool": tool, "projectId": project_id, "userId": claims["sub"]},
        ))

        try:
            status_code, data = await agent_client.forward_tool(url, tool, body)
        except AgentUnreachableError as e:
            logger.warning(f"[API] Tool proxy to {agent_id} failed: {e}")
            raise HTTPException(status_code=502, detail="Agent not reachable")
        return JSONResponse(data, status_code=status_code)

    return app


app = create_app()


# For running with uvicorn
if __name__ == "__main__":
    import uvicorn

    settings = app.state.settings
    setup_file_logger("api", log_level=settings.log_level, output_dir=settings.log_dir or None)
    uvicorn.run(app, host="0.0.0.0", port=8000)
