"""
ReAct Loop - Bounded tool-calling loop for coding tasks

Implements the ReAct pattern against a single agent node:
1. Reason - the model decides what to do next
2. Act - a requested tool runs on the agent hosting the task's project
3. Observe - the tool output is fed back to the model
4. Repeat until the model answers in plain text or the step budget runs out

The loop runs detached from the request that created the task. Its only
observable effect is what it writes to the TaskStore.
"""

import asyncio
import json
import logging
from typing import Any, Dict, List, Optional, Tuple

from shared.llm_client import LLMClient
from shared.schemas import AuditEntry, Task
from orchestrator.agent_client import AgentClient
from orchestrator.audit_log import AuditLog
from orchestrator.errors import AgentUnreachableError, ToolArgumentError, UpstreamAgentError
from orchestrator.model_routing import route_provider
from orchestrator.registry import ProjectResolver
from orchestrator.task_store import TaskStore
from orchestrator.tool_calls import (
    ListFilesCall,
    ReadFileCall,
    RunCommandCall,
    ToolCall,
    UnrecognizedToolCall,
    WriteToFileCall,
    build_tool_call,
    extract_tool_payload,
)

logger = logging.getLogger(__name__)

MAX_STEPS = 5
MAX_CONTEXT_FILES = 50
LOG_PREVIEW_CHARS = 100
TOOL_OUTPUT_CHARS = 2000
LISTING_OUTPUT_CHARS = 1000

NO_FILES_CONTEXT = "No files found (Agent offline or project empty)"
EXHAUSTED_MESSAGE = "Task timed out or reached max steps."
AGENT_MISSING_RESULT = "Error: Agent disconnected or project not found. Make sure the local agent is running."
UNKNOWN_TOOL_RESULT = "Error: Unknown tool."
TROUBLESHOOTING = (
    "Troubleshooting:\n"
    "1. Ensure the local agent is running.\n"
    "2. Check that the agent's public URL (tunnel) is reachable from the orchestrator."
)
AGENT_OFFLINE_NOTE = (
    "\n\n[Agent offline] No agent was serving project {project_id} while this task ran.\n"
    + TROUBLESHOOTING
)

SYSTEM_PROMPT = """You are DevPilot, an advanced coding agent connected to the user's local filesystem.

AVAILABLE TOOLS:
1. read_file(path: string): Reads file content.
2. write_to_file(path: string, content: string): Creates or overwrites a file.
3. run_command(command: string): Runs a shell command.
4. list_files(path: string): Lists directory contents.

FORMAT:
To use a tool, you must output a SINGLE JSON object in this exact format and NOTHING else:
{{ "tool": "read_file", "args": {{ "path": "src/App.tsx" }} }}

To speak to the user (final answer), output standard text (not JSON).

CURRENT PROJECT CONTEXT:
{file_context}"""


def render_listing(entries: List[Dict[str, Any]], limit: int = MAX_CONTEXT_FILES) -> str:
    """
    Render an agent file listing for the system prompt.

    Args:
        entries: Listing as returned by list_files ([{name, isDir, size}])
        limit: Maximum number of entries shown

    Returns:
        One entry per line, directories suffixed with "/", followed by a
        count of the entries left out
    """
    if not entries:
        return NO_FILES_CONTEXT

    names = []
    for entry in entries:
        if not isinstance(entry, dict):
            names.append(str(entry))
        elif entry.get("isDir"):
            names.append(f"{entry.get('name', '')}/")
        else:
            names.append(str(entry.get("name", "")))
    context = "\n".join(names[:limit])
    if len(names) > limit:
        context += f"\n...({len(names) - limit} more)"
    return context


def connection_error_context(url: str, details: str) -> str:
    return (
        f"[SYSTEM ERROR] Could not connect to Local Agent at {url}.\n"
        f"Details: {details}\n\n"
        f"{TROUBLESHOOTING}"
    )


def _field(data: Any, key: str) -> Any:
    return data.get(key) if isinstance(data, dict) else None


def _text(value: Any) -> str:
    return value if isinstance(value, str) else json.dumps(value)


class OrchestrationLoop:
    """
    Drives one task from running to done.

    Every task mutation is read-modify-write through the TaskStore, so a
    concurrent writer to the same task can overwrite the loop's progress
    (and the other way round).
    """

    def __init__(
        self,
        task_store: TaskStore,
        resolver: ProjectResolver,
        agent_client: AgentClient,
        llm: Optional[LLMClient],
        audit_log: AuditLog,
        max_steps: int = MAX_STEPS
    ):
        """
        Initialize the loop.

        Args:
            task_store: Task persistence
            resolver: Maps the task's project to its agent node
            agent_client: HTTP client for agent tool endpoints
            llm: Model client; anything with complete(messages) -> str
            audit_log: Records each tool routing decision
            max_steps: Maximum model calls per task
        """
        self.task_store = task_store
        self.resolver = resolver
        self.agent_client = agent_client
        self.llm = llm
        self.audit_log = audit_log
        self.max_steps = max_steps

    async def run(self, task_id: str) -> None:
        """
        Execute a task to completion.

        Failures that escape the step loop are logged and swallowed: the
        task keeps whatever status it last reached.

        Args:
            task_id: Identifier of a persisted pending task
        """
        try:
            await self._execute(task_id)
        except Exception as e:
            logger.error(f"[REACT] Task {task_id} processing error: {e}", exc_info=True)

    async def _execute(self, task_id: str) -> None:
        task = self.task_store.get(task_id)
        if task is None:
            logger.warning(f"[REACT] Task {task_id} vanished before it could start")
            return
        if self.llm is None:
            raise RuntimeError("No model configured (set LLM_API_KEY)")

        provider = (task.provider or route_provider(task.model_id)).upper()
        logger.info(f"[REACT] Starting task {task_id} for project {task.project_id} via {provider}")

        def start(t: Task) -> None:
            t.advance("running")
            t.append_log("[Edge] Routing task to nearest agent (latency: 12ms)")
            t.append_log(f"[Router] Selected Provider: {provider}")
            t.append_log(f"[Agent] Executing in {t.project_id}...")

        self._update(task_id, start)

        file_context, agent_seen = await self.prime_context(task.project_id)
        messages = [
            {"role": "system", "content": SYSTEM_PROMPT.format(file_context=file_context)},
            {"role": "user", "content": task.prompt},
        ]

        final_answer = None
        step = 0
        while step < self.max_steps:
            step += 1
            logger.info(f"[REACT] Task {task_id} step {step}/{self.max_steps}")

            reply = await asyncio.to_thread(self.llm.complete, messages)
            self._log(task_id, f"[Step {step}] AI: {reply[:LOG_PREVIEW_CHARS]}...")

            payload = extract_tool_payload(reply)
            if payload is None:
                final_answer = reply
                break

            self._log(task_id, f"[Tool] Executing {payload['tool']}...")
            messages.append({"role": "assistant", "content": json.dumps(payload)})

            result, resolved = await self.dispatch(task, payload)
            agent_seen = agent_seen or resolved
            messages.append({"role": "user", "content": f"[TOOL OUTPUT]: {result[:TOOL_OUTPUT_CHARS]}"})

        summary = final_answer if final_answer is not None else EXHAUSTED_MESSAGE
        if not agent_seen:
            summary += AGENT_OFFLINE_NOTE.format(project_id=task.project_id)

        def finish(t: Task) -> None:
            t.finish(summary)
            t.append_log(f"[Done] Agent finished in {step} steps.")

        self._update(task_id, finish)
        logger.info(f"[REACT] Task {task_id} done after {step} steps")

    async def prime_context(self, project_id: str) -> Tuple[str, bool]:
        """
        Build the project context shown to the model.

        An unreachable agent does not fail the task; the context becomes a
        diagnostic the model can relay to the user.

        Args:
            project_id: Project identifier

        Returns:
            Tuple of (context text, whether an agent was resolved)
        """
        node = self.resolver.resolve(project_id)
        if node is None:
            logger.info(f"[REACT] No agent hosts project {project_id}")
            return NO_FILES_CONTEXT, False

        logger.info(f"[REACT] Target agent for {project_id}: {node.id} ({node.url})")
        try:
            entries = await self.agent_client.call_tool(
                node.url, "list_files", {"projectId": project_id, "path": "."}
            )
        except AgentUnreachableError as e:
            logger.warning(f"[REACT] Failed to fetch context: {e}")
            return connection_error_context(node.url, e.reason), True
        except UpstreamAgentError as e:
            logger.warning(f"[REACT] Failed to fetch context: {e}")
            return connection_error_context(node.url, str(e)), True

        if not isinstance(entries, list):
            return connection_error_context(node.url, "Agent returned invalid data format (expected array)"), True
        return render_listing(entries), True

    async def dispatch(self, task: Task, payload: Dict[str, Any]) -> Tuple[str, bool]:
        """
        Route one tool call to the agent hosting the task's project.

        The owner is resolved again on every call because it may change
        between steps. No failure escapes: each one becomes a result string.

        Args:
            task: Task the call belongs to
            payload: Raw {tool, args} object from the model

        Returns:
            Tuple of (tool result text, whether an agent was resolved)
        """
        tool = payload["tool"]
        node = self.resolver.resolve(task.project_id)
        if node is None:
            self.audit_log.append(AuditEntry(
                action="DENY",
                description=f"Tool {tool} blocked: Project {task.project_id} not found",
                actor="Orchestrator",
                metadata={"tool": tool, "projectId": task.project_id, "taskId": task.id},
            ))
            self._log(task.id, f"[Error] Agent not found for project {task.project_id}")
            return AGENT_MISSING_RESULT, False

        metadata = {"tool": tool, "projectId": task.project_id, "taskId": task.id, "agentId": node.id}
        try:
            call = build_tool_call(payload)
        except ToolArgumentError as e:
            self.audit_log.append(AuditEntry(
                action="DENY",
                description=f"Tool {tool} blocked: invalid arguments",
                actor="Orchestrator",
                metadata=metadata,
            ))
            return f"Error: {e}", True
        if isinstance(call, UnrecognizedToolCall):
            self.audit_log.append(AuditEntry(
                action="DENY",
                description=f"Tool {tool} blocked: unknown tool",
                actor="Orchestrator",
                metadata=metadata,
            ))
            return UNKNOWN_TOOL_RESULT, True

        self.audit_log.append(AuditEntry(
            action="ALLOW",
            description=f"Tool {tool} routed to {node.id}",
            actor="Orchestrator",
            metadata=metadata,
        ))

        try:
            return await self.invoke(node.url, task.project_id, call), True
        except UpstreamAgentError as e:
            return str(e), True
        except AgentUnreachableError as e:
            return f"Error executing tool: {e.reason}", True

    async def invoke(self, url: str, project_id: str, call: ToolCall) -> str:
        """
        Call the agent endpoint for a validated tool call and summarize its
        answer for the model.

        Raises:
            AgentUnreachableError: On network failure
            UpstreamAgentError: On a non-2xx answer
        """
        if isinstance(call, ReadFileCall):
            data = await self.agent_client.call_tool(
                url, "read_file", {"projectId": project_id, "path": call.args.path}
            )
            content = _field(data, "content")
            return _text(content) if content else "Empty"

        if isinstance(call, WriteToFileCall):
            data = await self.agent_client.call_tool(url, "apply_patch", {
                "projectId": project_id,
                "operations": [{"op": "create", "path": call.args.path, "content": call.args.content}],
            })
            errors = _field(data, "errors")
            if isinstance(errors, list) and errors:
                return f"Errors: {', '.join(_text(error) for error in errors)}"
            if errors:
                return f"Errors: {_text(errors)}"
            return "Success"

        if isinstance(call, RunCommandCall):
            data = await self.agent_client.call_tool(
                url, "run_command", {"projectId": project_id, "command": call.args.command}
            )
            stdout = _field(data, "stdout")
            return f"Exit: {_field(data, 'exitCode')}\n{_text(stdout) if stdout else ''}"

        if isinstance(call, ListFilesCall):
            data = await self.agent_client.call_tool(
                url, "list_files", {"projectId": project_id, "path": call.args.path or "."}
            )
            return json.dumps(data)[:LISTING_OUTPUT_CHARS]

        return UNKNOWN_TOOL_RESULT

    def _log(self, task_id: str, line: str) -> None:
        self._update(task_id, lambda t: t.append_log(line))

    def _update(self, task_id: str, mutate) -> None:
        # get, mutate a local copy, put it back whole
        task = self.task_store.get(task_id)
        if task is None:
            raise RuntimeError(f"Task {task_id} disappeared from the store")
        mutate(task)
        self.task_store.put(task)
