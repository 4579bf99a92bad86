"""
Orchestrator errors

Failures raised while talking to agent nodes or validating tool calls.
Inside the orchestration loop these are caught at the step boundary and fed
back to the model as tool output; only the tool proxy route turns them into
HTTP errors.
"""

from shared.schemas import InvalidTransitionError


class OrchestratorError(Exception):
    """Base class for orchestrator failures"""


class AgentUnreachableError(OrchestratorError):
    """Network failure while reaching an agent node"""

    def __init__(self, url: str, reason: str):
        self.url = url
        self.reason = reason
        super().__init__(f"Agent at {url} is unreachable: {reason}")


class UpstreamAgentError(OrchestratorError):
    """An agent tool endpoint answered with a non-2xx status"""

    def __init__(self, status_code: int, body: str):
        self.status_code = status_code
        self.body = body
        super().__init__(f"Agent Error ({status_code}): {body}")


class ToolArgumentError(OrchestratorError):
    """A parsed tool call carried arguments that do not fit the tool"""

    def __init__(self, tool: str, details: str):
        self.tool = tool
        self.details = details
        super().__init__(f"Invalid arguments for {tool}: {details}")


__all__ = [
    "OrchestratorError",
    "AgentUnreachableError",
    "UpstreamAgentError",
    "ToolArgumentError",
    "InvalidTransitionError",
]
