"""
Agent Client - HTTP access to agent nodes

Agent nodes expose their project's filesystem and shell as JSON tool
endpoints (POST {url}/tools/{tool}) and list their projects at
GET {url}/projects. Every call carries the shared agent secret.
"""

import logging
from typing import Any, Dict, List, Optional, Tuple

import httpx

from shared.schemas import Project
from orchestrator.auth import AGENT_SECRET_HEADER
from orchestrator.errors import AgentUnreachableError, UpstreamAgentError

logger = logging.getLogger(__name__)


class AgentClient:
    """
    Async HTTP client for agent tool endpoints.

    A new httpx.AsyncClient is opened per call so the client can be shared
    across event loops (request handlers and background tasks).
    """

    def __init__(
        self,
        secret: str,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        """
        Initialize agent client.

        Args:
            secret: Shared secret sent in the X-Agent-Secret header
            timeout: Per-request timeout in seconds
            transport: Optional httpx transport (tests use httpx.MockTransport)
        """
        self.secret = secret
        self.timeout = timeout
        self.transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=self.timeout,
            transport=self.transport,
            headers={AGENT_SECRET_HEADER: self.secret}
        )

    async def call_tool(self, url: str, tool: str, payload: Dict[str, Any]) -> Any:
        """
        Invoke a tool endpoint and return its decoded JSON body.

        Args:
            url: Agent base URL
            tool: Endpoint name (read_file, apply_patch, run_command, list_files)
            payload: JSON request body

        Returns:
            Decoded JSON response

        Raises:
            AgentUnreachableError: On network failure
            UpstreamAgentError: On a non-2xx answer or an undecodable body
        """
        response = await self._post(url, tool, payload)
        if response.is_error:
            raise UpstreamAgentError(response.status_code, response.text)
        try:
            return response.json()
        except ValueError:
            raise UpstreamAgentError(response.status_code, f"invalid JSON response: {response.text[:200]}")

    async def forward_tool(self, url: str, tool: str, body: Any) -> Tuple[int, Any]:
        """
        Relay a tool call verbatim and hand back the agent's answer.

        Args:
            url: Agent base URL
            tool: Endpoint name
            body: Request body as received from the caller

        Returns:
            Tuple of (status code, decoded JSON body or raw text)

        Raises:
            AgentUnreachableError: On network failure
        """
        response = await self._post(url, tool, body)
        try:
            return response.status_code, response.json()
        except ValueError:
            return response.status_code, {"detail": response.text}

    async def list_projects(self, url: str) -> List[Project]:
        """
        Fetch the projects an agent serves.

        Raises:
            AgentUnreachableError: On network failure
            UpstreamAgentError: On a non-2xx answer
        """
        try:
            async with self._client() as client:
                response = await client.get(f"{url}/projects")
        except httpx.HTTPError as e:
            raise AgentUnreachableError(url, str(e) or type(e).__name__)

        if response.is_error:
            raise UpstreamAgentError(response.status_code, response.text)
        return [Project.model_validate(item) for item in response.json()]

    async def _post(self, url: str, tool: str, body: Any) -> httpx.Response:
        endpoint = f"{url}/tools/{tool}"
        logger.debug(f"[AGENT] POST {endpoint}")
        try:
            async with self._client() as client:
                response = await client.post(endpoint, json=body)
        except httpx.HTTPError as e:
            logger.warning(f"[AGENT] {endpoint} unreachable: {e}")
            raise AgentUnreachableError(url, str(e) or type(e).__name__)
        return response
