"""
Agent Registry - Heartbeat-driven agent federation

Agent nodes register themselves by heartbeat. An entry stays live for the
TTL after its last heartbeat; there is no explicit unregister. Stale entries
are filtered out on read and removed from the store at the same time.

ProjectResolver sits on top of the registry and answers "which node hosts
this project right now". Ownership is last-heartbeat-wins: no attempt is
made to reconcile two nodes claiming the same project.
"""

import logging
import time
from typing import Callable, List, Optional, Tuple

from shared.kv_store import KeyValueStore
from shared.schemas import AgentNode, Project, ProjectListing
from orchestrator.agent_client import AgentClient
from orchestrator.errors import OrchestratorError

logger = logging.getLogger(__name__)

AGENT_PREFIX = "agent:"
AGENT_TTL_SECONDS = 60.0
STATIC_AGENT_ID = "local-static"

WAITING_PLACEHOLDER = {
    "id": "waiting",
    "name": "Waiting for Agents...",
    "root": "Check terminal",
    "allowedCommands": [],
}


def partition_live(
    nodes: List[AgentNode],
    now: float,
    ttl: float = AGENT_TTL_SECONDS
) -> Tuple[List[AgentNode], List[AgentNode]]:
    """
    Split nodes into live and stale.

    A node is stale when more than `ttl` seconds have passed since its last
    heartbeat. Pure function: nothing is mutated.

    Args:
        nodes: Snapshot of registry entries
        now: Current time (epoch seconds)
        ttl: Liveness window in seconds

    Returns:
        Tuple of (live nodes, stale nodes), each in input order
    """
    live, stale = [], []
    for node in nodes:
        (stale if now - node.last_seen > ttl else live).append(node)
    return live, stale


class AgentRegistry:
    """
    Registry of live agent nodes, persisted in the key-value store.

    Entries are keyed per node id, so heartbeats from different nodes never
    touch the same key and a node's repeated heartbeats are idempotent
    upserts.
    """

    def __init__(
        self,
        store: KeyValueStore,
        ttl_seconds: float = AGENT_TTL_SECONDS,
        clock: Callable[[], float] = time.time
    ):
        """
        Initialize registry.

        Args:
            store: Backing key-value store
            ttl_seconds: Liveness window after the last heartbeat
            clock: Time source (epoch seconds)
        """
        self.store = store
        self.ttl_seconds = ttl_seconds
        self._clock = clock

    def register(self, node: AgentNode) -> AgentNode:
        """
        Register or refresh an agent node.

        Args:
            node: Node as reported by its heartbeat

        Returns:
            The stored node, with last_seen set to now
        """
        node = node.model_copy(update={"last_seen": self._clock()})
        # Native expiry is only a storage optimisation; list() applies the
        # TTL itself so both paths agree.
        self.store.put(f"{AGENT_PREFIX}{node.id}", node.to_json(), ttl=self.ttl_seconds)
        logger.info(f"[REGISTRY] Registered agent {node.id} from {node.region} ({len(node.projects)} projects)")
        return node

    def list(self) -> List[AgentNode]:
        """
        Return every live node.

        Stale entries found while reading are deleted from the store.

        Returns:
            Live nodes, ordered by node id
        """
        nodes = []
        for key in self.store.list(AGENT_PREFIX):
            raw = self.store.get(key)
            if raw:
                nodes.append(AgentNode.from_json(raw))

        live, stale = partition_live(nodes, self._clock(), self.ttl_seconds)
        for node in stale:
            logger.info(f"[REGISTRY] Evicting stale agent {node.id}")
            self.store.delete(f"{AGENT_PREFIX}{node.id}")
        return live


class ProjectResolver:
    """Maps project ids to the agent node currently hosting them"""

    def __init__(
        self,
        registry: AgentRegistry,
        agent_client: AgentClient,
        static_endpoint: str = ""
    ):
        """
        Initialize resolver.

        Args:
            registry: Live agent registry
            agent_client: Client used to query the static agent
            static_endpoint: Optional URL of an agent configured outside
                the heartbeat mechanism
        """
        self.registry = registry
        self.agent_client = agent_client
        self.static_endpoint = static_endpoint

    def resolve(self, project_id: str) -> Optional[AgentNode]:
        """
        Find the live node hosting a project.

        When several live nodes report the same project, the one that sent
        the most recent heartbeat owns it.

        Args:
            project_id: Project identifier

        Returns:
            The owning node, or None if no live node reports the project
        """
        if not project_id:
            return None
        owners = [node for node in self.registry.list() if node.hosts(project_id)]
        if not owners:
            return None
        return max(owners, key=lambda node: node.last_seen)

    def resolve_target(self, project_id: str) -> Tuple[Optional[str], str]:
        """
        Resolve a project for the tool proxy.

        Dynamic nodes take precedence; the static endpoint is the fallback.

        Returns:
            Tuple of (target URL or None, agent id)
        """
        node = self.resolve(project_id)
        if node:
            return node.url, node.id
        return (self.static_endpoint or None), STATIC_AGENT_ID

    async def aggregate(self) -> List[dict]:
        """
        Build the federated project listing shown to clients.

        Projects from the static agent come first, then each live node's
        projects tagged with the node id. An unreachable static agent is
        skipped. When nothing is available a single placeholder entry is
        returned.

        Returns:
            List of project dicts (camelCase keys, with agentId)
        """
        listings: List[ProjectListing] = []

        if self.static_endpoint:
            try:
                projects = await self.agent_client.list_projects(self.static_endpoint)
                listings.extend(self._tag(projects, STATIC_AGENT_ID))
            except (OrchestratorError, ValueError) as e:
                logger.info(f"[REGISTRY] Static agent offline: {e}")

        for node in self.registry.list():
            listings.extend(self._tag(node.projects, node.id))

        if not listings:
            return [dict(WAITING_PLACEHOLDER)]
        return [listing.to_dict() for listing in listings]

    @staticmethod
    def _tag(projects: List[Project], agent_id: str) -> List[ProjectListing]:
        return [
            ProjectListing(**project.model_dump(), agent_id=agent_id)
            for project in projects
        ]
