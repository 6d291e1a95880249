"""
Transports carrying MoveNode requests from a client to the handler.

InProcessTransport calls a MoveNodeHandler directly, which is what the
terminal UI uses against a local database. HttpTransport talks to the
FastAPI server with httpx and also loads the projects and trees a remote
client starts from.
"""

from typing import List, Optional
from uuid import UUID

import httpx
from pydantic import ValidationError

from tasktree.api.move_handler import MoveNodeHandler
from tasktree.api.schemas import MoveNodeRequest, MoveNodeResponse, ProjectsResponse, TreeResponse
from tasktree.logging_config import get_logger
from tasktree.models import Project
from tasktree.services.move_errors import MoveError, TransportFailureError
from tasktree.services.tree_store import TreeStore

logger = get_logger(__name__)


class MoveTransport:
    """Sends a MoveNode request and returns the server's response."""

    async def send(self, request: MoveNodeRequest) -> MoveNodeResponse:
        """
        Send a request.

        Raises:
            TransportFailureError: If no usable response came back
        """
        raise NotImplementedError

    async def close(self) -> None:
        """Release any connection held by the transport."""


class InProcessTransport(MoveTransport):
    """Calls the handler in the same process."""

    def __init__(self, handler: MoveNodeHandler, actor_id: Optional[str] = None) -> None:
        self.handler = handler
        self.actor_id = actor_id

    async def send(self, request: MoveNodeRequest) -> MoveNodeResponse:
        return await self.handler.move_node(request, actor_id=self.actor_id)


class HttpTransport(MoveTransport):
    """
    Sends requests to the TaskTree HTTP API.

    Error responses of the API still carry a MoveNode body, so any status
    below 500 with a parsable body is returned as a response. Connection
    errors, timeouts, 5xx answers and unreadable bodies raise
    TransportFailureError.
    """

    REORDER_PATH = "/api/tasks/reorder"
    PROJECTS_PATH = "/api/projects"
    TREE_PATH = "/api/projects/{project_id}/tree"

    def __init__(
        self,
        base_url: str,
        timeout: float = 10.0,
        actor_id: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        """
        Initialize the transport.

        Args:
            base_url: Root URL of the API, e.g. http://127.0.0.1:8000
            timeout: Per-request timeout in seconds
            actor_id: Sent as X-User-Id so the server can attribute moves
            client: Preconfigured client, mostly for tests
        """
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.actor_id = actor_id
        self._client = client
        self._owns_client = client is None

    @property
    def client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client."""
        if self._client is None:
            headers = {"Accept": "application/json"}
            if self.actor_id:
                headers["X-User-Id"] = self.actor_id
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                headers=headers,
                timeout=httpx.Timeout(self.timeout),
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client if this transport created it."""
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "HttpTransport":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def send(self, request: MoveNodeRequest) -> MoveNodeResponse:
        try:
            response = await self.client.post(
                self.REORDER_PATH,
                json=request.model_dump(mode="json", by_alias=True),
            )
        except httpx.HTTPError as e:
            logger.warning(f"MoveNode request failed: {e}")
            raise TransportFailureError(f"Could not reach the server: {e}") from e

        if response.status_code >= 500:
            logger.warning(f"MoveNode server error: status={response.status_code}")
            raise TransportFailureError(f"Server error: {response.status_code}")

        try:
            return MoveNodeResponse.model_validate(response.json())
        except (ValueError, ValidationError) as e:
            if response.status_code >= 400:
                raise MoveError(f"Request rejected: {response.status_code}") from e
            raise TransportFailureError("Invalid response format from server") from e

    async def fetch_tree(self, project_id: UUID) -> TreeStore:
        """
        Fetch the current tree of a project.

        Raises:
            TransportFailureError: If the tree could not be fetched
        """
        try:
            response = await self.client.get(self.TREE_PATH.format(project_id=project_id))
            response.raise_for_status()
            tree = TreeResponse.model_validate(response.json())
        except (httpx.HTTPError, ValueError) as e:
            logger.warning(f"Fetching tree of {project_id} failed: {e}")
            raise TransportFailureError(f"Could not load project {project_id}: {e}") from e

        return TreeStore(tree.nodes, project_id=project_id)

    async def fetch_projects(self) -> List[Project]:
        """
        Fetch every project known to the server.

        Raises:
            TransportFailureError: If the list could not be fetched
        """
        try:
            response = await self.client.get(self.PROJECTS_PATH)
            response.raise_for_status()
            body = ProjectsResponse.model_validate(response.json())
        except (httpx.HTTPError, ValueError) as e:
            logger.warning(f"Fetching projects failed: {e}")
            raise TransportFailureError(f"Could not load projects: {e}") from e

        return body.projects
