"""TaskTree API - MoveNode wire schemas and request handler.

The FastAPI application lives in tasktree.api.server.
"""

from tasktree.api.move_handler import Authorizer, MoveNodeHandler
from tasktree.api.schemas import ErrorCode, ErrorInfo, MoveNodeRequest, MoveNodeResponse

__all__ = [
    "Authorizer",
    "ErrorCode",
    "ErrorInfo",
    "MoveNodeHandler",
    "MoveNodeRequest",
    "MoveNodeResponse",
]
