"""
Error taxonomy for task moves.

NotFound, CrossScope and CycleRejected are deterministic rejections and are
never retried. ConcurrencyConflict and TransportFailure may be retried a
bounded number of times by the client with the original request.
"""


class MoveError(Exception):
    """Base exception for rejected or failed moves."""

    code = "MOVE_ERROR"
    retryable = False


class NodeNotFoundError(MoveError):
    """Raised when the moved task or its target parent does not exist."""

    code = "NOT_FOUND"


class CrossScopeError(MoveError):
    """Raised when the target parent belongs to a different project."""

    code = "CROSS_SCOPE"


class CycleRejectedError(MoveError):
    """Raised when a move would make a task its own ancestor."""

    code = "CYCLE_REJECTED"


class ConcurrencyConflictError(MoveError):
    """Raised when the scope lock times out or the tree changed under the request."""

    code = "CONCURRENCY_CONFLICT"
    retryable = True


class TransportFailureError(MoveError):
    """Raised when a request never reached the server or its response was lost."""

    code = "TRANSPORT_FAILURE"
    retryable = True


class PermissionDeniedError(MoveError):
    """Raised when the caller may not modify the project."""

    code = "FORBIDDEN"
