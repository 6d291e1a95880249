"""TaskTree client - drag reconciliation and MoveNode transports."""

from tasktree.client.reconciler import ClientReconciler, ReconcileResult, ReconcileStatus, ReconcilerState
from tasktree.client.transport import HttpTransport, InProcessTransport, MoveTransport

__all__ = [
    "ClientReconciler",
    "HttpTransport",
    "InProcessTransport",
    "MoveTransport",
    "ReconcileResult",
    "ReconcileStatus",
    "ReconcilerState",
]
