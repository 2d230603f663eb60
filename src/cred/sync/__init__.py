"""
Target sync -- push secrets out, prune them away, never read them back.

The vault is the source of truth. Push state remembers what each target
received so only changed keys travel.
"""

from .engine import TargetSynchronizer
from .models import ChangeKind, SyncOperation, SyncPlan, SyncReport
from .state import PushStateStore
from .targets import TargetClient, create_target, register_target

__all__ = [
    "ChangeKind",
    "PushStateStore",
    "SyncOperation",
    "SyncPlan",
    "SyncReport",
    "TargetClient",
    "TargetSynchronizer",
    "create_target",
    "register_target",
]
