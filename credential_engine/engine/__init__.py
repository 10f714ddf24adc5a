"""
Lifecycle Engine Package.

This package provides the grant store, status derivation, the status
state machine, and the lifecycle engine that orchestrates them.
"""

from .derivation import count_grants, derive_status, grant_display_status
from .grant_store import GrantStore, UnitOfWork
from .lifecycle import LifecycleEngine
from .transitions import apply_transition

__all__ = [
    "GrantStore",
    "UnitOfWork",
    "LifecycleEngine",
    "apply_transition",
    "count_grants",
    "derive_status",
    "grant_display_status",
]
