"""
Credential Lifecycle Engine

Tracks which credentials have been granted to which identities and keeps
each identity's onboarding/offboarding status consistent with the state
of its grants.

The engine serializes work per identity, commits grant and status changes
in a single unit of work, and emits audit entries and notifications only
after a successful commit.
"""

__version__ = "1.0.0"
__author__ = "Credential Engine Team"
__email__ = "team@example.com"

from .config import EngineConfig, load_config
from .engine.derivation import derive_status
from .engine.grant_store import GrantStore
from .engine.lifecycle import LifecycleEngine
from .services import EngineServices

__all__ = [
    "EngineConfig",
    "load_config",
    "derive_status",
    "GrantStore",
    "LifecycleEngine",
    "EngineServices",
]
