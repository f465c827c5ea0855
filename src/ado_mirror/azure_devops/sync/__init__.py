"""Work item sync - Azure DevOps to local store synchronization.

Services:
- SyncEngine: discover -> fetch -> diff -> write -> comments, with cursors
- SyncPassResult: counts and failed work items of one pass
"""

from .engine import SyncEngine, build_discovery_query
from .enums import OutputFormat, SyncPhase, SyncStrategy
from .results import SyncPassResult, describe_error

__all__ = [
    "OutputFormat",
    "SyncEngine",
    "SyncPassResult",
    "SyncPhase",
    "SyncStrategy",
    "build_discovery_query",
    "describe_error",
]
