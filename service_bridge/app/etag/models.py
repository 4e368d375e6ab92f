"""
Etag data models for Bridge Service.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Tuple


@dataclass(frozen=True)
class EtagCacheKey:
    """
    Declares one entity that contributes to an etag.

    ``keys`` are parameter names (e.g. ``appId``, ``studyId``, ``userId``)
    whose resolved values, in order, identify the entity's timestamp entry.
    """
    model: str
    keys: Tuple[str, ...]

    def __post_init__(self):
        object.__setattr__(self, "keys", tuple(self.keys))


@dataclass
class EtagContext:
    """Argument bindings and declared cache keys for one intercepted call."""
    arg_values: Dict[str, Any] = field(default_factory=dict)
    cache_keys: List[EtagCacheKey] = field(default_factory=list)


class EtagOutcome(str, Enum):
    """How an etag-supported request was answered."""
    NOT_MODIFIED = "not_modified"
    PROCEED = "proceed"
    NO_ETAG = "no_etag"
