"""Etag support: freshness signatures for conditional requests."""

from .component import EtagComponent, EtagSupport
from .models import EtagCacheKey, EtagContext

__all__ = ["EtagComponent", "EtagSupport", "EtagCacheKey", "EtagContext"]
