"""
Bridge Service package.

Serves study resources to session-authenticated callers and answers
conditional GETs from entity modification timestamps kept in Redis:

- app.main: API surface for studies, schedules and timelines.
- app.etag: Etag computation and the route wrapper that applies it.
- app.cache: Redis-backed cache provider and cache key layout.
- app.auth: Session models and session authentication.
- app.studies: Study and schedule storage that stamps etag timestamps.

Guidelines:
- The service is stateless; rely on the external cache.
- Any write to an entity named by an EtagCacheKey must update or remove
  its CacheKey.etag entry.
"""
