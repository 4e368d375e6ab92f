"""
Cache package for Bridge Service.

Provides the Redis-backed CacheProvider holding sessions, documents and
etag timestamps, plus the CacheKey layout shared by readers and writers.
"""
