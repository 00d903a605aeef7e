"""
Listings caching package.

- backend: CacheBackend contract with Redis and in-process implementations.
- invalidation: namespace invalidation after listing mutations.

The cache is never the source of truth. Failures degrade reads to the
durable store and leave staleness bounded by TTLs.
"""
