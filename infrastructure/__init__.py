"""Infrastructure layer — shared services for the warp engine.

Modules:
    cache       Thread-safe in-memory result cache with TTL and LRU eviction.
    metrics     Prometheus metrics registry.
"""
