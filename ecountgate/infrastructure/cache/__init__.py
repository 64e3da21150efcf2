"""Caching Service Implementation.

Provides the in-memory response cache with TTL and size-bounded eviction,
plus the API-specific facade that namespaces keys and picks TTLs.
Bounded Context: Cache Management
"""
