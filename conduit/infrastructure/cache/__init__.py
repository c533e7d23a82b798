"""Response Cache Implementation.

Per-provider in-memory TTL + LRU caches for idempotent reads.
Bounded Context: Cache Management
"""
