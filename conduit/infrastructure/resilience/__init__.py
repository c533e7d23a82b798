"""API Resilience Implementations.

Token bucket rate limiting, circuit breakers, and retries with exponential
backoff and jitter.
Bounded Context: API Resilience
"""
