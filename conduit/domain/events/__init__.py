"""Domain Event definitions.

Pipeline events (calls, retries, cache hits, breaker transitions, token
refreshes) that observers can subscribe to through the EventDispatcher.
"""
