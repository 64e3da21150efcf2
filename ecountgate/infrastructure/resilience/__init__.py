"""API Resilience Implementations.

Contains services for handling API rate limits, the consecutive-error
budget, and retries with exponential backoff.
Bounded Context: API Resilience
"""
