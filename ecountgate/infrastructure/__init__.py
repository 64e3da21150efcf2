"""Infrastructure Layer: Contains concrete implementations and adapters.

Connects the core to the outside world (HTTP, state files, environment)
and holds the resilience services: rate limiting, error budget and retry.
"""
