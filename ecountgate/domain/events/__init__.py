"""Domain Event definitions.

Represents significant occurrences in the call pipeline (deferrals, retries,
re-authentication, breaker trips) that are reported through logging.
"""
