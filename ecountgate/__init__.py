"""ecountgate: rate-limit, session and error-budget coordination for the ECOUNT OpenAPI."""

__version__ = "0.1.0"
