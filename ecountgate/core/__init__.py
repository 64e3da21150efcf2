"""Core Application Layer: orchestrates a single outbound call.

Connects the domain layer with the infrastructure layer. Contains the
request coordinator, its context object and the response parsers.
"""
