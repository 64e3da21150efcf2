"""Domain Layer: error taxonomy, value objects and interfaces.

Nothing in here performs I/O. Infrastructure and core modules depend on
these definitions, never the other way round.
"""
