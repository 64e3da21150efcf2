"""Domain models: value objects, session state and call outcomes."""
