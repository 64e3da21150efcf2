"""Authentication: zone discovery, login and session persistence."""
