"""HTTP transport adapter (httpx)."""
