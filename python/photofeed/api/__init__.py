"""HTTP API layer (routes and dependencies)."""
