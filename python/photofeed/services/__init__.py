"""Caching, mapping and processing services behind the API routes."""
