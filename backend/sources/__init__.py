"""Upstream source adapters producing candidate fixtures."""
