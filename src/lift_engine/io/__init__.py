"""Persistence adapters and serialization."""
