"""Shared types, errors and serialization helpers."""
