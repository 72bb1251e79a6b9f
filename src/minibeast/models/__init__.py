"""Pydantic models for deployment requests, progress and snapshots."""
