"""Pydantic models for projects, shots, generation requests and style packs."""
