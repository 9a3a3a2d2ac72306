"""Pydantic and dataclass models for deployments, backups, plans and settings."""
