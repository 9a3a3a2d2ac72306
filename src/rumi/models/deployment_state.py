"""Registry state model persisted to the deployments file."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field

from rumi.models.deployment import Deployment


class RegistryState(BaseModel):
    """Top-level registry state stored on disk."""

    model_config = ConfigDict(extra="forbid")

    version: str = Field(default="1.0", description="State file version")
    deployments: dict[str, Deployment] = Field(
        default_factory=dict, description="Deployments keyed by name"
    )
