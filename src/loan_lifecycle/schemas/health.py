"""Pydantic schema for the health endpoint."""

from __future__ import annotations

from pydantic import BaseModel, Field


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = Field(..., examples=["ok"])
    version: str = Field(..., examples=["0.1.0"])
    record_store: str = Field(..., examples=["healthy"])
    redis: str = Field(..., examples=["disabled"])
