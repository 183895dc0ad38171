"""Pydantic schemas for the policy introspection endpoint."""

from __future__ import annotations

from typing import List

from pydantic import BaseModel, Field


class TierDescription(BaseModel):
    """One admission tier applying to the caller."""

    name: str = Field(..., description="Tier label, e.g. 'global', 'user', 'inference'.")
    window_seconds: float = Field(..., description="Fixed window length in seconds.")
    max_requests: int = Field(..., description="Requests admitted per window.")
    key_strategy: str = Field(..., description="How the counter key is derived.")


class LimitsResponse(BaseModel):
    """Tiers evaluated for the current request and the tightest budget left."""

    authenticated: bool = Field(..., description="Whether an identity was forwarded.")
    subscription_tier: str | None = Field(default=None, description="Forwarded plan name.")
    tiers: List[TierDescription] = Field(default_factory=list)
    limit: int | None = Field(default=None, description="Ceiling of the tightest tier.")
    remaining: int | None = Field(default=None, description="Requests left in the tightest tier.")
