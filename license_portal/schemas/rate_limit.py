"""Pydantic schemas for rate limit administration responses."""

from __future__ import annotations

from datetime import datetime
from typing import List

from pydantic import BaseModel, Field


class PresetStats(BaseModel):
    """Counters and configuration of one preset limiter."""

    name: str = Field(..., description="Preset name (general, auth, sensitive, upload, admin, public).")
    window_ms: int = Field(..., description="Sliding window length in milliseconds.")
    max_requests: int = Field(..., description="Requests allowed per window and key.")
    allowed: int = Field(0, description="Requests allowed since startup.")
    blocked: int = Field(0, description="Requests rejected with 429 since startup.")
    fail_open: int = Field(0, description="Requests allowed because the limiter itself failed.")
    active_keys: int = Field(0, description="Keys currently tracked in memory.")


class CurrentLimit(BaseModel):
    """Remaining quota of a tracked key."""

    preset: str
    key_hash: str = Field(..., description="Truncated SHA-256 of the limiter key.")
    remaining: int
    total: int
    reset: datetime


class BlockedClient(BaseModel):
    """A client key with rejected requests, identified by hash only."""

    preset: str
    key_hash: str = Field(..., description="Truncated SHA-256 of the limiter key.")
    blocked_count: int
    total_requests: int
    last_blocked: datetime | None = None


class EndpointStats(BaseModel):
    endpoint: str = Field(..., description="Request path.")
    request_count: int
    blocked_count: int


class RateLimitStatsResponse(BaseModel):
    """Snapshot of in-process rate limiting state."""

    total_requests: int = Field(..., description="Allowed plus blocked requests across presets.")
    blocked_requests: int
    presets: List[PresetStats] = Field(default_factory=list)
    current_limits: List[CurrentLimit] = Field(
        default_factory=list,
        description="Tracked keys ordered by lowest remaining quota.",
    )
    top_blocked_clients: List[BlockedClient] = Field(
        default_factory=list,
        description="Clients with the most rejected requests.",
    )
    top_endpoints: List[EndpointStats] = Field(
        default_factory=list,
        description="Request paths ordered by request count.",
    )
