from __future__ import annotations

from pydantic import BaseModel, Field


class ResolveRequest(BaseModel):
    """Request body for POST /resolve."""

    url: str = Field(..., min_length=1, max_length=2048)
    principal: str | None = None
    skip_cache: bool = False
