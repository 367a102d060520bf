"""Pydantic schemas for provider key endpoints. Keys are write-only."""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field


class ProviderKeyRequest(BaseModel):
    api_key: str = Field(..., min_length=1, max_length=512)


class ProviderStatusResponse(BaseModel):
    provider: str
    configured: bool
    verified_at: Optional[datetime] = None
