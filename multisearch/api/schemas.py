from typing import Optional

from pydantic import BaseModel, Field


class SearchRequest(BaseModel):
    query: str = Field(min_length=1)
    engines: Optional[list[str]] = None
    strategy: Optional[str] = None
    limit: Optional[int] = Field(default=None, gt=0)
    include_raw: bool = False


class HealthEntry(BaseModel):
    backend_id: str
    lifecycle_managed: bool
    state: Optional[str] = None
    healthy: bool
    configured: bool
    available: bool
