from pydantic import BaseModel, Field


class UsageRecord(BaseModel):
    used: int = Field(default=0, ge=0)
    last_reset: str = ""  # ISO-8601 timestamp; blank or malformed forces a reset


class CreditSnapshot(BaseModel):
    backend_id: str
    quota: int
    used: int
    remaining: int
    is_exhausted: bool
    is_low: bool = False
