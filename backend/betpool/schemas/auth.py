from __future__ import annotations
from pydantic import BaseModel, ConfigDict
from uuid import UUID

class Caller(BaseModel):
    """Explicit identity of whoever invoked an engine operation."""
    model_config = ConfigDict(frozen=True)

    user_id: UUID
