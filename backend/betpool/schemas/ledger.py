from __future__ import annotations
from pydantic import BaseModel
from uuid import UUID
from datetime import datetime

class LedgerEntryPublic(BaseModel):
    id: UUID
    amount: int
    type: str
    description: str
    related_id: UUID | None = None
    created_at: datetime

class LedgerSnapshot(BaseModel):
    user_id: UUID
    balance: int
    entries: list[LedgerEntryPublic]
