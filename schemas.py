from datetime import date
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class BillIn(BaseModel):
    bill_month: date
    total_balance_cents: int = Field(..., ge=0)


class EntryItemIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    category: Optional[str] = Field(default=None, max_length=100)
    amount_cents: int = Field(..., ge=0)
    description: Optional[str] = Field(default=None, max_length=500)
    proof_url: Optional[str] = Field(default=None, max_length=500)


class DailyEntryIn(BaseModel):
    entry_date: date
    items: list[EntryItemIn] = Field(..., min_length=1)


class UserIn(BaseModel):
    email: str = Field(..., min_length=3, max_length=255, pattern=r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
    name: str = Field(..., min_length=1, max_length=120)


class TokenRequest(BaseModel):
    email: str = Field(..., min_length=3, max_length=255)
