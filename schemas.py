from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from periods import PeriodKind

NOTE_MAX_LENGTH = 100


class ExpenseIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    amount: float = Field(..., gt=0)
    category_id: str = Field(default="food", min_length=1, max_length=100)
    note: str = Field(default="", max_length=NOTE_MAX_LENGTH)
    date: Optional[datetime] = None


class ExpensePatch(BaseModel):
    model_config = ConfigDict(extra="forbid")

    amount: Optional[float] = Field(default=None, gt=0)
    category_id: Optional[str] = Field(default=None, min_length=1, max_length=100)
    note: Optional[str] = Field(default=None, max_length=NOTE_MAX_LENGTH)
    date: Optional[datetime] = None


class CustomCategoryIn(BaseModel):
    name: str = Field(..., max_length=100)
    icon: Optional[str] = Field(default=None, max_length=16)


class BudgetIn(BaseModel):
    amount: float


class SessionIn(BaseModel):
    user_id: str = Field(..., min_length=1, max_length=128, pattern=r"^[^/]+$")
    email: Optional[str] = Field(default=None, max_length=200)


class PeriodIn(BaseModel):
    period: PeriodKind


class ProfileIn(BaseModel):
    display_name: str = Field(..., max_length=100)


class PreferencesIn(BaseModel):
    notifications_enabled: Optional[bool] = None
    currency: Optional[str] = Field(default=None, min_length=3, max_length=3)
