from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from models import TransactionType


class _Input(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True, extra="forbid")


class CategoryIn(_Input):
    name: str = Field(..., min_length=3, max_length=100)
    description: Optional[str] = None
    type: TransactionType


class CategoryPatch(_Input):
    name: Optional[str] = Field(None, min_length=3, max_length=100)
    description: Optional[str] = None
    type: Optional[TransactionType] = None


class SourceIn(_Input):
    name: str = Field(..., min_length=3, max_length=100)
    description: Optional[str] = None


class SourcePatch(_Input):
    name: Optional[str] = Field(None, min_length=3, max_length=100)
    description: Optional[str] = None


class EventIn(_Input):
    name: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = None
    budget: Optional[float] = None


class EventPatch(_Input):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = None
    budget: Optional[float] = None


class TransactionIn(_Input):
    name: str = Field(..., min_length=3, max_length=200)
    amount: float
    type: TransactionType
    category: str = Field(..., min_length=1)
    source: str = Field(..., min_length=1)
    event: Optional[str] = None
    created_at: Optional[datetime] = None


class TransactionPatch(_Input):
    name: Optional[str] = Field(None, min_length=3, max_length=200)
    amount: Optional[float] = None
    type: Optional[TransactionType] = None
    category: Optional[str] = None
    source: Optional[str] = None
    event: Optional[str] = None
    created_at: Optional[datetime] = None


class BudgetIn(_Input):
    name: str = Field(..., min_length=3, max_length=100)
    amount: float
    start: datetime
    end: datetime

    @model_validator(mode="after")
    def _check_window(self) -> "BudgetIn":
        if self.start > self.end:
            raise ValueError("Start date must be before end date")
        return self


class BudgetPatch(_Input):
    name: Optional[str] = Field(None, min_length=3, max_length=100)
    amount: Optional[float] = None
    start: Optional[datetime] = None
    end: Optional[datetime] = None
