import datetime as dt
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from models import RecurrenceInterval


class CategoryIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)


class RecurringIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    date: dt.date
    is_recurring: bool = Field(default=False, alias="isRecurring")
    recurrence_interval: Optional[RecurrenceInterval] = Field(
        default=None, alias="recurrenceInterval"
    )
    recurrence_end: Optional[dt.date] = Field(default=None, alias="recurrenceEnd")

    @model_validator(mode="after")
    def _check_recurrence(self):
        if not self.is_recurring:
            self.recurrence_interval = None
            self.recurrence_end = None
            return self
        if self.recurrence_interval is None:
            raise ValueError("Recurring records need a recurrence interval")
        if self.recurrence_end is not None and self.recurrence_end < self.date:
            raise ValueError("Recurrence end must not be before the start date")
        return self


class IncomeIn(RecurringIn):
    source: str = Field(..., min_length=1, max_length=120)
    amount: Decimal = Field(..., ge=0)
    note: Optional[str] = Field(default=None, max_length=500)


class ExpenseIn(RecurringIn):
    category_id: int = Field(..., alias="categoryId")
    description: str = Field(..., min_length=1, max_length=200)
    amount: Decimal = Field(..., ge=0)
    note: Optional[str] = Field(default=None, max_length=500)


class ReceiptItemIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: str = Field(..., min_length=1, max_length=200)
    category: Optional[str] = Field(default=None, max_length=100)
    total_price: Decimal = Field(..., alias="totalPrice")
    date: Optional[dt.date] = None


class ReceiptIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    store_name: Optional[str] = Field(default=None, alias="storeName", max_length=120)
    date: dt.date
    items: list[ReceiptItemIn] = Field(..., min_length=1)
