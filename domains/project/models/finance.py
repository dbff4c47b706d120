from pydantic import Field
from typing import Literal, Optional
from datetime import datetime

from domains.project.models.base import Record, RecordFields, RecordUpdate

FinanceType = Literal["income", "expense"]


class FinanceRecordFields(RecordFields):
    """
    An income or expense entry in the project ledger.
    The amount is stored as given (no sign or range checks).
    """

    type: FinanceType
    category: str
    amount: float
    description: str = ""
    date: datetime


class FinanceRecordUpdate(RecordUpdate):
    not_nullable = ("type", "category", "amount", "description", "date")

    type: Optional[FinanceType] = None
    category: Optional[str] = None
    amount: Optional[float] = None
    description: Optional[str] = None
    date: Optional[datetime] = None


class FinanceRecord(Record, FinanceRecordFields):
    pass
