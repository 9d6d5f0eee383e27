from pydantic import BaseModel, ConfigDict, field_validator
from typing import Optional, List
from datetime import datetime
from enum import Enum

from app.schemas.ticket import TicketRecord, as_utc  # so PropertySnapshot can include tickets


class CashFlowType(str, Enum):
    INCOME = "INCOME"
    EXPENSE = "EXPENSE"


class LeaseOut(BaseModel):
    id: int
    property_id: int
    tenant_name: str
    start_date: datetime
    end_date: datetime
    monthly_rent: float = 0.0
    is_active: bool = True

    model_config = ConfigDict(from_attributes=True)

    @field_validator("start_date", "end_date")
    @classmethod
    def ensure_timezone(cls, v):
        return as_utc(v)


class CashFlowOut(BaseModel):
    id: int
    property_id: int
    type: CashFlowType
    amount: float
    date: datetime
    description: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)

    @field_validator("type", mode="before")
    @classmethod
    def upper_type(cls, v):
        return v.upper() if isinstance(v, str) else v

    @field_validator("date")
    @classmethod
    def ensure_timezone(cls, v):
        return as_utc(v)


class PropertySnapshot(BaseModel):
    """Dashboard source data: one property with everything aggregation needs."""
    id: int
    name: Optional[str] = None
    address: str
    leases: List[LeaseOut] = []
    cash_flows: List[CashFlowOut] = []
    tickets: List[TicketRecord] = []
