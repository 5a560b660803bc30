from pydantic import BaseModel, Field, ConfigDict
from typing import Optional, Union
from datetime import date, datetime
from decimal import Decimal

from app.models.bill import Bill, BillingCycle, BillStatus, FeeKind, ServiceType

Amount = Union[Decimal, int, float, str]


class BillCreate(BaseModel):
    client_id: str
    assigned_resource: str
    service_type: ServiceType
    period_start: date
    billing_cycle: Optional[BillingCycle] = None


class PaymentRecord(BaseModel):
    paid_at: Optional[datetime] = None
    # Fees settled together with the payment
    late_fee: Optional[Amount] = None
    damage_fee: Optional[Amount] = None


class FeeApplication(BaseModel):
    fee_kind: FeeKind
    amount: Amount


class BillVoid(BaseModel):
    reason: Optional[str] = Field(None, max_length=500)


class BillUpdate(BaseModel):
    amount: Optional[Amount] = None
    cusa_fee: Optional[Amount] = None
    parking_fee: Optional[Amount] = None
    notes: Optional[str] = Field(None, max_length=2000)


class ClockRequest(BaseModel):
    now: Optional[datetime] = None


class BillResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    bill_id: str
    client_id: str
    assigned_resource: str
    service_type: ServiceType
    billing_cycle: BillingCycle
    amount: Decimal
    cusa_fee: Decimal
    parking_fee: Decimal
    late_fee: Decimal
    damage_fee: Decimal
    total: Decimal
    fee_period: Optional[str] = None
    start_date: date
    due_date: Optional[date] = None
    status: BillStatus
    paid_at: Optional[datetime] = None
    voided_at: Optional[datetime] = None
    void_reason: Optional[str] = None
    created_at: datetime
    updated_at: Optional[datetime] = None
    client_name: Optional[str] = None
    email: Optional[str] = None
    company_name: Optional[str] = None
    notes: Optional[str] = None

    @classmethod
    def from_bill(cls, bill: Bill) -> "BillResponse":
        return cls.model_validate(bill)
