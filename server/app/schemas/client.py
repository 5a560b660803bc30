from pydantic import BaseModel, EmailStr, Field, ConfigDict
from typing import Optional
from datetime import date, datetime

from app.models.bill import BillingCycle, ServiceType


class ClientCreate(BaseModel):
    client_id: Optional[str] = Field(None, min_length=1, max_length=64)
    name: str = Field(..., min_length=1, max_length=200)
    email: Optional[EmailStr] = None
    company_name: Optional[str] = Field(None, max_length=200)
    contact_number: Optional[str] = Field(None, max_length=30)
    service_type: ServiceType
    assigned_resource: str = Field(..., min_length=1, max_length=100)
    assigned_at: date
    billing_cycle: BillingCycle = BillingCycle.MONTHLY


class ClientStatusUpdate(BaseModel):
    is_active: bool


class ClientResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    client_id: str
    name: str
    email: Optional[str] = None
    company_name: Optional[str] = None
    contact_number: Optional[str] = None
    service_type: ServiceType
    assigned_resource: str
    assigned_at: date
    billing_cycle: BillingCycle
    is_active: bool
    created_at: datetime
