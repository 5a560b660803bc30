from datetime import date, datetime
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from app.models.bill import BillingCycle, ServiceType, utcnow


class Client(BaseModel):
    """A tenant with an active desk, office or virtual-office assignment."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    client_id: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1, max_length=200)
    email: Optional[str] = None
    company_name: Optional[str] = Field(None, max_length=200)
    contact_number: Optional[str] = Field(None, max_length=30)
    service_type: ServiceType
    assigned_resource: str = Field(..., min_length=1)
    assigned_at: date
    billing_cycle: BillingCycle = BillingCycle.MONTHLY
    is_active: bool = True
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: Optional[datetime] = None

    @field_validator("assigned_at", mode="before")
    @classmethod
    def normalize_day(cls, v: Any) -> Any:
        if isinstance(v, datetime):
            return v.date()
        return v

    def to_document(self) -> Dict[str, Any]:
        doc = self.model_dump(by_alias=True, mode="json")
        doc["createdAt"] = self.created_at
        doc["updatedAt"] = self.updated_at
        return doc

    @classmethod
    def from_document(cls, doc: Dict[str, Any]) -> "Client":
        return cls.model_validate(doc)

    def __str__(self):
        return self.name
