from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ServiceType(str, Enum):
    """Kinds of tenancy a bill can be raised for."""

    DEDICATED_DESK = "dedicated-desk"
    PRIVATE_OFFICE = "private-office"
    VIRTUAL_OFFICE = "virtual-office"

    @classmethod
    def _missing_(cls, value):
        # Accept display labels such as "Private Office"
        if isinstance(value, str):
            normalized = value.strip().lower().replace("_", "-").replace(" ", "-")
            for member in cls:
                if member.value == normalized:
                    return member
        return None


class BillingCycle(str, Enum):
    """How often a resource is billed."""

    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    SEMIANNUALLY = "semiannually"
    ANNUALLY = "annually"

    @property
    def months(self) -> int:
        return {"monthly": 1, "quarterly": 3, "semiannually": 6, "annually": 12}[self.value]

    @classmethod
    def _missing_(cls, value):
        if isinstance(value, str):
            normalized = value.strip().lower()
            for member in cls:
                if member.value == normalized:
                    return member
        return None


class BillStatus(str, Enum):
    UNPAID = "unpaid"
    PAID = "paid"
    OVERDUE = "overdue"
    VOID = "void"


class FeeKind(str, Enum):
    """Penalty components an admin can add to a bill."""

    LATE = "late"
    DAMAGE = "damage"

    @property
    def field_name(self) -> str:
        return "late_fee" if self is FeeKind.LATE else "damage_fee"


FEE_FIELDS = ("amount", "cusa_fee", "parking_fee", "late_fee", "damage_fee")
OPEN_STATUSES = (BillStatus.UNPAID, BillStatus.OVERDUE)


def _as_aware(value: Any) -> Any:
    if isinstance(value, datetime) and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class Bill(BaseModel):
    """
    One invoice for one client, one resource and one billing period.

    Documents are validated on the way in and out of the store, so a Bill
    instance always satisfies the status/timestamp invariants and has every
    fee component present and non-negative. The total is derived on read.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    bill_id: str = Field(..., min_length=1)
    client_id: str = Field(..., min_length=1)
    assigned_resource: str = Field(..., min_length=1)
    service_type: ServiceType
    billing_cycle: BillingCycle = BillingCycle.MONTHLY

    amount: Decimal = Field(default=Decimal("0"), ge=0)
    cusa_fee: Decimal = Field(default=Decimal("0"), ge=0)
    parking_fee: Decimal = Field(default=Decimal("0"), ge=0)
    late_fee: Decimal = Field(default=Decimal("0"), ge=0)
    damage_fee: Decimal = Field(default=Decimal("0"), ge=0)

    fee_period: Optional[str] = None
    start_date: date
    due_date: Optional[date] = None

    status: BillStatus = BillStatus.UNPAID
    paid_at: Optional[datetime] = None
    voided_at: Optional[datetime] = None
    void_reason: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: Optional[datetime] = None

    client_name: Optional[str] = None
    email: Optional[str] = None
    company_name: Optional[str] = None
    notes: Optional[str] = None

    version: int = Field(default=0, ge=0)

    @field_validator(*FEE_FIELDS, mode="before")
    @classmethod
    def normalize_fee(cls, v: Any) -> Any:
        """Missing fees are zero; booleans are not amounts."""
        if v is None:
            return Decimal("0")
        if isinstance(v, bool):
            raise ValueError("fee must be a number")
        if isinstance(v, float):
            return Decimal(str(v))
        return v

    @field_validator("start_date", "due_date", mode="before")
    @classmethod
    def normalize_day(cls, v: Any) -> Any:
        if isinstance(v, datetime):
            return v.date()
        return v

    @field_validator("paid_at", "voided_at", "created_at", "updated_at", mode="before")
    @classmethod
    def normalize_timestamp(cls, v: Any) -> Any:
        return _as_aware(v)

    @model_validator(mode="after")
    def check_status_invariants(self) -> "Bill":
        if self.status is BillStatus.PAID:
            if self.paid_at is None:
                raise ValueError("a paid bill must have paidAt")
            if self.paid_at < self.created_at:
                raise ValueError("paidAt cannot precede createdAt")
        elif self.paid_at is not None:
            raise ValueError(f"a {self.status.value} bill cannot have paidAt")

        if self.status is BillStatus.OVERDUE and self.due_date is None:
            raise ValueError("an overdue bill must have a dueDate")
        if self.status is BillStatus.VOID and self.voided_at is None:
            raise ValueError("a void bill must have voidedAt")
        if self.due_date is not None and self.due_date < self.start_date:
            raise ValueError("dueDate cannot precede startDate")
        return self

    @property
    def total(self) -> Decimal:
        return self.amount + self.cusa_fee + self.parking_fee + self.late_fee + self.damage_fee

    @property
    def is_open(self) -> bool:
        return self.status in OPEN_STATUSES

    @property
    def period_key(self) -> Optional[str]:
        """Uniqueness key for (client, resource, period); void bills release it."""
        if self.status is BillStatus.VOID or self.fee_period is None:
            return None
        return make_period_key(self.client_id, self.assigned_resource, self.fee_period)

    def to_document(self) -> Dict[str, Any]:
        """Serialize for the document store (camelCase, decimals as strings)."""
        doc = self.model_dump(by_alias=True)
        for key, value in doc.items():
            if isinstance(value, Decimal):
                doc[key] = str(value)
            elif isinstance(value, Enum):
                doc[key] = value.value
            elif isinstance(value, date) and not isinstance(value, datetime):
                doc[key] = value.isoformat()
        doc["periodKey"] = self.period_key
        return doc

    @classmethod
    def from_document(cls, doc: Dict[str, Any]) -> "Bill":
        return cls.model_validate(doc)


def make_period_key(client_id: str, assigned_resource: str, fee_period: str) -> str:
    return f"{client_id}|{assigned_resource}|{fee_period}"
