from datetime import date, datetime, timedelta, timezone
from typing import Optional

from app.crud import clients as client_crud
from app.models.bill import ServiceType


class FrozenClock:
    """Callable returning a fixed, manually advanced UTC time."""

    def __init__(self, current: datetime):
        self.current = current

    def __call__(self) -> datetime:
        return self.current

    def set(self, current: datetime) -> None:
        self.current = current

    def advance(self, **kwargs) -> None:
        self.current += timedelta(**kwargs)


def utc(year: int, month: int, day: int, hour: int = 9) -> datetime:
    return datetime(year, month, day, hour, tzinfo=timezone.utc)


async def seed_client(
    store,
    client_id: str = "c1",
    assigned_resource: str = "Desk-12",
    service_type: ServiceType = ServiceType.DEDICATED_DESK,
    assigned_at: date = date(2025, 12, 1),
    email: Optional[str] = "tenant@example.com",
):
    return await client_crud.create_client(
        store,
        name="Ana Reyes",
        service_type=service_type,
        assigned_resource=assigned_resource,
        assigned_at=assigned_at,
        email=email,
        company_name="Reyes Studio",
        client_id=client_id,
    )
