"""
Default fee components per service type.
"""

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Mapping, Optional

from app.core.config import settings
from app.core.errors import ConfigurationError
from app.models.bill import ServiceType

_COMPONENT_KEYS = {
    "amount": "amount",
    "cusaFee": "cusa_fee",
    "cusa_fee": "cusa_fee",
    "parkingFee": "parking_fee",
    "parking_fee": "parking_fee",
}


@dataclass(frozen=True)
class FeeDefaults:
    amount: Decimal = Decimal("0")
    cusa_fee: Decimal = Decimal("0")
    parking_fee: Decimal = Decimal("0")


def _parse_entry(label: str, entry: Mapping[str, Any]) -> FeeDefaults:
    values: Dict[str, Decimal] = {}
    for key, raw in entry.items():
        field = _COMPONENT_KEYS.get(key)
        if field is None:
            raise ConfigurationError(f"unknown fee component {key!r} in {label}")
        try:
            value = Decimal(str(raw))
        except InvalidOperation:
            raise ConfigurationError(f"fee {key!r} in {label} is not a number: {raw!r}")
        if value < 0:
            raise ConfigurationError(f"fee {key!r} in {label} is negative")
        values[field] = value
    return FeeDefaults(**values)


class FeeSchedule:
    """Resolves base rent, CUSA and parking defaults for a new bill.

    Late and damage fees are never defaulted; they are added by an admin.
    """

    def __init__(
        self,
        defaults: Optional[Mapping[str, Mapping[str, Any]]] = None,
        overrides: Optional[Mapping[str, Mapping[str, Mapping[str, Any]]]] = None,
    ):
        defaults = settings.FEE_SCHEDULE if defaults is None else defaults
        overrides = settings.FEE_OVERRIDES if overrides is None else overrides
        self._defaults: Dict[ServiceType, FeeDefaults] = {}
        self._overrides: Dict[ServiceType, Dict[str, FeeDefaults]] = {}

        for raw_type, entry in defaults.items():
            service_type = self._service_type(raw_type)
            self._defaults[service_type] = _parse_entry(service_type.value, entry)

        for raw_type, resources in overrides.items():
            service_type = self._service_type(raw_type)
            self._overrides[service_type] = {
                resource: _parse_entry(f"{service_type.value}/{resource}", entry)
                for resource, entry in resources.items()
            }

    @staticmethod
    def _service_type(value: Any) -> ServiceType:
        try:
            return ServiceType(value)
        except ValueError:
            raise ConfigurationError(f"unrecognized service type {value!r}", service_type=value)

    def resolve(self, service_type: Any, assigned_resource: str) -> FeeDefaults:
        """Return the configured defaults for a service type and resource."""
        kind = self._service_type(service_type)
        override = self._overrides.get(kind, {}).get(assigned_resource)
        if override is not None:
            return override
        if kind not in self._defaults:
            raise ConfigurationError(f"no fee schedule entry for {kind.value}", service_type=kind.value)
        return self._defaults[kind]
