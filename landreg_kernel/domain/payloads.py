"""
Request payload variants (``landreg_kernel.domain.payloads``).

Responsibility
--------------
One frozen dataclass per (entity type, action type) pair an approval
request can carry, plus the draft records a wizard session assembles.
``parse_payload`` selects the schema for a pair and turns the stored JSON
mapping into the typed variant; every variant renders itself back to a
JSON-safe dict with ``to_dict()`` for storage in ``request_data``.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects, ZERO I/O.

Invariants enforced
-------------------
* Missing or malformed fields raise ``ValidationError`` naming the field.
* Money and area values are ``Decimal``; dates are ``date``; ids are
  ``UUID``.  Strings from JSON are coerced on the way in.
"""

from __future__ import annotations

from dataclasses import dataclass, fields, is_dataclass
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Mapping
from uuid import UUID

from landreg_kernel.db.types import to_decimal
from landreg_kernel.domain.approval import ActionType, EntityType
from landreg_kernel.exceptions import UnsupportedActionError, ValidationError

DEFAULT_TENURE_TYPE = "OLD_POSSESSION"
DEFAULT_LAND_GRADE = Decimal("1.0")


# =========================================================================
# Field coercion helpers
# =========================================================================


def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def _required(data: Mapping[str, Any], name: str) -> Any:
    value = data.get(name)
    if _is_blank(value):
        raise ValidationError(f"{name} is required", field=name)
    return value.strip() if isinstance(value, str) else value


def _optional_str(data: Mapping[str, Any], name: str) -> str | None:
    value = data.get(name)
    if _is_blank(value):
        return None
    return str(value).strip()


def _decimal(value: Any, name: str) -> Decimal:
    try:
        result = to_decimal(value)
    except InvalidOperation as exc:
        raise ValidationError(f"{name} must be a number", field=name) from exc
    if not result.is_finite():
        raise ValidationError(f"{name} must be a finite number", field=name)
    return result


def _optional_decimal(data: Mapping[str, Any], name: str) -> Decimal | None:
    value = data.get(name)
    return None if _is_blank(value) else _decimal(value, name)


def _int(value: Any, name: str) -> int:
    try:
        result = int(str(value))
    except ValueError as exc:
        raise ValidationError(f"{name} must be a whole number", field=name) from exc
    return result


def _optional_int(data: Mapping[str, Any], name: str) -> int | None:
    value = data.get(name)
    return None if _is_blank(value) else _int(value, name)


def _date(value: Any, name: str) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value)[:10])
    except ValueError as exc:
        raise ValidationError(f"{name} must be an ISO date", field=name) from exc


def _optional_date(data: Mapping[str, Any], name: str) -> date | None:
    value = data.get(name)
    return None if _is_blank(value) else _date(value, name)


def _uuid(value: Any, name: str) -> UUID:
    if isinstance(value, UUID):
        return value
    try:
        return UUID(str(value))
    except ValueError as exc:
        raise ValidationError(f"{name} must be a UUID", field=name) from exc


def _optional_uuid(data: Mapping[str, Any], name: str) -> UUID | None:
    value = data.get(name)
    return None if _is_blank(value) else _uuid(value, name)


def to_jsonable(value: Any) -> Any:
    """Render dataclasses, Decimals, dates, UUIDs and enums as JSON types."""
    if is_dataclass(value) and not isinstance(value, type):
        return {f.name: to_jsonable(getattr(value, f.name)) for f in fields(value)}
    if isinstance(value, Mapping):
        return {str(k): to_jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_jsonable(v) for v in value]
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (Decimal, UUID)):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return value


class _Payload:
    """Mixin: JSON rendering for payload dataclasses."""

    def to_dict(self) -> dict[str, Any]:
        return to_jsonable(self)


# =========================================================================
# Request payload variants
# =========================================================================


@dataclass(frozen=True)
class OwnerCreatePayload(_Payload):
    full_name: str
    national_id: str
    phone_number: str
    tin_number: str | None = None
    sub_city_id: UUID | None = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> OwnerCreatePayload:
        return cls(
            full_name=_required(data, "full_name"),
            national_id=_required(data, "national_id"),
            phone_number=_required(data, "phone_number"),
            tin_number=_optional_str(data, "tin_number"),
            sub_city_id=_optional_uuid(data, "sub_city_id"),
        )


@dataclass(frozen=True)
class ParcelTransferPayload(_Payload):
    to_owner_id: UUID
    transfer_type: str
    from_owner_id: UUID | None = None
    transfer_price: Decimal | None = None
    reference_no: str | None = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> ParcelTransferPayload:
        return cls(
            to_owner_id=_uuid(_required(data, "to_owner_id"), "to_owner_id"),
            transfer_type=str(_required(data, "transfer_type")).upper(),
            from_owner_id=_optional_uuid(data, "from_owner_id"),
            transfer_price=_optional_decimal(data, "transfer_price"),
            reference_no=_optional_str(data, "reference_no"),
        )


@dataclass(frozen=True)
class ParcelAddOwnerPayload(_Payload):
    owner_id: UUID
    acquired_at: date | None = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> ParcelAddOwnerPayload:
        return cls(
            owner_id=_uuid(_required(data, "owner_id"), "owner_id"),
            acquired_at=_optional_date(data, "acquired_at"),
        )


@dataclass(frozen=True)
class ChildParcelSpec(_Payload):
    upin: str
    file_number: str
    total_area_m2: Decimal
    land_use: str | None = None
    land_grade: Decimal | None = None
    boundary_north: str | None = None
    boundary_east: str | None = None
    boundary_south: str | None = None
    boundary_west: str | None = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> ChildParcelSpec:
        area = _decimal(_required(data, "total_area_m2"), "total_area_m2")
        if area <= 0:
            raise ValidationError(
                "total_area_m2 must be greater than 0", field="total_area_m2"
            )
        return cls(
            upin=_required(data, "upin"),
            file_number=_required(data, "file_number"),
            total_area_m2=area,
            land_use=_optional_str(data, "land_use"),
            land_grade=_optional_decimal(data, "land_grade"),
            boundary_north=_optional_str(data, "boundary_north"),
            boundary_east=_optional_str(data, "boundary_east"),
            boundary_south=_optional_str(data, "boundary_south"),
            boundary_west=_optional_str(data, "boundary_west"),
        )


@dataclass(frozen=True)
class ParcelSubdividePayload(_Payload):
    child_parcels: tuple[ChildParcelSpec, ...]

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> ParcelSubdividePayload:
        children = data.get("child_parcels")
        if not isinstance(children, (list, tuple)) or len(children) < 2:
            raise ValidationError(
                "At least two child parcels are required", field="child_parcels"
            )
        specs = tuple(ChildParcelSpec.from_dict(child) for child in children)
        upins = [spec.upin for spec in specs]
        if len(set(upins)) != len(upins):
            raise ValidationError(
                "Child parcel UPINs must be distinct", field="child_parcels"
            )
        return cls(child_parcels=specs)


@dataclass(frozen=True)
class ParcelDeletePayload(_Payload):
    reason: str | None = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> ParcelDeletePayload:
        return cls(reason=_optional_str(data, "reason"))


@dataclass(frozen=True)
class LeaseCreatePayload(_Payload):
    upin: str
    total_lease_amount: Decimal
    lease_period_years: int
    payment_term_years: int
    start_date: date
    contract_date: date
    down_payment_amount: Decimal = Decimal("0")
    other_payment: Decimal = Decimal("0")
    price_per_m2: Decimal | None = None
    legal_framework: str | None = None
    annual_installment: Decimal | None = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> LeaseCreatePayload:
        return cls(
            upin=_required(data, "upin"),
            total_lease_amount=_decimal(
                _required(data, "total_lease_amount"), "total_lease_amount"
            ),
            lease_period_years=_int(
                _required(data, "lease_period_years"), "lease_period_years"
            ),
            payment_term_years=_int(
                _required(data, "payment_term_years"), "payment_term_years"
            ),
            start_date=_date(_required(data, "start_date"), "start_date"),
            contract_date=_date(_required(data, "contract_date"), "contract_date"),
            down_payment_amount=_optional_decimal(data, "down_payment_amount")
            or Decimal("0"),
            other_payment=_optional_decimal(data, "other_payment") or Decimal("0"),
            price_per_m2=_optional_decimal(data, "price_per_m2"),
            legal_framework=_optional_str(data, "legal_framework"),
            annual_installment=_optional_decimal(data, "annual_installment"),
        )


@dataclass(frozen=True)
class LeaseUpdatePayload(_Payload):
    """Partial amendment of a lease.  Only non-None fields change."""

    total_lease_amount: Decimal | None = None
    down_payment_amount: Decimal | None = None
    other_payment: Decimal | None = None
    lease_period_years: int | None = None
    payment_term_years: int | None = None
    start_date: date | None = None
    contract_date: date | None = None
    price_per_m2: Decimal | None = None
    legal_framework: str | None = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> LeaseUpdatePayload:
        payload = cls(
            total_lease_amount=_optional_decimal(data, "total_lease_amount"),
            down_payment_amount=_optional_decimal(data, "down_payment_amount"),
            other_payment=_optional_decimal(data, "other_payment"),
            lease_period_years=_optional_int(data, "lease_period_years"),
            payment_term_years=_optional_int(data, "payment_term_years"),
            start_date=_optional_date(data, "start_date"),
            contract_date=_optional_date(data, "contract_date"),
            price_per_m2=_optional_decimal(data, "price_per_m2"),
            legal_framework=_optional_str(data, "legal_framework"),
        )
        if not payload.changes():
            raise ValidationError("No lease fields to update")
        return payload

    def changes(self) -> dict[str, Any]:
        return {
            f.name: getattr(self, f.name)
            for f in fields(self)
            if getattr(self, f.name) is not None
        }


@dataclass(frozen=True)
class EncumbranceCreatePayload(_Payload):
    upin: str
    type: str
    issuing_entity: str
    reference_number: str
    description: str | None = None
    registration_date: date | None = None
    status: str = "ACTIVE"

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> EncumbranceCreatePayload:
        return cls(
            upin=_required(data, "upin"),
            type=str(_required(data, "type")).upper(),
            issuing_entity=_required(data, "issuing_entity"),
            reference_number=_required(data, "reference_number"),
            description=_optional_str(data, "description"),
            registration_date=_optional_date(data, "registration_date"),
            status=(_optional_str(data, "status") or "ACTIVE").upper(),
        )


@dataclass(frozen=True)
class WizardSubmissionPayload(_Payload):
    """Identifies the session whose slots form the composite registration."""

    session_id: UUID
    sub_city_id: UUID | None = None
    maker_id: UUID | None = None
    maker_role: str | None = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> WizardSubmissionPayload:
        return cls(
            session_id=_uuid(_required(data, "session_id"), "session_id"),
            sub_city_id=_optional_uuid(data, "sub_city_id"),
            maker_id=_optional_uuid(data, "maker_id"),
            maker_role=_optional_str(data, "maker_role"),
        )


# =========================================================================
# Wizard draft records
# =========================================================================


@dataclass(frozen=True)
class ParcelDraft(_Payload):
    upin: str
    file_number: str
    total_area_m2: Decimal
    tabia: str | None = None
    ketena: str | None = None
    block: str | None = None
    land_use: str | None = None
    land_grade: Decimal = DEFAULT_LAND_GRADE
    tenure_type: str = DEFAULT_TENURE_TYPE
    boundary_north: str | None = None
    boundary_east: str | None = None
    boundary_south: str | None = None
    boundary_west: str | None = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> ParcelDraft:
        area = _decimal(_required(data, "total_area_m2"), "total_area_m2")
        if area <= 0:
            raise ValidationError(
                "total_area_m2 must be greater than 0", field="total_area_m2"
            )
        return cls(
            upin=_required(data, "upin"),
            file_number=_required(data, "file_number"),
            total_area_m2=area,
            tabia=_optional_str(data, "tabia"),
            ketena=_optional_str(data, "ketena"),
            block=_optional_str(data, "block"),
            land_use=_optional_str(data, "land_use"),
            land_grade=_optional_decimal(data, "land_grade") or DEFAULT_LAND_GRADE,
            tenure_type=(
                _optional_str(data, "tenure_type") or DEFAULT_TENURE_TYPE
            ).upper(),
            boundary_north=_optional_str(data, "boundary_north"),
            boundary_east=_optional_str(data, "boundary_east"),
            boundary_south=_optional_str(data, "boundary_south"),
            boundary_west=_optional_str(data, "boundary_west"),
        )


@dataclass(frozen=True)
class OwnerDraft(_Payload):
    """An owner entry from a wizard session.

    With ``owner_id`` set the draft references an existing owner and the
    personal fields are optional.
    """

    owner_id: UUID | None = None
    full_name: str | None = None
    national_id: str | None = None
    phone_number: str | None = None
    tin_number: str | None = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> OwnerDraft:
        owner_id = _optional_uuid(data, "owner_id")
        if owner_id is not None:
            return cls(
                owner_id=owner_id,
                full_name=_optional_str(data, "full_name"),
                national_id=_optional_str(data, "national_id"),
                phone_number=_optional_str(data, "phone_number"),
                tin_number=_optional_str(data, "tin_number"),
            )
        return cls(
            full_name=_required(data, "full_name"),
            national_id=_required(data, "national_id"),
            phone_number=_required(data, "phone_number"),
            tin_number=_optional_str(data, "tin_number"),
        )


# =========================================================================
# Schema registry
# =========================================================================


PAYLOAD_SCHEMAS: dict[tuple[EntityType, ActionType], type] = {
    (EntityType.OWNER, ActionType.CREATE): OwnerCreatePayload,
    (EntityType.LAND_PARCEL, ActionType.TRANSFER): ParcelTransferPayload,
    (EntityType.LAND_PARCEL, ActionType.ADD_OWNER): ParcelAddOwnerPayload,
    (EntityType.LAND_PARCEL, ActionType.SUBDIVIDE): ParcelSubdividePayload,
    (EntityType.LAND_PARCEL, ActionType.DELETE): ParcelDeletePayload,
    (EntityType.LEASE, ActionType.CREATE): LeaseCreatePayload,
    (EntityType.LEASE, ActionType.UPDATE): LeaseUpdatePayload,
    (EntityType.ENCUMBRANCE, ActionType.CREATE): EncumbranceCreatePayload,
    (EntityType.WIZARD_SESSION, ActionType.CREATE): WizardSubmissionPayload,
}


def parse_payload(
    entity_type: EntityType | str,
    action_type: ActionType | str,
    data: Mapping[str, Any] | _Payload,
):
    """Return the typed payload variant for the pair.

    Raises:
        UnsupportedActionError: no schema exists for the pair.
        ValidationError: the mapping does not satisfy the schema.
    """
    try:
        entity_type = EntityType(entity_type)
        action_type = ActionType(action_type)
    except ValueError as exc:
        raise UnsupportedActionError(
            getattr(entity_type, "value", str(entity_type)),
            getattr(action_type, "value", str(action_type)),
        ) from exc
    schema = PAYLOAD_SCHEMAS.get((entity_type, action_type))
    if schema is None:
        raise UnsupportedActionError(entity_type.value, action_type.value)
    if isinstance(data, schema):
        return data
    if not isinstance(data, Mapping):
        raise ValidationError(
            f"Payload for {entity_type.value}/{action_type.value} must be a mapping"
        )
    return schema.from_dict(data)
