"""
Land Registry Domain Vocabulary (``landreg_modules.registry.models``).

Responsibility
--------------
Enumerations and frozen value objects for parcels, owners, ownership
links, ownership history and encumbrances.

Architecture position
---------------------
**Modules layer** -- pure data definitions with ZERO I/O.
"""

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from enum import Enum
from uuid import UUID


class ParcelStatus(str, Enum):
    ACTIVE = "ACTIVE"
    RETIRED = "RETIRED"


class TenureType(str, Enum):
    """Land tenure kinds.  Only LEASE tenure carries a lease agreement."""

    OLD_POSSESSION = "OLD_POSSESSION"
    LEASE = "LEASE"


class TransferType(str, Enum):
    """Ownership history event kinds."""

    SALE = "SALE"
    GIFT = "GIFT"
    HEREDITY = "HEREDITY"
    COURT_ORDER = "COURT_ORDER"
    FIRST_OWNER = "FIRST_OWNER"
    CO_OWNER_ADDITION = "CO_OWNER_ADDITION"
    SUBDIVISION = "SUBDIVISION"


class EncumbranceStatus(str, Enum):
    ACTIVE = "ACTIVE"
    RELEASED = "RELEASED"


@dataclass(frozen=True)
class Owner:
    id: UUID
    full_name: str
    national_id: str
    phone_number: str
    tin_number: str | None = None
    sub_city_id: UUID | None = None


@dataclass(frozen=True)
class LandParcel:
    id: UUID
    upin: str
    file_number: str
    total_area_m2: Decimal
    tenure_type: str
    status: ParcelStatus
    land_grade: Decimal
    sub_city_id: UUID | None = None
    land_use: str | None = None
    parent_upin: str | None = None


@dataclass(frozen=True)
class Encumbrance:
    id: UUID
    upin: str
    type: str
    issuing_entity: str
    reference_number: str
    status: EncumbranceStatus
    registration_date: date | None = None
