"""
Lease Billing Domain Models (``landreg_modules.lease.models``).

Responsibility
--------------
Frozen value objects for land leases and their yearly billing schedule.

Architecture position
---------------------
**Modules layer** -- pure data definitions with ZERO I/O.  Consumed by
``LeaseBillingGenerator`` and the lease execution handlers.

Invariants enforced
-------------------
* All models are ``frozen=True``.
* All monetary fields use ``Decimal`` -- NEVER ``float``.
"""

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from enum import Enum
from uuid import UUID


class LeaseStatus(str, Enum):
    ACTIVE = "ACTIVE"
    EXPIRED = "EXPIRED"
    TERMINATED = "TERMINATED"


class BillType(str, Enum):
    LEASE = "LEASE"


class PaymentStatus(str, Enum):
    UNPAID = "UNPAID"
    PARTIAL = "PARTIAL"
    PAID = "PAID"
    OVERDUE = "OVERDUE"


@dataclass(frozen=True)
class LeaseTerms:
    """The inputs of a billing schedule.

    ``annual_installment`` overrides the computed installment when given.
    """

    total_lease_amount: Decimal
    down_payment_amount: Decimal
    payment_term_years: int
    start_date: date | None
    annual_installment: Decimal | None = None


@dataclass(frozen=True)
class BillingScheduleLine:
    """One yearly obligation.

    ``remaining_amount`` is the outstanding principal BEFORE this
    installment is paid.
    """

    installment_number: int
    fiscal_year: int
    due_date: date
    amount_due: Decimal
    base_payment: Decimal
    remaining_amount: Decimal


@dataclass(frozen=True)
class Lease:
    id: UUID
    upin: str
    total_lease_amount: Decimal
    down_payment_amount: Decimal
    other_payment: Decimal
    lease_period_years: int
    payment_term_years: int
    annual_installment: Decimal
    start_date: date
    expiry_date: date
    contract_date: date
    status: LeaseStatus
    price_per_m2: Decimal | None = None
    legal_framework: str | None = None


@dataclass(frozen=True)
class BillingRecord:
    id: UUID
    lease_id: UUID
    upin: str
    installment_number: int
    fiscal_year: int
    bill_type: BillType
    due_date: date
    amount_due: Decimal
    amount_paid: Decimal
    base_payment: Decimal
    remaining_amount: Decimal
    payment_status: PaymentStatus
