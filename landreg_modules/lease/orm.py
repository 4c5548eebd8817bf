"""
Module: landreg_modules.lease.orm
Responsibility:
    SQLAlchemy ORM persistence for lease agreements and their billing
    records.  Maps to the frozen DTOs in ``landreg_modules.lease.models``.

Architecture position:
    **Modules layer** -- ORM models inheriting from ``TrackedBase``.

Invariants enforced:
    - One lease per parcel (uq_lease_upin).
    - One bill per (lease, bill_type, installment_number).
    - All monetary fields are Decimal (Numeric(38,9)).

Failure modes:
    - IntegrityError on a second lease for the same parcel.

Audit relevance:
    Billing rows are only created or replaced by ``LeaseBillingGenerator``
    inside the lease's own transaction.
"""

from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import (
    Date,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from landreg_kernel.db.base import TrackedBase, UUIDString


class LeaseAgreementModel(TrackedBase):
    """
    A land lease contract on one parcel.

    Guarantees:
        - ``expiry_date`` = ``start_date`` + ``lease_period_years``.
        - ``annual_installment`` matches the generated bills' amount.
    """

    __tablename__ = "lease_agreements"

    __table_args__ = (
        UniqueConstraint("upin", name="uq_lease_upin"),
        Index("idx_lease_status", "status"),
    )

    upin: Mapped[str] = mapped_column(
        String(100), ForeignKey("land_parcels.upin"), nullable=False,
    )
    total_lease_amount: Mapped[Decimal] = mapped_column(nullable=False)
    down_payment_amount: Mapped[Decimal] = mapped_column(
        nullable=False, default=Decimal("0"),
    )
    other_payment: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    lease_period_years: Mapped[int] = mapped_column(Integer, nullable=False)
    payment_term_years: Mapped[int] = mapped_column(Integer, nullable=False)
    annual_installment: Mapped[Decimal] = mapped_column(nullable=False)
    price_per_m2: Mapped[Decimal | None] = mapped_column(nullable=True)
    legal_framework: Mapped[str | None] = mapped_column(String(255), nullable=True)
    contract_date: Mapped[date] = mapped_column(Date, nullable=False)
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    expiry_date: Mapped[date] = mapped_column(Date, nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="ACTIVE")

    def to_dto(self):
        from landreg_modules.lease.models import Lease, LeaseStatus

        return Lease(
            id=self.id,
            upin=self.upin,
            total_lease_amount=self.total_lease_amount,
            down_payment_amount=self.down_payment_amount,
            other_payment=self.other_payment,
            lease_period_years=self.lease_period_years,
            payment_term_years=self.payment_term_years,
            annual_installment=self.annual_installment,
            start_date=self.start_date,
            expiry_date=self.expiry_date,
            contract_date=self.contract_date,
            status=LeaseStatus(self.status),
            price_per_m2=self.price_per_m2,
            legal_framework=self.legal_framework,
        )


class BillingRecordModel(TrackedBase):
    """
    One yearly lease bill.

    Guarantees:
        - ``remaining_amount`` is non-increasing in ``installment_number``
          and never negative.
        - New bills are UNPAID with ``amount_paid`` zero.
    """

    __tablename__ = "billing_records"

    __table_args__ = (
        UniqueConstraint(
            "lease_id", "bill_type", "installment_number",
            name="uq_billing_installment",
        ),
        Index("idx_billing_upin_status", "upin", "payment_status"),
        Index("idx_billing_due_date", "due_date"),
    )

    upin: Mapped[str] = mapped_column(String(100), nullable=False)
    lease_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("lease_agreements.id"), nullable=False,
    )
    fiscal_year: Mapped[int] = mapped_column(Integer, nullable=False)
    bill_type: Mapped[str] = mapped_column(String(20), nullable=False, default="LEASE")
    installment_number: Mapped[int] = mapped_column(Integer, nullable=False)
    due_date: Mapped[date] = mapped_column(Date, nullable=False)
    amount_due: Mapped[Decimal] = mapped_column(nullable=False)
    amount_paid: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    base_payment: Mapped[Decimal] = mapped_column(nullable=False)
    penalty_amount: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    interest_amount: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    remaining_amount: Mapped[Decimal] = mapped_column(nullable=False)
    payment_status: Mapped[str] = mapped_column(
        String(20), nullable=False, default="UNPAID",
    )

    def to_dto(self):
        from landreg_modules.lease.models import BillingRecord, BillType, PaymentStatus

        return BillingRecord(
            id=self.id,
            lease_id=self.lease_id,
            upin=self.upin,
            installment_number=self.installment_number,
            fiscal_year=self.fiscal_year,
            bill_type=BillType(self.bill_type),
            due_date=self.due_date,
            amount_due=self.amount_due,
            amount_paid=self.amount_paid,
            base_payment=self.base_payment,
            remaining_amount=self.remaining_amount,
            payment_status=PaymentStatus(self.payment_status),
        )
