"""
Lease Billing Service (``landreg_modules.lease.service``).

Responsibility
--------------
Turns a lease agreement into its yearly billing records.  Pure schedule
math is delegated to ``calculations.py``; this module persists the result
inside the caller's transaction.

Architecture position
---------------------
**Modules layer** -- ``LeaseBillingGenerator`` is the sole writer of
``BillingRecordModel`` rows.  Called by the lease and wizard execution
handlers while the approved mutation's transaction is open.

Invariants enforced
-------------------
* Bills are flushed, never committed.  A failure later in the same unit
  of work rolls them back together with the lease.
* ``regenerate_bills`` replaces every LEASE bill of the lease in the same
  transaction; there is never a moment with both old and new schedules.
* All monetary calculations use ``Decimal`` -- NEVER ``float``.

Failure modes
-------------
* Invalid lease terms -> ``ValidationError`` naming the field; nothing
  is written.
"""

from __future__ import annotations

from decimal import Decimal
from uuid import UUID

from sqlalchemy import delete
from sqlalchemy.orm import Session

from landreg_kernel.logging_config import get_logger
from landreg_modules.lease.calculations import build_billing_schedule
from landreg_modules.lease.models import (
    BillingScheduleLine,
    BillType,
    LeaseTerms,
    PaymentStatus,
)
from landreg_modules.lease.orm import BillingRecordModel, LeaseAgreementModel

logger = get_logger("modules.lease.service")


def terms_from_lease(lease: LeaseAgreementModel) -> LeaseTerms:
    return LeaseTerms(
        total_lease_amount=lease.total_lease_amount,
        down_payment_amount=lease.down_payment_amount,
        payment_term_years=lease.payment_term_years,
        start_date=lease.start_date,
        annual_installment=lease.annual_installment,
    )


class LeaseBillingGenerator:
    """
    Generates the amortization schedule of a lease as billing records.

    Contract
    --------
    * ``preview`` is pure: it returns the schedule without touching the
      database.
    * ``generate_bills`` and ``regenerate_bills`` add rows to the given
      session and flush.

    Non-goals
    ---------
    * Does NOT compute penalties or interest (the columns stay zero).
    """

    def preview(self, terms: LeaseTerms) -> tuple[BillingScheduleLine, ...]:
        return build_billing_schedule(terms)

    def generate_bills(
        self,
        session: Session,
        lease: LeaseAgreementModel,
        actor_id: UUID,
    ) -> list[BillingRecordModel]:
        """Create one UNPAID bill per payment year for ``lease``."""
        schedule = build_billing_schedule(terms_from_lease(lease))

        records = [
            BillingRecordModel(
                upin=lease.upin,
                lease_id=lease.id,
                fiscal_year=line.fiscal_year,
                bill_type=BillType.LEASE.value,
                installment_number=line.installment_number,
                due_date=line.due_date,
                amount_due=line.amount_due,
                amount_paid=Decimal("0"),
                base_payment=line.base_payment,
                remaining_amount=line.remaining_amount,
                payment_status=PaymentStatus.UNPAID.value,
                created_by_id=actor_id,
            )
            for line in schedule
        ]
        session.add_all(records)
        session.flush()

        logger.info(
            "lease_bills_generated",
            extra={
                "lease_id": str(lease.id),
                "upin": lease.upin,
                "bill_count": len(records),
                "installment": str(schedule[0].amount_due),
            },
        )
        return records

    def regenerate_bills(
        self,
        session: Session,
        lease: LeaseAgreementModel,
        actor_id: UUID,
    ) -> list[BillingRecordModel]:
        """Replace all LEASE bills of ``lease`` with a fresh schedule."""
        result = session.execute(
            delete(BillingRecordModel).where(
                BillingRecordModel.lease_id == lease.id,
                BillingRecordModel.bill_type == BillType.LEASE.value,
            )
        )
        logger.info(
            "lease_bills_cleared",
            extra={"lease_id": str(lease.id), "deleted": result.rowcount},
        )
        return self.generate_bills(session, lease, actor_id)
