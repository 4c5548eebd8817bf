"""Lease agreements and their yearly billing schedule."""

from landreg_modules.lease.calculations import (
    add_years,
    build_billing_schedule,
    calculate_annual_installment,
    validate_lease_terms,
)
from landreg_modules.lease.models import (
    BillingScheduleLine,
    BillType,
    LeaseStatus,
    LeaseTerms,
    PaymentStatus,
)
from landreg_modules.lease.service import LeaseBillingGenerator

__all__ = [
    "add_years",
    "build_billing_schedule",
    "calculate_annual_installment",
    "validate_lease_terms",
    "BillingScheduleLine",
    "BillType",
    "LeaseStatus",
    "LeaseTerms",
    "PaymentStatus",
    "LeaseBillingGenerator",
]
