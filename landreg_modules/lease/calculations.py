"""
Lease Billing Pure Calculation Functions.

Domain math behind a lease's payment obligations:
- Annual installment from total, down payment and term
- Anniversary date arithmetic
- Yearly billing schedule with the running remaining balance
"""

from datetime import date
from decimal import Decimal

from landreg_kernel.db.types import round_money
from landreg_kernel.exceptions import ValidationError
from landreg_modules.lease.models import BillingScheduleLine, LeaseTerms


def add_years(start: date, years: int) -> date:
    """
    Same calendar day ``years`` later.  Feb 29 lands on Feb 28 in a
    non-leap target year.
    """
    try:
        return start.replace(year=start.year + years)
    except ValueError:
        return start.replace(year=start.year + years, day=28)


def calculate_annual_installment(
    total_lease_amount: Decimal,
    down_payment_amount: Decimal,
    payment_term_years: int,
) -> Decimal:
    """
    installment = round((total - down_payment) / term, 2)
    """
    principal = total_lease_amount - down_payment_amount
    return round_money(principal / Decimal(payment_term_years))


def _require_finite(value: Decimal | None, field: str, label: str) -> None:
    if value is not None and not value.is_finite():
        raise ValidationError(f"{label} must be a finite number", field=field)


def validate_lease_terms(terms: LeaseTerms) -> None:
    """Raise ValidationError naming the first field that breaks a precondition."""
    _require_finite(terms.total_lease_amount, "total_lease_amount", "Total lease amount")
    _require_finite(terms.down_payment_amount, "down_payment_amount", "Down payment")
    _require_finite(terms.annual_installment, "annual_installment", "Annual installment")
    if terms.total_lease_amount is None or terms.total_lease_amount <= 0:
        raise ValidationError(
            "Total lease amount must be greater than 0",
            field="total_lease_amount",
        )
    if terms.down_payment_amount is None or terms.down_payment_amount < 0:
        raise ValidationError(
            "Down payment cannot be negative", field="down_payment_amount",
        )
    if terms.down_payment_amount >= terms.total_lease_amount:
        raise ValidationError(
            "Down payment must be less than total lease amount",
            field="down_payment_amount",
        )
    if terms.payment_term_years is None or terms.payment_term_years <= 0:
        raise ValidationError(
            "Payment term years must be greater than 0",
            field="payment_term_years",
        )
    if terms.start_date is None:
        raise ValidationError("Start date is required", field="start_date")
    if terms.annual_installment is not None and terms.annual_installment <= 0:
        raise ValidationError(
            "Annual installment must be greater than 0",
            field="annual_installment",
        )


def build_billing_schedule(terms: LeaseTerms) -> tuple[BillingScheduleLine, ...]:
    """
    Build one billing line per payment year.

    For k = 1..term: the bill falls due k years after the start date, its
    fiscal year is the due date's year, and it records the balance before
    the installment.  The balance then drops by the installment, rounded to
    two places and floored at zero.
    """
    validate_lease_terms(terms)

    installment = (
        round_money(terms.annual_installment)
        if terms.annual_installment is not None
        else calculate_annual_installment(
            terms.total_lease_amount,
            terms.down_payment_amount,
            terms.payment_term_years,
        )
    )

    remaining = round_money(terms.total_lease_amount - terms.down_payment_amount)
    lines: list[BillingScheduleLine] = []
    for k in range(1, terms.payment_term_years + 1):
        due_date = add_years(terms.start_date, k)
        lines.append(
            BillingScheduleLine(
                installment_number=k,
                fiscal_year=due_date.year,
                due_date=due_date,
                amount_due=installment,
                base_payment=installment,
                remaining_amount=remaining,
            )
        )
        remaining = max(Decimal("0.00"), round_money(remaining - installment))
    return tuple(lines)
