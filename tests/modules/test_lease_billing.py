"""
Lease billing schedule.

Covers:
- Installment arithmetic and rounding
- Anniversary dates, including leases starting on Feb 29
- Remaining balance per line
- Term validation naming the failing field
- Persisted bills via LeaseBillingGenerator (generate and regenerate)
"""

from datetime import date
from decimal import Decimal

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st
from sqlalchemy import func, select

from landreg_kernel.exceptions import ValidationError
from landreg_modules.lease.calculations import (
    add_years,
    build_billing_schedule,
    calculate_annual_installment,
    validate_lease_terms,
)
from landreg_modules.lease.models import LeaseTerms
from landreg_modules.lease.orm import BillingRecordModel, LeaseAgreementModel


def _terms(total="120000", down="20000", term=5, start=date(2024, 7, 8), installment=None):
    return LeaseTerms(
        total_lease_amount=Decimal(total),
        down_payment_amount=Decimal(down),
        payment_term_years=term,
        start_date=start,
        annual_installment=None if installment is None else Decimal(installment),
    )


# ---------------------------------------------------------------------------
# Pure calculations
# ---------------------------------------------------------------------------


class TestInstallment:

    def test_even_split(self):
        assert calculate_annual_installment(Decimal("120000"), Decimal("20000"), 5) == Decimal("20000.00")

    def test_rounds_to_cents(self):
        assert calculate_annual_installment(Decimal("1000"), Decimal("0"), 3) == Decimal("333.33")

    def test_half_rounds_up(self):
        assert calculate_annual_installment(Decimal("0.05"), Decimal("0"), 2) == Decimal("0.03")


class TestAddYears:

    def test_plain_date(self):
        assert add_years(date(2024, 7, 8), 3) == date(2027, 7, 8)

    def test_leap_day_lands_on_feb_28(self):
        assert add_years(date(2024, 2, 29), 1) == date(2025, 2, 28)

    def test_leap_day_to_leap_year(self):
        assert add_years(date(2024, 2, 29), 4) == date(2028, 2, 29)


class TestSchedule:

    def test_five_year_schedule(self):
        lines = build_billing_schedule(_terms())
        assert [line.installment_number for line in lines] == [1, 2, 3, 4, 5]
        assert all(line.amount_due == Decimal("20000.00") for line in lines)
        assert [line.remaining_amount for line in lines] == [
            Decimal("100000.00"),
            Decimal("80000.00"),
            Decimal("60000.00"),
            Decimal("40000.00"),
            Decimal("20000.00"),
        ]

    def test_due_dates_are_anniversaries(self):
        lines = build_billing_schedule(_terms(start=date(2024, 2, 29), term=2))
        assert [line.due_date for line in lines] == [date(2025, 2, 28), date(2026, 2, 28)]
        assert [line.fiscal_year for line in lines] == [2025, 2026]

    def test_explicit_installment_overrides(self):
        lines = build_billing_schedule(_terms(installment="30000", term=5))
        assert lines[0].amount_due == Decimal("30000.00")
        assert [line.remaining_amount for line in lines][-2:] == [
            Decimal("10000.00"),
            Decimal("0.00"),
        ]

    def test_negative_installment_never_builds_a_schedule(self):
        with pytest.raises(ValidationError) as exc_info:
            build_billing_schedule(
                _terms(total="120000", down="20000", term=3, installment="-1000")
            )
        assert exc_info.value.field == "annual_installment"

    def test_infinite_total_is_a_validation_error(self):
        with pytest.raises(ValidationError) as exc_info:
            build_billing_schedule(_terms(total="Infinity"))
        assert exc_info.value.field == "total_lease_amount"

    @pytest.mark.parametrize(
        "terms, field",
        [
            (_terms(total="0", down="0"), "total_lease_amount"),
            (_terms(down="-1"), "down_payment_amount"),
            (_terms(down="120000"), "down_payment_amount"),
            (_terms(term=0), "payment_term_years"),
            (_terms(start=None), "start_date"),
            (_terms(installment="-1000"), "annual_installment"),
            (_terms(installment="0"), "annual_installment"),
            (_terms(total="Infinity"), "total_lease_amount"),
            (_terms(down="NaN"), "down_payment_amount"),
            (_terms(installment="NaN"), "annual_installment"),
        ],
    )
    def test_invalid_terms(self, terms, field):
        with pytest.raises(ValidationError) as exc_info:
            validate_lease_terms(terms)
        assert exc_info.value.field == field


class TestScheduleProperties:

    @given(
        total=st.decimals(min_value=Decimal("1000"), max_value=Decimal("99999999"), places=2),
        down_ratio=st.decimals(min_value=Decimal("0"), max_value=Decimal("0.9"), places=2),
        term=st.integers(min_value=1, max_value=60),
    )
    @settings(max_examples=150)
    def test_remaining_never_increases_or_goes_negative(self, total, down_ratio, term):
        down = (total * down_ratio).quantize(Decimal("0.01"))
        lines = build_billing_schedule(
            LeaseTerms(
                total_lease_amount=total,
                down_payment_amount=down,
                payment_term_years=term,
                start_date=date(2024, 2, 29),
            )
        )
        assert len(lines) == term
        assert lines[0].remaining_amount == (total - down).quantize(Decimal("0.01"))
        remaining = [line.remaining_amount for line in lines]
        assert all(value >= 0 for value in remaining)
        assert all(a >= b for a, b in zip(remaining, remaining[1:]))


# ---------------------------------------------------------------------------
# Persistence
# ---------------------------------------------------------------------------


@pytest.fixture
def lease_on_parcel(transactions, create_parcel, actor_id):
    upin = create_parcel(tenure_type="LEASE")

    def _lease(session):
        lease = LeaseAgreementModel(
            upin=upin,
            total_lease_amount=Decimal("120000"),
            down_payment_amount=Decimal("20000"),
            other_payment=Decimal("0"),
            lease_period_years=60,
            payment_term_years=5,
            annual_installment=Decimal("20000.00"),
            contract_date=date(2024, 7, 1),
            start_date=date(2024, 7, 8),
            expiry_date=date(2084, 7, 8),
            status="ACTIVE",
            created_by_id=actor_id,
        )
        session.add(lease)
        session.flush()
        return lease

    return _lease


class TestLeaseBillingGenerator:

    def test_preview_is_pure(self, billing):
        assert len(billing.preview(_terms())) == 5

    def test_generate_bills(self, transactions, billing, lease_on_parcel, actor_id, captured_logs):
        with transactions.transaction() as session:
            lease = lease_on_parcel(session)
            records = billing.generate_bills(session, lease, actor_id)
            lease_id = lease.id

        assert len(records) == 5
        with transactions.transaction() as session:
            bills = session.execute(
                select(BillingRecordModel)
                .where(BillingRecordModel.lease_id == lease_id)
                .order_by(BillingRecordModel.installment_number)
            ).scalars().all()
            assert [b.payment_status for b in bills] == ["UNPAID"] * 5
            assert all(b.amount_paid == 0 for b in bills)
            assert bills[-1].remaining_amount == Decimal("20000")

        assert any(r["message"] == "lease_bills_generated" for r in captured_logs())

    def test_regenerate_replaces_schedule(self, transactions, billing, lease_on_parcel, actor_id):
        with transactions.transaction() as session:
            lease = lease_on_parcel(session)
            billing.generate_bills(session, lease, actor_id)
            lease.payment_term_years = 3
            lease.annual_installment = calculate_annual_installment(
                lease.total_lease_amount, lease.down_payment_amount, 3,
            )
            session.flush()
            billing.regenerate_bills(session, lease, actor_id)
            lease_id = lease.id

        with transactions.transaction() as session:
            count = session.execute(
                select(func.count(BillingRecordModel.id)).where(
                    BillingRecordModel.lease_id == lease_id
                )
            ).scalar_one()
            assert count == 3

    def test_invalid_terms_write_nothing(self, transactions, billing, lease_on_parcel, actor_id):
        with transactions.transaction() as session:
            lease = lease_on_parcel(session)
            lease.payment_term_years = 0
            with pytest.raises(ValidationError):
                billing.generate_bills(session, lease, actor_id)
            count = session.execute(select(func.count(BillingRecordModel.id))).scalar_one()
            assert count == 0
