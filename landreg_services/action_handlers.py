"""
landreg_services.action_handlers -- Registry mutations behind approved requests.

Responsibility:
    One handler per (entity type, action type) pair.  A handler applies the
    mutation described by a typed payload to the land registry, writes the
    ownership history and audit entries that go with it, and returns an
    ``ExecutionResult`` describing what changed.

Architecture position:
    Services -- invoked only through ``ActionExecutionDispatcher``, which
    owns the SAVEPOINT each handler runs in and the error translation.

Invariants enforced:
    - Handlers only add and flush; the caller's transaction decides whether
      anything is kept.
    - Ownership never ends by deleting a link row: links are retired
      (``is_active`` False, ``retired_at`` set).
    - Files are never moved here.  Wizard documents are queued as
      ``DocumentPromotionModel`` rows and moved after commit.

Failure modes:
    - ValidationError for business-rule violations (self-transfer,
      duplicate upin, area mismatch, wrong tenure, ...).
    - NotFoundError when a referenced parcel, owner, lease or session is
      missing or soft-deleted.
    - InvalidStateError when the parcel is not in a state that allows the
      change (retired parent, deletion blockers).

Audit relevance:
    Every handler records at least one audit entry naming the approver
    whose decision triggered it.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Callable
from uuid import UUID

from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session

from landreg_kernel.db.types import round_money
from landreg_kernel.domain.approval import ActionType, EntityType, ExecutionResult
from landreg_kernel.domain.clock import Clock
from landreg_kernel.domain.payloads import (
    EncumbranceCreatePayload,
    LeaseCreatePayload,
    LeaseUpdatePayload,
    OwnerCreatePayload,
    OwnerDraft,
    ParcelAddOwnerPayload,
    ParcelDeletePayload,
    ParcelDraft,
    ParcelSubdividePayload,
    ParcelTransferPayload,
    WizardSubmissionPayload,
    to_jsonable,
)
from landreg_kernel.domain.wizard import WizardStatus, WizardStep, normalize_owners
from landreg_kernel.exceptions import (
    InvalidStateError,
    NotFoundError,
    ValidationError,
    WizardSessionNotFoundError,
)
from landreg_kernel.logging_config import get_logger
from landreg_kernel.models.document_promotion import (
    DocumentPromotionModel,
    PromotionStatus,
)
from landreg_kernel.models.wizard_session import WizardSessionModel
from landreg_kernel.services.audit_sink import AuditSink
from landreg_modules.lease.calculations import (
    add_years,
    calculate_annual_installment,
    validate_lease_terms,
)
from landreg_modules.lease.models import LeaseStatus, LeaseTerms, PaymentStatus
from landreg_modules.lease.orm import BillingRecordModel, LeaseAgreementModel
from landreg_modules.lease.service import LeaseBillingGenerator
from landreg_modules.registry.models import (
    EncumbranceStatus,
    ParcelStatus,
    TenureType,
    TransferType,
)
from landreg_modules.registry.orm import (
    EncumbranceModel,
    LandParcelModel,
    OwnerModel,
    OwnershipHistoryModel,
    ParcelOwnerModel,
)

logger = get_logger("services.action_handlers")

# Child areas may differ from the parent's by survey rounding.
SUBDIVISION_AREA_TOLERANCE = Decimal("0.1")

TRANSFER_KINDS = frozenset({
    TransferType.SALE.value,
    TransferType.GIFT.value,
    TransferType.HEREDITY.value,
    TransferType.COURT_ORDER.value,
})

_UNPAID_STATUSES = (PaymentStatus.UNPAID.value, PaymentStatus.OVERDUE.value)


@dataclass(frozen=True)
class HandlerContext:
    """Everything a handler needs besides its payload."""

    session: Session
    actor_id: UUID
    entity_id: str
    clock: Clock
    audit: AuditSink
    billing: LeaseBillingGenerator
    request_id: UUID | None = None

    def record(
        self,
        action: str,
        entity_type: str,
        entity_id: Any,
        changes: dict[str, Any],
    ) -> None:
        if self.request_id is not None:
            changes = {**changes, "approval_request_id": str(self.request_id)}
        self.audit.record(
            self.session, self.actor_id, action, entity_type, entity_id, changes,
        )


ActionHandler = Callable[[HandlerContext, Any], ExecutionResult]


# =============================================================================
# Lookups
# =============================================================================


def _load_parcel(session: Session, upin: str, *, for_update: bool = False) -> LandParcelModel:
    stmt = select(LandParcelModel).where(
        LandParcelModel.upin == upin,
        LandParcelModel.is_deleted.is_(False),
    )
    if for_update:
        stmt = stmt.with_for_update()
    parcel = session.execute(stmt).scalar_one_or_none()
    if parcel is None:
        raise NotFoundError("LandParcel", upin)
    return parcel


def _load_owner(session: Session, owner_id: UUID) -> OwnerModel:
    owner = session.get(OwnerModel, owner_id)
    if owner is None or owner.is_deleted:
        raise NotFoundError("Owner", owner_id)
    return owner


def _active_links(session: Session, upin: str) -> list[ParcelOwnerModel]:
    return list(
        session.execute(
            select(ParcelOwnerModel)
            .where(
                ParcelOwnerModel.upin == upin,
                ParcelOwnerModel.is_active.is_(True),
            )
            .order_by(ParcelOwnerModel.acquired_at)
        ).scalars()
    )


def _owner_snapshot(links: list[ParcelOwnerModel]) -> list[dict[str, Any]]:
    return [
        {
            "owner_id": str(link.owner_id),
            "full_name": link.owner.full_name,
            "acquired_at": link.acquired_at.isoformat() if link.acquired_at else None,
        }
        for link in links
    ]


def _count(session: Session, stmt) -> int:
    return session.execute(stmt).scalar_one()


def _parcel_exists(session: Session, upin: str, file_number: str) -> str | None:
    """Name the field ('upin' or 'file_number') that already exists, if any."""
    existing = session.execute(
        select(LandParcelModel.upin, LandParcelModel.file_number).where(
            or_(
                LandParcelModel.upin == upin,
                LandParcelModel.file_number == file_number,
            )
        )
    ).first()
    if existing is None:
        return None
    return "upin" if existing.upin == upin else "file_number"


def _ensure_national_id_free(session: Session, national_id: str) -> None:
    taken = session.execute(
        select(OwnerModel.id).where(
            OwnerModel.national_id == national_id,
            OwnerModel.is_deleted.is_(False),
        )
    ).first()
    if taken is not None:
        raise ValidationError(
            f"An owner with national id {national_id} already exists",
            field="national_id",
        )


def _new_owner(
    ctx: HandlerContext,
    *,
    full_name: str,
    national_id: str,
    phone_number: str,
    tin_number: str | None,
    sub_city_id: UUID | None,
) -> OwnerModel:
    _ensure_national_id_free(ctx.session, national_id)
    owner = OwnerModel(
        full_name=full_name,
        national_id=national_id,
        phone_number=phone_number,
        tin_number=tin_number,
        sub_city_id=sub_city_id,
        created_by_id=ctx.actor_id,
    )
    ctx.session.add(owner)
    ctx.session.flush()
    return owner


def _history(
    ctx: HandlerContext,
    upin: str,
    transfer_type: str,
    *,
    from_owner_id: UUID | None = None,
    to_owner_id: UUID | None = None,
    transfer_price: Decimal | None = None,
    reference_no: str | None = None,
    snapshot: dict[str, Any] | None = None,
) -> OwnershipHistoryModel:
    entry = OwnershipHistoryModel(
        upin=upin,
        transfer_type=transfer_type,
        from_owner_id=from_owner_id,
        to_owner_id=to_owner_id,
        transfer_price=transfer_price,
        reference_no=reference_no,
        transfer_date=ctx.clock.now(),
        event_snapshot=to_jsonable(snapshot or {}),
        created_by_id=ctx.actor_id,
    )
    ctx.session.add(entry)
    return entry


def _create_lease(
    ctx: HandlerContext,
    parcel: LandParcelModel,
    payload: LeaseCreatePayload,
) -> tuple[LeaseAgreementModel, int]:
    """Create a lease on ``parcel`` and its billing schedule."""
    if parcel.tenure_type != TenureType.LEASE.value:
        raise ValidationError(
            "Land tenure type must be LEASE to register a lease agreement",
            field="tenure_type",
        )
    existing = ctx.session.execute(
        select(LeaseAgreementModel.id).where(LeaseAgreementModel.upin == parcel.upin)
    ).first()
    if existing is not None:
        raise ValidationError(
            f"Parcel {parcel.upin} already has a lease agreement", field="upin",
        )
    if payload.lease_period_years <= 0:
        raise ValidationError(
            "Lease period years must be greater than 0", field="lease_period_years",
        )

    terms = LeaseTerms(
        total_lease_amount=payload.total_lease_amount,
        down_payment_amount=payload.down_payment_amount,
        payment_term_years=payload.payment_term_years,
        start_date=payload.start_date,
        annual_installment=payload.annual_installment,
    )
    validate_lease_terms(terms)
    installment = (
        round_money(payload.annual_installment)
        if payload.annual_installment is not None
        else calculate_annual_installment(
            payload.total_lease_amount,
            payload.down_payment_amount,
            payload.payment_term_years,
        )
    )

    lease = LeaseAgreementModel(
        upin=parcel.upin,
        total_lease_amount=payload.total_lease_amount,
        down_payment_amount=payload.down_payment_amount,
        other_payment=payload.other_payment,
        lease_period_years=payload.lease_period_years,
        payment_term_years=payload.payment_term_years,
        annual_installment=installment,
        price_per_m2=payload.price_per_m2,
        legal_framework=payload.legal_framework,
        contract_date=payload.contract_date,
        start_date=payload.start_date,
        expiry_date=add_years(payload.start_date, payload.lease_period_years),
        status=LeaseStatus.ACTIVE.value,
        created_by_id=ctx.actor_id,
    )
    ctx.session.add(lease)
    ctx.session.flush()

    bills = ctx.billing.generate_bills(ctx.session, lease, ctx.actor_id)
    return lease, len(bills)


# =============================================================================
# OWNER
# =============================================================================


def create_owner(ctx: HandlerContext, payload: OwnerCreatePayload) -> ExecutionResult:
    owner = _new_owner(
        ctx,
        full_name=payload.full_name,
        national_id=payload.national_id,
        phone_number=payload.phone_number,
        tin_number=payload.tin_number,
        sub_city_id=payload.sub_city_id,
    )
    ctx.record("CREATE", "owners", owner.id, {"action": "create_owner", **payload.to_dict()})
    return ExecutionResult(
        entity_type=EntityType.OWNER,
        action_type=ActionType.CREATE,
        entity_id=str(owner.id),
        summary={"owner_id": str(owner.id), "full_name": owner.full_name},
    )


# =============================================================================
# LAND_PARCEL
# =============================================================================


def transfer_parcel(ctx: HandlerContext, payload: ParcelTransferPayload) -> ExecutionResult:
    """Move ownership of a parcel from one owner (or none) to another."""
    upin = ctx.entity_id
    if payload.transfer_type not in TRANSFER_KINDS:
        raise ValidationError(
            f"Unknown transfer type {payload.transfer_type}", field="transfer_type",
        )
    if payload.from_owner_id is not None and payload.from_owner_id == payload.to_owner_id:
        raise ValidationError("Self-transfer is not allowed", field="to_owner_id")

    parcel = _load_parcel(ctx.session, upin, for_update=True)
    links = _active_links(ctx.session, upin)
    if not links:
        raise ValidationError(f"Parcel {upin} has no active owners", field="upin")

    from_link = None
    if payload.from_owner_id is not None:
        from_link = next(
            (link for link in links if link.owner_id == payload.from_owner_id), None,
        )
        if from_link is None:
            raise ValidationError(
                "The transferring owner is not an active owner of the parcel",
                field="from_owner_id",
            )
    _load_owner(ctx.session, payload.to_owner_id)
    to_link = next((link for link in links if link.owner_id == payload.to_owner_id), None)

    snapshot = {
        "owners_before": _owner_snapshot(links),
        "transfer_type": payload.transfer_type,
        "transfer_price": payload.transfer_price,
        "reference_no": payload.reference_no,
    }

    now = ctx.clock.now()
    tenure_updated = payload.transfer_type != TransferType.HEREDITY.value
    if tenure_updated:
        parcel.tenure_type = TenureType.LEASE.value
        parcel.updated_by_id = ctx.actor_id

    if from_link is not None:
        from_link.is_active = False
        from_link.retired_at = now
        from_link.updated_by_id = ctx.actor_id

    if to_link is not None:
        to_link.acquired_at = now.date()
        to_link.updated_by_id = ctx.actor_id
    else:
        ctx.session.add(
            ParcelOwnerModel(
                upin=upin,
                owner_id=payload.to_owner_id,
                acquired_at=now.date(),
                is_active=True,
                created_by_id=ctx.actor_id,
            )
        )

    history = _history(
        ctx,
        upin,
        payload.transfer_type,
        from_owner_id=payload.from_owner_id,
        to_owner_id=payload.to_owner_id,
        transfer_price=payload.transfer_price,
        reference_no=payload.reference_no,
        snapshot=snapshot,
    )
    ctx.session.flush()

    final_count = len(_active_links(ctx.session, upin))
    ctx.record(
        "UPDATE",
        "parcel_owners",
        f"{upin}_{payload.to_owner_id}",
        {
            "action": "transfer_ownership",
            "upin": upin,
            "parcel_tenure_updated": tenure_updated,
            **payload.to_dict(),
        },
    )
    logger.info(
        "parcel_transferred",
        extra={"upin": upin, "transfer_type": payload.transfer_type},
    )
    return ExecutionResult(
        entity_type=EntityType.LAND_PARCEL,
        action_type=ActionType.TRANSFER,
        entity_id=upin,
        summary={
            "history_id": str(history.id),
            "from_owner_id": str(payload.from_owner_id) if payload.from_owner_id else None,
            "to_owner_id": str(payload.to_owner_id),
            "final_owners_count": final_count,
        },
    )


def add_parcel_owner(ctx: HandlerContext, payload: ParcelAddOwnerPayload) -> ExecutionResult:
    upin = ctx.entity_id
    _load_parcel(ctx.session, upin, for_update=True)
    owner = _load_owner(ctx.session, payload.owner_id)

    today = ctx.clock.today()
    acquired_at = payload.acquired_at or today
    if acquired_at > today:
        raise ValidationError(
            "Acquisition date cannot be in the future", field="acquired_at",
        )

    links = _active_links(ctx.session, upin)
    if any(link.owner_id == owner.id for link in links):
        raise ValidationError(
            f"Owner {owner.id} is already an active owner of parcel {upin}",
            field="owner_id",
        )
    first_owner = not links
    transfer_type = (
        TransferType.FIRST_OWNER if first_owner else TransferType.CO_OWNER_ADDITION
    ).value

    link = ParcelOwnerModel(
        upin=upin,
        owner_id=owner.id,
        acquired_at=acquired_at,
        is_active=True,
        created_by_id=ctx.actor_id,
    )
    ctx.session.add(link)
    _history(
        ctx,
        upin,
        transfer_type,
        to_owner_id=owner.id,
        reference_no=f"{transfer_type}-{ctx.clock.now():%Y%m%d%H%M%S}",
        snapshot={
            "owners_before": _owner_snapshot(links),
            "added_owner": {"owner_id": str(owner.id), "full_name": owner.full_name},
        },
    )
    ctx.session.flush()

    ctx.record(
        "CREATE",
        "parcel_owners",
        link.id,
        {
            "action": "add_parcel_owner",
            "upin": upin,
            "owner_id": str(owner.id),
            "acquired_at": acquired_at,
            "is_first_owner": first_owner,
        },
    )
    return ExecutionResult(
        entity_type=EntityType.LAND_PARCEL,
        action_type=ActionType.ADD_OWNER,
        entity_id=upin,
        summary={
            "parcel_owner_id": str(link.id),
            "owner_id": str(owner.id),
            "transfer_type": transfer_type,
        },
    )


def subdivide_parcel(ctx: HandlerContext, payload: ParcelSubdividePayload) -> ExecutionResult:
    """Retire a parcel and register its children with the same owners."""
    upin = ctx.entity_id
    parent = _load_parcel(ctx.session, upin, for_update=True)
    if parent.status != ParcelStatus.ACTIVE.value:
        raise InvalidStateError("LandParcel", upin, parent.status, "subdivide")

    for child in payload.child_parcels:
        conflict = _parcel_exists(ctx.session, child.upin, child.file_number)
        if conflict is not None:
            value = child.upin if conflict == "upin" else child.file_number
            raise ValidationError(
                f"Parcel {conflict} {value} already exists", field=conflict,
            )

    child_total = sum((child.total_area_m2 for child in payload.child_parcels), Decimal("0"))
    if abs(child_total - parent.total_area_m2) > SUBDIVISION_AREA_TOLERANCE:
        raise ValidationError(
            f"Child areas ({child_total}) must add up to the parent area "
            f"({parent.total_area_m2})",
            field="child_parcels",
        )

    links = _active_links(ctx.session, upin)
    parent.status = ParcelStatus.RETIRED.value
    parent.updated_by_id = ctx.actor_id

    acquired_at = ctx.clock.today()
    children: list[LandParcelModel] = []
    for spec in payload.child_parcels:
        child = LandParcelModel(
            upin=spec.upin,
            file_number=spec.file_number,
            sub_city_id=parent.sub_city_id,
            tabia=parent.tabia,
            ketena=parent.ketena,
            block=parent.block,
            total_area_m2=spec.total_area_m2,
            land_use=spec.land_use or parent.land_use,
            land_grade=spec.land_grade or parent.land_grade,
            tenure_type=parent.tenure_type,
            parent_upin=parent.upin,
            status=ParcelStatus.ACTIVE.value,
            boundary_north=spec.boundary_north or parent.boundary_north,
            boundary_east=spec.boundary_east or parent.boundary_east,
            boundary_south=spec.boundary_south or parent.boundary_south,
            boundary_west=spec.boundary_west or parent.boundary_west,
            created_by_id=ctx.actor_id,
        )
        ctx.session.add(child)
        children.append(child)
    # Children must exist before their owner links reference them.
    ctx.session.flush()

    for child in children:
        for link in links:
            ctx.session.add(
                ParcelOwnerModel(
                    upin=child.upin,
                    owner_id=link.owner_id,
                    acquired_at=acquired_at,
                    is_active=True,
                    created_by_id=ctx.actor_id,
                )
            )

    _history(
        ctx,
        upin,
        TransferType.SUBDIVISION.value,
        snapshot={
            "parent_parcel": {
                "upin": parent.upin,
                "area_m2": parent.total_area_m2,
                "owners": _owner_snapshot(links),
            },
            "child_parcels": [
                {"upin": spec.upin, "area_m2": spec.total_area_m2}
                for spec in payload.child_parcels
            ],
        },
    )
    ctx.session.flush()

    child_upins = [child.upin for child in children]
    ctx.record(
        "UPDATE",
        "land_parcels",
        upin,
        {
            "action": "subdivide_parcel",
            "parent_upin": upin,
            "parent_area": parent.total_area_m2,
            "parent_status_after": ParcelStatus.RETIRED.value,
            "child_upins": child_upins,
            "owners_copied": len(links),
        },
    )
    logger.info(
        "parcel_subdivided",
        extra={"upin": upin, "child_count": len(children)},
    )
    return ExecutionResult(
        entity_type=EntityType.LAND_PARCEL,
        action_type=ActionType.SUBDIVIDE,
        entity_id=upin,
        summary={"child_upins": child_upins, "owners_copied": len(links)},
    )


def delete_parcel(ctx: HandlerContext, payload: ParcelDeletePayload) -> ExecutionResult:
    """Soft-delete a parcel that no longer carries any rights or obligations."""
    upin = ctx.entity_id
    parcel = _load_parcel(ctx.session, upin, for_update=True)
    session = ctx.session

    blockers = {
        "active owners": _count(
            session,
            select(func.count(ParcelOwnerModel.id)).where(
                ParcelOwnerModel.upin == upin,
                ParcelOwnerModel.is_active.is_(True),
            ),
        ),
        "unpaid bills": _count(
            session,
            select(func.count(BillingRecordModel.id)).where(
                BillingRecordModel.upin == upin,
                BillingRecordModel.payment_status.in_(_UNPAID_STATUSES),
            ),
        ),
        "child parcels": _count(
            session,
            select(func.count(LandParcelModel.id)).where(
                LandParcelModel.parent_upin == upin,
                LandParcelModel.is_deleted.is_(False),
            ),
        ),
        "active lease": _count(
            session,
            select(func.count(LeaseAgreementModel.id)).where(
                LeaseAgreementModel.upin == upin,
                LeaseAgreementModel.status == LeaseStatus.ACTIVE.value,
            ),
        ),
        "active encumbrances": _count(
            session,
            select(func.count(EncumbranceModel.id)).where(
                EncumbranceModel.upin == upin,
                EncumbranceModel.status == EncumbranceStatus.ACTIVE.value,
                EncumbranceModel.is_deleted.is_(False),
            ),
        ),
    }
    for label, count in blockers.items():
        if count:
            raise InvalidStateError(
                "LandParcel", upin, f"{count} {label}", "delete",
            )

    original_file_number = parcel.file_number
    stamp = int(ctx.clock.now().timestamp() * 1000)
    parcel.file_number = f"{original_file_number}_deleted_{stamp}"
    parcel.status = ParcelStatus.RETIRED.value
    parcel.is_deleted = True
    parcel.updated_by_id = ctx.actor_id
    session.flush()

    ctx.record(
        "DELETE",
        "land_parcels",
        upin,
        {
            "action": "soft_delete_parcel",
            "original_file_number": original_file_number,
            "new_file_number": parcel.file_number,
            "reason": payload.reason,
            "total_area_m2": parcel.total_area_m2,
        },
    )
    return ExecutionResult(
        entity_type=EntityType.LAND_PARCEL,
        action_type=ActionType.DELETE,
        entity_id=upin,
        summary={
            "original_file_number": original_file_number,
            "new_file_number": parcel.file_number,
        },
    )


# =============================================================================
# LEASE
# =============================================================================


def create_lease(ctx: HandlerContext, payload: LeaseCreatePayload) -> ExecutionResult:
    parcel = _load_parcel(ctx.session, payload.upin, for_update=True)
    lease, bill_count = _create_lease(ctx, parcel, payload)
    ctx.record(
        "CREATE", "lease_agreements", lease.id,
        {"action": "create_lease", **payload.to_dict(),
         "annual_installment": lease.annual_installment},
    )
    return ExecutionResult(
        entity_type=EntityType.LEASE,
        action_type=ActionType.CREATE,
        entity_id=str(lease.id),
        summary={
            "lease_id": str(lease.id),
            "upin": lease.upin,
            "annual_installment": str(lease.annual_installment),
            "bills_created": bill_count,
        },
    )


def update_lease(ctx: HandlerContext, payload: LeaseUpdatePayload) -> ExecutionResult:
    """Amend lease terms and replace the billing schedule."""
    try:
        lease_id = UUID(ctx.entity_id)
    except ValueError as exc:
        raise NotFoundError("Lease", ctx.entity_id) from exc
    lease = ctx.session.get(LeaseAgreementModel, lease_id, with_for_update=True)
    if lease is None:
        raise NotFoundError("Lease", ctx.entity_id)

    changes = payload.changes()
    before = {name: getattr(lease, name) for name in changes}
    for name, value in changes.items():
        setattr(lease, name, value)
    if lease.lease_period_years <= 0:
        raise ValidationError(
            "Lease period years must be greater than 0", field="lease_period_years",
        )

    validate_lease_terms(
        LeaseTerms(
            total_lease_amount=lease.total_lease_amount,
            down_payment_amount=lease.down_payment_amount,
            payment_term_years=lease.payment_term_years,
            start_date=lease.start_date,
        )
    )
    lease.annual_installment = calculate_annual_installment(
        lease.total_lease_amount,
        lease.down_payment_amount,
        lease.payment_term_years,
    )
    lease.expiry_date = add_years(lease.start_date, lease.lease_period_years)
    lease.updated_by_id = ctx.actor_id
    ctx.session.flush()

    bills = ctx.billing.regenerate_bills(ctx.session, lease, ctx.actor_id)
    ctx.record(
        "UPDATE", "lease_agreements", lease.id,
        {"action": "update_lease", "before": before, "after": changes,
         "annual_installment": lease.annual_installment},
    )
    return ExecutionResult(
        entity_type=EntityType.LEASE,
        action_type=ActionType.UPDATE,
        entity_id=str(lease.id),
        summary={
            "lease_id": str(lease.id),
            "annual_installment": str(lease.annual_installment),
            "bills_regenerated": len(bills),
        },
    )


# =============================================================================
# ENCUMBRANCE
# =============================================================================


def create_encumbrance(ctx: HandlerContext, payload: EncumbranceCreatePayload) -> ExecutionResult:
    _load_parcel(ctx.session, payload.upin)
    taken = ctx.session.execute(
        select(EncumbranceModel.id).where(
            EncumbranceModel.reference_number == payload.reference_number,
            EncumbranceModel.is_deleted.is_(False),
        )
    ).first()
    if taken is not None:
        raise ValidationError(
            f"Encumbrance reference {payload.reference_number} already exists",
            field="reference_number",
        )

    encumbrance = EncumbranceModel(
        upin=payload.upin,
        type=payload.type,
        issuing_entity=payload.issuing_entity,
        reference_number=payload.reference_number,
        description=payload.description,
        status=payload.status,
        registration_date=payload.registration_date or ctx.clock.today(),
        created_by_id=ctx.actor_id,
    )
    ctx.session.add(encumbrance)
    ctx.session.flush()

    ctx.record(
        "CREATE", "encumbrances", encumbrance.id,
        {"action": "create_encumbrance", **payload.to_dict()},
    )
    return ExecutionResult(
        entity_type=EntityType.ENCUMBRANCE,
        action_type=ActionType.CREATE,
        entity_id=str(encumbrance.id),
        summary={"encumbrance_id": str(encumbrance.id), "upin": payload.upin},
    )


# =============================================================================
# WIZARD_SESSION
# =============================================================================


def _resolve_owner(
    ctx: HandlerContext,
    draft: OwnerDraft,
    sub_city_id: UUID | None,
) -> tuple[OwnerModel, bool]:
    """Existing owner by id, else by national id, else a new owner."""
    if draft.owner_id is not None:
        return _load_owner(ctx.session, draft.owner_id), False
    existing = ctx.session.execute(
        select(OwnerModel).where(
            OwnerModel.national_id == draft.national_id,
            OwnerModel.is_deleted.is_(False),
        )
    ).scalar_one_or_none()
    if existing is not None:
        return existing, False
    owner = _new_owner(
        ctx,
        full_name=draft.full_name,
        national_id=draft.national_id,
        phone_number=draft.phone_number,
        tin_number=draft.tin_number,
        sub_city_id=sub_city_id,
    )
    return owner, True


def _queue_promotions(
    ctx: HandlerContext,
    session_id: UUID,
    step: WizardStep,
    docs: list[dict[str, Any]],
    targets: list[tuple[str, str]],
) -> int:
    """Queue one promotion per document; document i goes to target i (or the first)."""
    if not targets:
        return 0
    now = ctx.clock.now()
    for index, doc in enumerate(docs or []):
        entity_type, entity_id = targets[index] if index < len(targets) else targets[0]
        ctx.session.add(
            DocumentPromotionModel(
                session_id=session_id,
                step=step.value,
                file_name=doc["file_name"],
                doc_type=doc.get("doc_type") or "GENERAL",
                target_entity_type=entity_type,
                target_entity_id=entity_id,
                status=PromotionStatus.PENDING,
                attempts=0,
                created_at=now,
            )
        )
    return len(docs or [])


def execute_wizard(ctx: HandlerContext, payload: WizardSubmissionPayload) -> ExecutionResult:
    """Register the parcel, owners and lease assembled in a wizard session."""
    wizard = ctx.session.get(WizardSessionModel, payload.session_id)
    if wizard is None:
        raise WizardSessionNotFoundError(payload.session_id)
    if not wizard.parcel_data:
        raise ValidationError("Wizard session has no parcel data", field="parcel_data")

    sub_city_id = payload.sub_city_id or wizard.sub_city_id
    draft = ParcelDraft.from_dict(wizard.parcel_data)
    conflict = _parcel_exists(ctx.session, draft.upin, draft.file_number)
    if conflict is not None:
        value = draft.upin if conflict == "upin" else draft.file_number
        raise ValidationError(f"Parcel {conflict} {value} already exists", field=conflict)

    parcel = LandParcelModel(
        upin=draft.upin,
        file_number=draft.file_number,
        sub_city_id=sub_city_id,
        tabia=draft.tabia,
        ketena=draft.ketena,
        block=draft.block,
        total_area_m2=draft.total_area_m2,
        land_use=draft.land_use,
        land_grade=draft.land_grade,
        tenure_type=draft.tenure_type,
        status=ParcelStatus.ACTIVE.value,
        boundary_north=draft.boundary_north,
        boundary_east=draft.boundary_east,
        boundary_south=draft.boundary_south,
        boundary_west=draft.boundary_west,
        created_by_id=ctx.actor_id,
    )
    ctx.session.add(parcel)
    ctx.session.flush()

    owner_entries = normalize_owners(wizard.owner_data)
    if not owner_entries:
        raise ValidationError("Wizard session has no owners", field="owner_data")

    today = ctx.clock.today()
    owners: list[OwnerModel] = []
    created_owners = 0
    for entry in owner_entries:
        owner, created = _resolve_owner(ctx, OwnerDraft.from_dict(entry), sub_city_id)
        if any(o.id == owner.id for o in owners):
            continue
        created_owners += int(created)
        owners.append(owner)
        ctx.session.add(
            ParcelOwnerModel(
                upin=parcel.upin,
                owner_id=owner.id,
                acquired_at=today,
                is_active=True,
                created_by_id=ctx.actor_id,
            )
        )
    _history(
        ctx,
        parcel.upin,
        TransferType.FIRST_OWNER.value,
        to_owner_id=owners[0].id,
        reference_no=f"WIZARD-{wizard.id}",
        snapshot={"owners": [{"owner_id": o.id, "full_name": o.full_name} for o in owners]},
    )
    ctx.session.flush()

    lease = None
    bill_count = 0
    if draft.tenure_type == TenureType.LEASE.value and wizard.lease_data:
        lease_payload = LeaseCreatePayload.from_dict(
            {**wizard.lease_data, "upin": parcel.upin}
        )
        lease, bill_count = _create_lease(ctx, parcel, lease_payload)

    parcel_target = [(EntityType.LAND_PARCEL.value, parcel.upin)]
    owner_targets = [(EntityType.OWNER.value, str(o.id)) for o in owners]
    lease_target = [(EntityType.LEASE.value, str(lease.id))] if lease is not None else []
    documents = (
        _queue_promotions(ctx, wizard.id, WizardStep.PARCEL_DOCS, wizard.parcel_docs, parcel_target)
        + _queue_promotions(ctx, wizard.id, WizardStep.OWNER_DOCS, wizard.owner_docs, owner_targets)
        + _queue_promotions(ctx, wizard.id, WizardStep.LEASE_DOCS, wizard.lease_docs, lease_target)
    )
    ctx.session.flush()

    summary = {
        "session_id": str(wizard.id),
        "parcel_upin": parcel.upin,
        "owner_ids": [str(o.id) for o in owners],
        "owners_created": created_owners,
        "lease_id": str(lease.id) if lease is not None else None,
        "bills_created": bill_count,
        "documents_queued": documents,
    }
    ctx.record("CREATE", "land_parcels", parcel.upin, {"action": "wizard_registration", **summary})
    logger.info(
        "wizard_registration_executed",
        extra={"session_id": str(wizard.id), "upin": parcel.upin},
    )
    return ExecutionResult(
        entity_type=EntityType.WIZARD_SESSION,
        action_type=ActionType.CREATE,
        entity_id=str(wizard.id),
        summary=summary,
        session_status=WizardStatus.MERGED.value,
    )
