"""
Module: landreg_modules.registry.orm
Responsibility:
    SQLAlchemy ORM persistence for the land registry: parcels, owners,
    the parcel-owner link, ownership history and encumbrances.

Architecture position:
    **Modules layer** -- ORM models inheriting from ``TrackedBase``.

Invariants enforced:
    - ``upin`` and ``file_number`` are unique across parcels.  A soft-deleted
      parcel keeps its upin and has its file number suffixed so the
      number can be reissued.
    - ``national_id`` is unique among owners.
    - ``reference_number`` is unique among encumbrances.
    - Area values use Decimal, never float.

Failure modes:
    - IntegrityError on duplicate unique values.

Audit relevance:
    - OwnershipHistoryModel is the chain of title; ``event_snapshot``
      captures the owners as they were before each event.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import (
    JSON,
    Boolean,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from landreg_kernel.db.base import TrackedBase, UUIDString


# =============================================================================
# Parcel
# =============================================================================


class LandParcelModel(TrackedBase):
    """
    A registered land parcel.

    Guarantees:
        - ``upin`` is unique (uq_parcel_upin).
        - ``status`` is ACTIVE or RETIRED.
        - ``parent_upin`` is set on parcels created by subdivision.
    """

    __tablename__ = "land_parcels"

    __table_args__ = (
        UniqueConstraint("upin", name="uq_parcel_upin"),
        UniqueConstraint("file_number", name="uq_parcel_file_number"),
        Index("idx_parcel_sub_city", "sub_city_id"),
        Index("idx_parcel_parent", "parent_upin"),
    )

    upin: Mapped[str] = mapped_column(String(100), nullable=False)
    file_number: Mapped[str] = mapped_column(String(150), nullable=False)
    sub_city_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    tabia: Mapped[str | None] = mapped_column(String(100), nullable=True)
    ketena: Mapped[str | None] = mapped_column(String(100), nullable=True)
    block: Mapped[str | None] = mapped_column(String(100), nullable=True)
    total_area_m2: Mapped[Decimal] = mapped_column(Numeric(18, 4), nullable=False)
    land_use: Mapped[str | None] = mapped_column(String(100), nullable=True)
    land_grade: Mapped[Decimal] = mapped_column(
        Numeric(6, 2), nullable=False, default=Decimal("1.0"),
    )
    tenure_type: Mapped[str] = mapped_column(
        String(50), nullable=False, default="OLD_POSSESSION",
    )
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="ACTIVE")
    parent_upin: Mapped[str | None] = mapped_column(String(100), nullable=True)
    boundary_north: Mapped[str | None] = mapped_column(String(255), nullable=True)
    boundary_east: Mapped[str | None] = mapped_column(String(255), nullable=True)
    boundary_south: Mapped[str | None] = mapped_column(String(255), nullable=True)
    boundary_west: Mapped[str | None] = mapped_column(String(255), nullable=True)
    is_deleted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    def to_dto(self):
        from landreg_modules.registry.models import LandParcel, ParcelStatus

        return LandParcel(
            id=self.id,
            upin=self.upin,
            file_number=self.file_number,
            total_area_m2=self.total_area_m2,
            tenure_type=self.tenure_type,
            status=ParcelStatus(self.status),
            land_grade=self.land_grade,
            sub_city_id=self.sub_city_id,
            land_use=self.land_use,
            parent_upin=self.parent_upin,
        )


# =============================================================================
# Owner
# =============================================================================


class OwnerModel(TrackedBase):
    """
    A natural or legal person who can hold parcels.

    Guarantees:
        - ``national_id`` is unique (uq_owner_national_id).
    """

    __tablename__ = "owners"

    __table_args__ = (
        UniqueConstraint("national_id", name="uq_owner_national_id"),
    )

    full_name: Mapped[str] = mapped_column(String(255), nullable=False)
    national_id: Mapped[str] = mapped_column(String(100), nullable=False)
    phone_number: Mapped[str] = mapped_column(String(50), nullable=False)
    tin_number: Mapped[str | None] = mapped_column(String(50), nullable=True)
    sub_city_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    is_deleted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    def to_dto(self):
        from landreg_modules.registry.models import Owner

        return Owner(
            id=self.id,
            full_name=self.full_name,
            national_id=self.national_id,
            phone_number=self.phone_number,
            tin_number=self.tin_number,
            sub_city_id=self.sub_city_id,
        )


class ParcelOwnerModel(TrackedBase):
    """
    Link between a parcel and one of its owners.

    Contract:
        An owner stops holding a parcel by retirement (``is_active`` False,
        ``retired_at`` set), never by deleting the link.
    """

    __tablename__ = "parcel_owners"

    __table_args__ = (
        Index("idx_parcel_owner_upin_active", "upin", "is_active"),
        Index("idx_parcel_owner_owner", "owner_id"),
    )

    upin: Mapped[str] = mapped_column(
        String(100), ForeignKey("land_parcels.upin"), nullable=False,
    )
    owner_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("owners.id"), nullable=False,
    )
    acquired_at: Mapped[date | None] = mapped_column(Date, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    retired_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )
    owner: Mapped["OwnerModel"] = relationship("OwnerModel", lazy="joined")


class OwnershipHistoryModel(TrackedBase):
    """One event in a parcel's chain of title."""

    __tablename__ = "ownership_history"

    __table_args__ = (
        Index("idx_ownership_history_upin", "upin", "transfer_date"),
    )

    upin: Mapped[str] = mapped_column(String(100), nullable=False)
    transfer_type: Mapped[str] = mapped_column(String(50), nullable=False)
    from_owner_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    to_owner_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    transfer_price: Mapped[Decimal | None] = mapped_column(nullable=True)
    reference_no: Mapped[str | None] = mapped_column(String(100), nullable=True)
    transfer_date: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False,
    )
    event_snapshot: Mapped[dict[str, Any]] = mapped_column(
        JSON, nullable=False, default=dict,
    )


# =============================================================================
# Encumbrance
# =============================================================================


class EncumbranceModel(TrackedBase):
    """
    A restriction registered against a parcel (mortgage, court order, ...).

    Guarantees:
        - ``reference_number`` is unique (uq_encumbrance_reference).
    """

    __tablename__ = "encumbrances"

    __table_args__ = (
        UniqueConstraint("reference_number", name="uq_encumbrance_reference"),
        Index("idx_encumbrance_upin_status", "upin", "status"),
    )

    upin: Mapped[str] = mapped_column(
        String(100), ForeignKey("land_parcels.upin"), nullable=False,
    )
    type: Mapped[str] = mapped_column(String(50), nullable=False)
    issuing_entity: Mapped[str] = mapped_column(String(255), nullable=False)
    reference_number: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="ACTIVE")
    registration_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    is_deleted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    def to_dto(self):
        from landreg_modules.registry.models import Encumbrance, EncumbranceStatus

        return Encumbrance(
            id=self.id,
            upin=self.upin,
            type=self.type,
            issuing_entity=self.issuing_entity,
            reference_number=self.reference_number,
            status=EncumbranceStatus(self.status),
            registration_date=self.registration_date,
        )
