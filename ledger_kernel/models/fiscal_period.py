"""
Module: ledger_kernel.models.fiscal_period
Responsibility: ORM persistence for fiscal periods -- the date ranges that
    accept postings, per organization.
Architecture position: Kernel > Models.  May import from db/ only.

Invariants enforced:
    - Periods of one organization never overlap (checked by PeriodService).
    - No entry may be posted or reversed into a CLOSED or LOCKED period.
"""

from datetime import date, datetime
from enum import Enum
from uuid import UUID

from sqlalchemy import Date, DateTime, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from ledger_kernel.db.base import TrackedBase, UUIDString


class PeriodStatus(str, Enum):
    """Lifecycle status of a fiscal period.

    Contract: OPEN -> CLOSED -> LOCKED.
    """

    OPEN = "open"
    CLOSED = "closed"
    LOCKED = "locked"


class FiscalPeriod(TrackedBase):
    """
    Fiscal period for posting control.

    Guarantees:
        - period_code is unique per organization.
        - close() requires an explicit actor and clock-injected timestamp.
    """

    __tablename__ = "fiscal_periods"

    __table_args__ = (
        UniqueConstraint("organization_id", "period_code", name="uq_period_org_code"),
        Index("idx_period_org_dates", "organization_id", "start_date", "end_date"),
    )

    organization_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    # e.g. "2024-01", "2024-Q1"
    period_code: Mapped[str] = mapped_column(String(20), nullable=False)

    name: Mapped[str] = mapped_column(String(100), nullable=False)

    fiscal_year_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    # Inclusive boundaries
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date] = mapped_column(Date, nullable=False)

    status: Mapped[PeriodStatus] = mapped_column(
        String(20),
        default=PeriodStatus.OPEN,
        nullable=False,
    )

    closed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    closed_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    def __repr__(self) -> str:
        return f"<FiscalPeriod {self.period_code}: {self.status}>"

    @property
    def is_open(self) -> bool:
        return self.status == PeriodStatus.OPEN

    @property
    def is_closed(self) -> bool:
        """Check if period is closed or locked."""
        return self.status in (PeriodStatus.CLOSED, PeriodStatus.LOCKED)

    def contains_date(self, check_date: date) -> bool:
        return self.start_date <= check_date <= self.end_date

    def close(self, actor_id: UUID, closed_at: datetime) -> None:
        """Close the period.

        Raises: ValueError if the period is already closed.
        """
        if self.is_closed:
            raise ValueError(f"Period {self.period_code} is already closed")
        self.status = PeriodStatus.CLOSED
        self.closed_at = closed_at
        self.closed_by_id = actor_id
