"""
PeriodService -- the period directory the engine posts against.

Responsibility:
    Creates fiscal periods without overlap per organization, resolves the
    period enclosing a date, and closes periods.  Every posting, reversal
    and correction asks ``require_open_period`` before it mutates anything.

Architecture position:
    Kernel > Services.

Invariants enforced:
    - No two periods of one organization overlap (start1 <= end2 and
      start2 <= end1 is rejected).
    - Only OPEN periods accept postings.

Failure modes:
    - PeriodOverlapError on create.
    - PeriodNotFoundError when no period covers a date.
    - PeriodClosedError when the covering period is closed or locked.
"""

from datetime import date
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from ledger_kernel.domain.clock import Clock, SystemClock
from ledger_kernel.exceptions import (
    InvalidStateError,
    PeriodClosedError,
    PeriodNotFoundError,
    PeriodOverlapError,
    ValidationError,
)
from ledger_kernel.logging_config import get_logger
from ledger_kernel.models.fiscal_period import FiscalPeriod, PeriodStatus
from ledger_kernel.services.base import BaseService

logger = get_logger("services.period")


class PeriodService(BaseService[FiscalPeriod]):
    """Create, resolve and close fiscal periods for one session."""

    def __init__(self, session: Session, clock: Clock | None = None):
        super().__init__(session)
        self._clock = clock or SystemClock()

    def create_period(
        self,
        organization_id: UUID,
        period_code: str,
        start_date: date,
        end_date: date,
        actor_id: UUID,
        name: str | None = None,
        fiscal_year_id: UUID | None = None,
    ) -> FiscalPeriod:
        """
        Create an OPEN period.

        Raises:
            ValidationError: If start_date is after end_date.
            PeriodOverlapError: If the range overlaps an existing period of
                the organization.
        """
        if start_date > end_date:
            raise ValidationError(
                f"start_date ({start_date}) cannot be after end_date ({end_date})",
                field="start_date",
            )

        overlapping = self.session.execute(
            select(FiscalPeriod)
            .where(
                FiscalPeriod.organization_id == organization_id,
                FiscalPeriod.start_date <= end_date,
                FiscalPeriod.end_date >= start_date,
            )
            .limit(1)
        ).scalar_one_or_none()

        if overlapping is not None:
            raise PeriodOverlapError(
                new_period_code=period_code,
                existing_period_code=overlapping.period_code,
                overlap_start=str(max(start_date, overlapping.start_date)),
                overlap_end=str(min(end_date, overlapping.end_date)),
            )

        period = FiscalPeriod(
            organization_id=organization_id,
            period_code=period_code,
            name=name or period_code,
            fiscal_year_id=fiscal_year_id,
            start_date=start_date,
            end_date=end_date,
            status=PeriodStatus.OPEN,
            created_by_id=actor_id,
        )
        self.session.add(period)
        self.session.flush()

        logger.info(
            "period_created",
            extra={
                "organization_id": str(organization_id),
                "period_code": period_code,
                "start_date": str(start_date),
                "end_date": str(end_date),
            },
        )
        return period

    def find_period(self, organization_id: UUID, effective_date: date) -> FiscalPeriod | None:
        """The period covering ``effective_date``, or None."""
        return self.session.execute(
            select(FiscalPeriod).where(
                FiscalPeriod.organization_id == organization_id,
                FiscalPeriod.start_date <= effective_date,
                FiscalPeriod.end_date >= effective_date,
            )
        ).scalar_one_or_none()

    def require_open_period(self, organization_id: UUID, effective_date: date) -> FiscalPeriod:
        """
        Resolve the OPEN period covering ``effective_date``.

        Raises:
            PeriodNotFoundError: No period covers the date.
            PeriodClosedError: The covering period is closed or locked.
        """
        period = self.find_period(organization_id, effective_date)
        if period is None:
            raise PeriodNotFoundError(str(effective_date))
        if not period.is_open:
            raise PeriodClosedError(period.period_code, str(effective_date))
        return period

    def close_period(self, organization_id: UUID, period_code: str, actor_id: UUID) -> FiscalPeriod:
        """
        Close a period.  Later postings dated inside it fail with
        PeriodClosedError.

        Raises:
            PeriodNotFoundError: Unknown period code.
            InvalidStateError: The period is already closed.
        """
        period = self.session.execute(
            select(FiscalPeriod)
            .where(
                FiscalPeriod.organization_id == organization_id,
                FiscalPeriod.period_code == period_code,
            )
            .with_for_update()
        ).scalar_one_or_none()
        if period is None:
            raise PeriodNotFoundError(period_code)
        if period.is_closed:
            raise InvalidStateError(
                str(period.id),
                PeriodStatus(period.status).value,
                "close",
                message=f"Period {period_code} is already closed",
            )

        period.close(actor_id, self._clock.now())
        period.updated_by_id = actor_id
        self.session.flush()

        logger.info(
            "period_closed",
            extra={"organization_id": str(organization_id), "period_code": period_code},
        )
        return period
