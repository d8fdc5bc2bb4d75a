"""
Module: ledger_kernel.models.entry_number
Responsibility: Persistent counters behind entry numbers and workspace codes.
Architecture position: Kernel > Models.  Written only by
    services/entry_numbering_service.py.

Invariants enforced:
    - One counter row per (organization_id, prefix, year, month); month is 0
      for yearly-scoped counters.
    - current_value only increases within a committed history.  The
      increment is part of the caller's transaction, so a rolled-back
      posting returns its number and the scope stays gapless.
"""

from uuid import UUID

from sqlalchemy import Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from ledger_kernel.db.base import Base, UUIDString


class EntryNumberCounter(Base):
    """
    Counter row for one numbering scope.

    Contract: Incremented under a row lock (SELECT ... FOR UPDATE).
    """

    __tablename__ = "entry_number_counters"

    __table_args__ = (
        UniqueConstraint(
            "organization_id", "prefix", "year", "month",
            name="uq_counter_scope",
        ),
    )

    organization_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    prefix: Mapped[str] = mapped_column(String(10), nullable=False)

    year: Mapped[int] = mapped_column(Integer, nullable=False)

    # 0 for counters that reset yearly
    month: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    current_value: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    def __repr__(self) -> str:
        return f"<EntryNumberCounter {self.prefix}/{self.year}/{self.month}={self.current_value}>"
