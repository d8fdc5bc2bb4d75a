"""
Module: ledger_kernel.selectors.base
Responsibility: Base class for read-only query selectors.
Architecture position: Kernel > Selectors.  May import from db/, models/ and
    domain/.  MUST NOT import from services/.

Invariants enforced:
    - Selectors never call session.add(), delete(), flush() or commit().
    - Results are frozen DTOs from ledger_kernel.domain.dtos, not ORM rows,
      except where a method is documented to return the entity itself.
"""

from abc import ABC
from typing import Generic, TypeVar

from sqlalchemy.orm import Session

from ledger_kernel.db.base import Base

ModelType = TypeVar("ModelType", bound=Base)


class BaseSelector(ABC, Generic[ModelType]):
    """
    Abstract base class for selectors.

    The caller owns the session and its transaction scope; selectors only
    read through it.
    """

    def __init__(self, session: Session):
        self.session = session
