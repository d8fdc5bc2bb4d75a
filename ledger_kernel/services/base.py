"""
BaseService -- shared constructor for write-side services.

Services receive a SQLAlchemy ``Session`` from the caller and persist with
``session.flush()``.  They never commit or roll back the caller's
transaction; atomic multi-step units use ``session.begin_nested()`` so a
failure unwinds only the unit itself.
"""

from abc import ABC
from typing import Generic, TypeVar

from sqlalchemy.orm import Session

from ledger_kernel.db.base import Base

ModelType = TypeVar("ModelType", bound=Base)


class BaseService(ABC, Generic[ModelType]):
    """
    Abstract base class for kernel services.

    Non-goals:
        - Transaction lifecycle (commit/rollback) belongs to the caller.
        - Read-only queries belong in ``ledger_kernel/selectors/``.
    """

    def __init__(self, session: Session):
        self.session = session
