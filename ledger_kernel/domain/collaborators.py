"""
Narrow contracts for the engine's external collaborators.

The engine only ever calls ``record`` on an audit sink and ``send`` on a
notifier.  Both are fire-and-forget from the engine's point of view: a
failing collaborator is logged as degraded and never rolls back the
financial mutation that triggered it.
"""

from typing import Any, Protocol, runtime_checkable
from uuid import UUID


@runtime_checkable
class AuditSink(Protocol):
    """Receives one record per significant state change."""

    def record(
        self,
        action: str,
        entity_type: str,
        entity_id: UUID,
        details: dict[str, Any],
    ) -> None:
        ...


@runtime_checkable
class Notifier(Protocol):
    """Delivers a notification of ``notification_type`` to recipients."""

    def send(
        self,
        notification_type: str,
        recipients: list[UUID],
        data: dict[str, Any],
    ) -> None:
        ...
