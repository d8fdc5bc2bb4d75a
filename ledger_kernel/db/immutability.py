"""
ORM-level immutability enforcement for the ledger.

SQLAlchemy fires mapper events before UPDATE/DELETE statements reach the
database.  The listeners registered here inspect attribute history and
raise ImmutabilityViolationError before anything is written:

    session.flush()
         |
         v
    [before_update] --> _check_*_immutability() --> ImmutabilityViolationError
         |
    [before_delete] --> _check_*_delete() --------> ImmutabilityViolationError
         |
         v
    SQL sent to database (only if checks pass)

Protected entities:

Entity                       | When immutable                  | What may still change
-----------------------------|---------------------------------|------------------------------
JournalEntry                 | Once POSTED (and after)         | Reversal bookkeeping fields
JournalLine                  | Once the parent is POSTED       | Nothing
LedgerPosting                | Always                          | Nothing
Account                      | normal_balance, once posted to  | Everything else
WorkingTrialBalance (+ rows) | Once LOCKED                     | updated_at / updated_by_id

Usage:

    from ledger_kernel.db.immutability import register_immutability_listeners
    register_immutability_listeners()  # once at startup

Tests that need to write forbidden rows may call
unregister_immutability_listeners() and re-register afterwards.
"""

from sqlalchemy import event, inspect, text
from sqlalchemy.orm.attributes import get_history

from ledger_kernel.exceptions import ImmutabilityViolationError
from ledger_kernel.logging_config import get_logger

logger = get_logger("db.immutability")

_METADATA_FIELDS = frozenset({"updated_at", "updated_by_id"})


def _blocked(entity_type: str, entity_id, operation: str, reason: str, field: str | None = None):
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": entity_type,
            "entity_id": str(entity_id),
            "operation": operation,
            "field": field,
        },
    )
    raise ImmutabilityViolationError(
        entity_type=entity_type,
        entity_id=str(entity_id),
        reason=reason,
    )


def _status_before_flush(target) -> str | None:
    """Status value as it was in the database before the pending change."""
    history = get_history(target, "status")
    if history.deleted:
        value = history.deleted[0]
    elif history.unchanged:
        value = history.unchanged[0]
    else:
        return None
    return getattr(value, "value", value)


def _first_changed_field(target, allowed: frozenset[str]) -> str | None:
    for attr in inspect(target).attrs:
        if attr.key in allowed:
            continue
        if attr.history.has_changes():
            return attr.key
    return None


# ---------------------------------------------------------------------------
# Journal entries and lines
# ---------------------------------------------------------------------------

_FINAL_ENTRY_STATUSES = frozenset({"posted", "reversed"})


def _check_journal_entry_immutability(mapper, connection, target):
    """
    Block edits to a posted entry other than the reversal bookkeeping.

    The DRAFT -> POSTED transition itself is allowed: the prior status is
    draft, so the entry was not final before this flush.
    """
    from ledger_kernel.models.journal import REVERSAL_MUTABLE_FIELDS

    before = _status_before_flush(target)
    if before not in _FINAL_ENTRY_STATUSES:
        return

    after = getattr(target.status, "value", target.status)
    if after != before and (before, after) != ("posted", "reversed"):
        _blocked(
            "JournalEntry",
            target.id,
            "UPDATE",
            f"Cannot move journal entry from {before} to {after}",
            field="status",
        )

    field = _first_changed_field(target, REVERSAL_MUTABLE_FIELDS)
    if field is not None:
        _blocked(
            "JournalEntry",
            target.id,
            "UPDATE",
            f"Cannot modify field '{field}' on posted journal entry",
            field=field,
        )


def _check_journal_entry_delete(mapper, connection, target):
    if _status_before_flush(target) in _FINAL_ENTRY_STATUSES:
        _blocked(
            "JournalEntry",
            target.id,
            "DELETE",
            "Posted journal entries cannot be deleted",
        )


def _line_parent_is_final(connection, target) -> bool:
    entry = target.entry
    if entry is not None:
        return _status_before_flush(entry) in _FINAL_ENTRY_STATUSES
    status = connection.execute(
        text("SELECT status FROM journal_entries WHERE id = :id"),
        {"id": str(target.journal_entry_id)},
    ).scalar()
    return status in _FINAL_ENTRY_STATUSES


def _check_journal_line_immutability(mapper, connection, target):
    if _line_parent_is_final(connection, target):
        _blocked(
            "JournalLine",
            target.id,
            "UPDATE",
            "Journal lines cannot be modified after parent entry is posted",
        )


def _check_journal_line_delete(mapper, connection, target):
    if _line_parent_is_final(connection, target):
        _blocked(
            "JournalLine",
            target.id,
            "DELETE",
            "Journal lines cannot be deleted after parent entry is posted",
        )


# ---------------------------------------------------------------------------
# Ledger postings
# ---------------------------------------------------------------------------


def _check_ledger_posting_update(mapper, connection, target):
    _blocked(
        "LedgerPosting",
        target.id,
        "UPDATE",
        "Ledger postings are append-only",
    )


def _check_ledger_posting_delete(mapper, connection, target):
    _blocked(
        "LedgerPosting",
        target.id,
        "DELETE",
        "Ledger postings are append-only",
    )


# ---------------------------------------------------------------------------
# Accounts
# ---------------------------------------------------------------------------


def _account_has_postings(connection, account_id) -> bool:
    result = connection.execute(
        text("SELECT 1 FROM ledger_postings WHERE account_id = :id LIMIT 1"),
        {"id": str(account_id)},
    )
    return result.first() is not None


def _check_account_normal_balance(mapper, connection, target):
    """normal_balance decides closing-balance signs, so it freezes once used."""
    if not get_history(target, "normal_balance").has_changes():
        return
    if _account_has_postings(connection, target.id):
        _blocked(
            "Account",
            target.id,
            "UPDATE",
            f"Cannot change normal_balance of account {target.code}: ledger postings exist",
            field="normal_balance",
        )


# ---------------------------------------------------------------------------
# Working trial balances
# ---------------------------------------------------------------------------


def _workspace_status(connection, workspace_id) -> str | None:
    return connection.execute(
        text("SELECT status FROM working_trial_balances WHERE id = :id"),
        {"id": str(workspace_id)},
    ).scalar()


def _check_workspace_immutability(mapper, connection, target):
    if _status_before_flush(target) != "locked":
        return
    field = _first_changed_field(target, _METADATA_FIELDS)
    if field is not None:
        _blocked(
            "WorkingTrialBalance",
            target.id,
            "UPDATE",
            f"Cannot modify field '{field}' on locked workspace",
            field=field,
        )


def _check_workspace_delete(mapper, connection, target):
    if _status_before_flush(target) == "locked":
        _blocked(
            "WorkingTrialBalance",
            target.id,
            "DELETE",
            "Locked workspaces cannot be deleted",
        )


def _check_workspace_child(mapper, connection, target):
    """Lines and columns of a locked workspace are frozen."""
    if _workspace_status(connection, target.workspace_id) == "locked":
        _blocked(
            type(target).__name__,
            target.id,
            "WRITE",
            "Rows of a locked workspace cannot change",
        )


def _check_workspace_adjustment(mapper, connection, target):
    status = connection.execute(
        text(
            "SELECT w.status FROM working_trial_balances w "
            "JOIN wtb_adjustment_columns c ON c.workspace_id = w.id "
            "WHERE c.id = :id"
        ),
        {"id": str(target.column_id)},
    ).scalar()
    if status == "locked":
        _blocked(
            "WorkingTrialBalanceAdjustment",
            target.id,
            "WRITE",
            "Adjustments of a locked workspace cannot change",
        )


def _listeners():
    from ledger_kernel.models.account import Account
    from ledger_kernel.models.journal import JournalEntry, JournalLine
    from ledger_kernel.models.ledger import LedgerPosting
    from ledger_kernel.models.working_trial_balance import (
        AdjustmentColumn,
        WorkingTrialBalance,
        WorkingTrialBalanceAdjustment,
        WorkingTrialBalanceLine,
    )

    return [
        (JournalEntry, "before_update", _check_journal_entry_immutability),
        (JournalEntry, "before_delete", _check_journal_entry_delete),
        (JournalLine, "before_update", _check_journal_line_immutability),
        (JournalLine, "before_delete", _check_journal_line_delete),
        (LedgerPosting, "before_update", _check_ledger_posting_update),
        (LedgerPosting, "before_delete", _check_ledger_posting_delete),
        (Account, "before_update", _check_account_normal_balance),
        (WorkingTrialBalance, "before_update", _check_workspace_immutability),
        (WorkingTrialBalance, "before_delete", _check_workspace_delete),
        (WorkingTrialBalanceLine, "before_insert", _check_workspace_child),
        (WorkingTrialBalanceLine, "before_update", _check_workspace_child),
        (WorkingTrialBalanceLine, "before_delete", _check_workspace_child),
        (AdjustmentColumn, "before_insert", _check_workspace_child),
        (AdjustmentColumn, "before_update", _check_workspace_child),
        (AdjustmentColumn, "before_delete", _check_workspace_child),
        (WorkingTrialBalanceAdjustment, "before_insert", _check_workspace_adjustment),
        (WorkingTrialBalanceAdjustment, "before_update", _check_workspace_adjustment),
        (WorkingTrialBalanceAdjustment, "before_delete", _check_workspace_adjustment),
    ]


def register_immutability_listeners():
    """
    Register all immutability event listeners.

    Call after the models are importable and before any flush.  Safe to call
    more than once.
    """
    for target, event_name, listener_fn in _listeners():
        if not event.contains(target, event_name, listener_fn):
            event.listen(target, event_name, listener_fn)

    logger.info("immutability_listeners_registered")


def _safe_remove_listener(target, event_name, listener_fn):
    if event.contains(target, event_name, listener_fn):
        event.remove(target, event_name, listener_fn)


def unregister_immutability_listeners():
    """
    Remove the immutability listeners.

    Only for tests that must write forbidden rows deliberately.
    """
    for target, event_name, listener_fn in _listeners():
        _safe_remove_listener(target, event_name, listener_fn)
