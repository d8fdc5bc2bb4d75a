"""
Typed exception hierarchy for the ledger kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Callers must be able to react to a rejection without parsing its message.
Every error therefore:
  1. Has its own class (catch by type, not by message).
  2. Carries a class-level ``code`` (machine-readable, API-safe).
  3. Stores its context as attributes (entry id, expected vs. actual totals,
     offending account), so it can be rendered as an actionable message
     without re-deriving the cause.

Example:
    try:
        entries.post(entry_id, actor_id)
    except PeriodClosedError as e:
        api_response(code=e.code, period=e.period_code, date=e.effective_date)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    LedgerKernelError (base)
    |
    +-- ValidationError               -- rejected before any mutation
    |   +-- UnbalancedEntryError
    |   +-- DateOrderError
    |   +-- InvalidCurrencyError
    |   +-- AccountError
    |   |   +-- AccountNotFoundError
    |   |   +-- AccountInactiveError
    |   |   +-- AccountNotPostableError
    |   |   +-- AccountHierarchyCycleError
    |   +-- PeriodError
    |       +-- PeriodNotFoundError
    |       +-- PeriodClosedError
    |       +-- PeriodOverlapError
    |
    +-- InvalidStateError             -- operation illegal for current status
    |   +-- AlreadyPostedError
    |   +-- AlreadyReversedError
    |   +-- EntryNotPostedError
    |   +-- LockedWorkspaceError
    |   +-- UnbalancedWorkspaceError
    |
    +-- NotFoundError
    |   +-- EntryNotFoundError
    |   +-- WorkspaceNotFoundError
    |   +-- AdjustmentColumnNotFoundError
    |
    +-- LedgerIntegrityError          -- NOT locally recoverable
        +-- ImbalanceError
        +-- ImmutabilityViolationError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category    | Code                        | When Raised
------------|-----------------------------|-------------------------------------
Validation  | VALIDATION_ERROR            | Malformed input (line shape, counts)
            | UNBALANCED_ENTRY            | Debits != credits beyond tolerance
            | DATE_ORDER                  | Reversal/auto-reverse date too early
            | INVALID_CURRENCY            | Not an ISO 4217 code
            | ACCOUNT_NOT_FOUND           | Unknown account for the organization
            | ACCOUNT_INACTIVE            | Account is deactivated
            | ACCOUNT_NOT_POSTABLE        | Header/summary account
            | ACCOUNT_HIERARCHY_CYCLE     | Parent references form a cycle
            | PERIOD_NOT_FOUND            | No period covers the date
            | PERIOD_CLOSED               | Date falls in a closed period
            | PERIOD_OVERLAP              | New period overlaps an existing one
------------|-----------------------------|-------------------------------------
State       | INVALID_STATE               | Generic illegal transition
            | ALREADY_POSTED              | Posting a posted entry
            | ALREADY_REVERSED            | Reversing a reversed entry/mirror
            | ENTRY_NOT_POSTED            | Reversing/scheduling a draft
            | WORKSPACE_LOCKED            | Mutating a locked workspace
            | WORKSPACE_UNBALANCED        | Locking with unequal adjusted totals
------------|-----------------------------|-------------------------------------
Lookup      | ENTRY_NOT_FOUND             | Unknown journal entry id
            | WORKSPACE_NOT_FOUND         | Unknown working trial balance id
            | ADJUSTMENT_COLUMN_NOT_FOUND | Column not in the workspace
------------|-----------------------------|-------------------------------------
Integrity   | LEDGER_IMBALANCE            | Ledger debits != credits
            | IMMUTABILITY_VIOLATION      | Write to a frozen record

===============================================================================
PROPAGATION
===============================================================================

ValidationError and InvalidStateError are synchronous and recoverable by the
caller (fix input, retry).  LedgerIntegrityError means an atomicity guarantee
was violated elsewhere; it is logged at ERROR and must reach an operator.
"""


class LedgerKernelError(Exception):
    """
    Base exception for all ledger kernel errors.

    All subclasses carry a ``code`` class attribute for machine-readable
    error identification.
    """

    code: str = "LEDGER_KERNEL_ERROR"


# Validation errors


class ValidationError(LedgerKernelError):
    """Input rejected before any mutation was attempted."""

    code: str = "VALIDATION_ERROR"

    def __init__(
        self,
        message: str,
        *,
        field: str | None = None,
        line_no: int | None = None,
        entry_id: str | None = None,
    ):
        self.field = field
        self.line_no = line_no
        self.entry_id = entry_id
        super().__init__(message)


class UnbalancedEntryError(ValidationError):
    """Journal entry debits do not equal credits."""

    code: str = "UNBALANCED_ENTRY"

    def __init__(
        self,
        debits: str,
        credits: str,
        currency: str,
        entry_id: str | None = None,
    ):
        self.debits = debits
        self.credits = credits
        self.currency = currency
        super().__init__(
            f"Unbalanced entry in {currency}: debits={debits}, credits={credits}",
            entry_id=entry_id,
        )


class DateOrderError(ValidationError):
    """Requested date precedes the source entry's date."""

    code: str = "DATE_ORDER"

    def __init__(self, entry_id: str, source_date: str, requested_date: str, operation: str):
        self.source_date = source_date
        self.requested_date = requested_date
        self.operation = operation
        super().__init__(
            f"Cannot {operation} entry {entry_id} on {requested_date}: "
            f"entry is dated {source_date}",
            entry_id=entry_id,
        )


class InvalidCurrencyError(ValidationError):
    """Currency code is not a recognized ISO 4217 code."""

    code: str = "INVALID_CURRENCY"

    def __init__(self, currency: str):
        self.currency = currency
        super().__init__(f"Invalid ISO 4217 currency code: '{currency}'", field="currency")


class AccountError(ValidationError):
    """Base exception for account-related rejections."""

    code: str = "ACCOUNT_ERROR"


class AccountNotFoundError(AccountError):
    """Account does not exist in the organization."""

    code: str = "ACCOUNT_NOT_FOUND"

    def __init__(self, account_id: str, line_no: int | None = None):
        self.account_id = account_id
        super().__init__(f"Account not found: {account_id}", line_no=line_no)


class AccountInactiveError(AccountError):
    """Account is deactivated and cannot receive postings."""

    code: str = "ACCOUNT_INACTIVE"

    def __init__(self, account_id: str, account_code: str, line_no: int | None = None):
        self.account_id = account_id
        self.account_code = account_code
        super().__init__(
            f"Account {account_code} is inactive and cannot be posted to",
            line_no=line_no,
        )


class AccountNotPostableError(AccountError):
    """Account does not allow direct postings (summary/header account)."""

    code: str = "ACCOUNT_NOT_POSTABLE"

    def __init__(self, account_id: str, account_code: str, line_no: int | None = None):
        self.account_id = account_id
        self.account_code = account_code
        super().__init__(
            f"Account {account_code} does not allow direct postings",
            line_no=line_no,
        )


class AccountHierarchyCycleError(AccountError):
    """Parent references of the chart of accounts form a cycle."""

    code: str = "ACCOUNT_HIERARCHY_CYCLE"

    def __init__(self, account_codes: list[str]):
        self.account_codes = account_codes
        super().__init__(
            "Account hierarchy contains a cycle: " + " -> ".join(account_codes)
        )


class PeriodError(ValidationError):
    """Base exception for period-related rejections."""

    code: str = "PERIOD_ERROR"


class PeriodNotFoundError(PeriodError):
    """No fiscal period covers the date."""

    code: str = "PERIOD_NOT_FOUND"

    def __init__(self, effective_date: str):
        self.effective_date = effective_date
        super().__init__(f"No fiscal period found for date: {effective_date}")


class PeriodClosedError(PeriodError):
    """Target date falls in a closed period."""

    code: str = "PERIOD_CLOSED"

    def __init__(self, period_code: str, effective_date: str):
        self.period_code = period_code
        self.effective_date = effective_date
        super().__init__(
            f"Cannot post to closed period {period_code} "
            f"(effective_date: {effective_date})"
        )


class PeriodOverlapError(PeriodError):
    """New period's date range overlaps an existing period."""

    code: str = "PERIOD_OVERLAP"

    def __init__(
        self,
        new_period_code: str,
        existing_period_code: str,
        overlap_start: str,
        overlap_end: str,
    ):
        self.new_period_code = new_period_code
        self.existing_period_code = existing_period_code
        self.overlap_start = overlap_start
        self.overlap_end = overlap_end
        super().__init__(
            f"Period {new_period_code} overlaps {existing_period_code} "
            f"from {overlap_start} to {overlap_end}"
        )


# State errors


class InvalidStateError(LedgerKernelError):
    """Operation is illegal for the entity's current status."""

    code: str = "INVALID_STATE"

    def __init__(self, entity_id: str, status: str, operation: str, message: str | None = None):
        self.entity_id = entity_id
        self.status = status
        self.operation = operation
        super().__init__(
            message or f"Cannot {operation} {entity_id}: status is {status}"
        )


class AlreadyPostedError(InvalidStateError):
    """Entry has already been posted."""

    code: str = "ALREADY_POSTED"

    def __init__(self, entry_id: str, entry_number: str | None):
        self.entry_number = entry_number
        super().__init__(
            entry_id,
            "posted",
            "post",
            f"Entry {entry_id} is already posted as {entry_number}",
        )


class AlreadyReversedError(InvalidStateError):
    """Entry was already reversed, or is itself a reversal."""

    code: str = "ALREADY_REVERSED"

    def __init__(self, entry_id: str, linked_entry_id: str | None):
        self.linked_entry_id = linked_entry_id
        super().__init__(
            entry_id,
            "reversed",
            "reverse",
            f"Entry {entry_id} is already linked to reversal {linked_entry_id}",
        )


class EntryNotPostedError(InvalidStateError):
    """Operation requires a posted entry."""

    code: str = "ENTRY_NOT_POSTED"

    def __init__(self, entry_id: str, status: str, operation: str = "reverse"):
        super().__init__(
            entry_id,
            status,
            operation,
            f"Cannot {operation} entry {entry_id}: status is {status}, not posted",
        )


class LockedWorkspaceError(InvalidStateError):
    """Working trial balance is locked and immutable."""

    code: str = "WORKSPACE_LOCKED"

    def __init__(self, workspace_id: str, operation: str):
        super().__init__(
            workspace_id,
            "locked",
            operation,
            f"Cannot {operation}: working trial balance {workspace_id} is locked",
        )


class UnbalancedWorkspaceError(InvalidStateError):
    """Adjusted debit and credit totals disagree."""

    code: str = "WORKSPACE_UNBALANCED"

    def __init__(self, workspace_id: str, adjusted_debit: str, adjusted_credit: str):
        self.adjusted_debit = adjusted_debit
        self.adjusted_credit = adjusted_credit
        super().__init__(
            workspace_id,
            "draft",
            "lock",
            f"Cannot lock working trial balance {workspace_id}: "
            f"adjusted debit {adjusted_debit} != adjusted credit {adjusted_credit}",
        )


# Lookup errors


class NotFoundError(LedgerKernelError):
    """Base exception for unknown identifiers."""

    code: str = "NOT_FOUND"


class EntryNotFoundError(NotFoundError):
    """Journal entry with the given id does not exist."""

    code: str = "ENTRY_NOT_FOUND"

    def __init__(self, entry_id: str):
        self.entry_id = entry_id
        super().__init__(f"Journal entry not found: {entry_id}")


class WorkspaceNotFoundError(NotFoundError):
    """Working trial balance with the given id does not exist."""

    code: str = "WORKSPACE_NOT_FOUND"

    def __init__(self, workspace_id: str):
        self.workspace_id = workspace_id
        super().__init__(f"Working trial balance not found: {workspace_id}")


class AdjustmentColumnNotFoundError(NotFoundError):
    """Adjustment column does not belong to the workspace."""

    code: str = "ADJUSTMENT_COLUMN_NOT_FOUND"

    def __init__(self, workspace_id: str, column_id: str):
        self.workspace_id = workspace_id
        self.column_id = column_id
        super().__init__(
            f"Adjustment column {column_id} not found in working trial balance {workspace_id}"
        )


# Integrity errors


class LedgerIntegrityError(LedgerKernelError):
    """Base exception for ledger consistency failures."""

    code: str = "LEDGER_INTEGRITY_ERROR"


class ImbalanceError(LedgerIntegrityError):
    """Ledger-wide debits do not equal credits."""

    code: str = "LEDGER_IMBALANCE"

    def __init__(self, organization_id: str, as_of_date: str, total_debit: str, total_credit: str):
        self.organization_id = organization_id
        self.as_of_date = as_of_date
        self.total_debit = total_debit
        self.total_credit = total_credit
        super().__init__(
            f"Ledger for organization {organization_id} is out of balance as of "
            f"{as_of_date}: debits={total_debit}, credits={total_credit}"
        )


class ImmutabilityViolationError(LedgerIntegrityError):
    """Attempted to modify or delete an immutable record."""

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )
