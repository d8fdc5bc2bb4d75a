"""Audit forwarding: envelope contents and sink failure isolation."""

from datetime import date
from uuid import uuid4

from ledger_kernel.domain.collaborators import AuditSink
from ledger_kernel.domain.dtos import LineInput
from ledger_kernel.services.auditor_service import AuditAction, AuditorService, LoggingAuditSink
from ledger_kernel.services.journal_entry_service import JournalEntryService


class TestEnvelope:
    def test_envelope_wraps_details(self, auditor_service, audit_sink, deterministic_clock):
        org, actor, entity = uuid4(), uuid4(), uuid4()
        auditor_service.record(AuditAction.ENTRY_POSTED, "JournalEntry", entity, org, actor, {"entry_number": "JE/2024/01/0001"})

        record = audit_sink.records[0]
        assert record["entity_id"] == entity
        assert record["details"] == {
            "organization_id": str(org),
            "actor_id": str(actor),
            "recorded_at": deterministic_clock.now().isoformat(),
            "entry_number": "JE/2024/01/0001",
        }

    def test_logging_sink_is_default(self, captured_logs):
        AuditorService().record(AuditAction.WORKSPACE_LOCKED, "WorkingTrialBalance", uuid4(), uuid4(), uuid4())
        records = [r for r in captured_logs() if r["message"] == "audit_record"]
        assert records[0]["action"] == "working_trial_balance.locked"

    def test_logging_sink_satisfies_protocol(self):
        assert isinstance(LoggingAuditSink(), AuditSink)


class TestDegradedSink:
    def test_failing_sink_never_raises(self, failing_audit_sink, deterministic_clock, captured_logs):
        auditor = AuditorService(sink=failing_audit_sink, clock=deterministic_clock)
        auditor.record(AuditAction.ENTRY_CREATED, "JournalEntry", uuid4(), uuid4(), uuid4())

        assert auditor.degraded
        assert any(r["message"] == "audit_sink_degraded" for r in captured_logs())

    def test_posting_survives_failing_sink(
        self, session, deterministic_clock, policy, failing_audit_sink, standard_accounts, periods_2024, organization_id, test_actor_id
    ):
        auditor = AuditorService(sink=failing_audit_sink, clock=deterministic_clock)
        service = JournalEntryService(session, clock=deterministic_clock, policy=policy, auditor=auditor)
        entry = service.create_draft(
            organization_id,
            date(2024, 1, 5),
            [
                LineInput(account_id=standard_accounts["cash"].id, debit="10"),
                LineInput(account_id=standard_accounts["revenue"].id, credit="10"),
            ],
            test_actor_id,
        )
        posted = service.post(entry.id, test_actor_id)

        assert posted.is_posted
        assert auditor.degraded
