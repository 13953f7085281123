from __future__ import annotations

import asyncio
import sys
from pathlib import Path

import pytest

sys.path.append(str(Path(__file__).resolve().parents[1]))

from troflow.application.workflow import MutationGuard, TROWorkflowEngine
from troflow.domain.errors import WorkflowError, WorkflowErrorCode
from troflow.domain.workflow import FormStatus, FormType, PacketConfig, PacketType, Workflow, WorkflowState
from troflow.infrastructure.notify import CollectingNotifier
from troflow.infrastructure.stores import (
    InMemoryDocumentStore,
    InMemoryVaultStore,
    InMemoryWorkflowStore,
    PermissionDeniedError,
    StoreError,
)

DV100 = {
    "protectedPersonName": "Jane Doe",
    "restrainedPersonName": "John Doe",
    "relationship": "spouse",
    "abuseDescription": "On several occasions the respondent threatened and pushed me in our kitchen.",
    "ordersRequested": ["stay_away"],
    "signatureDate": "2025-01-15",
    "signature": "Jane Doe",
    "physicalAbuse": True,
    "stayAwayOrders": True,
    "caseNumber": "FL-2025-001",
    "county": "Los Angeles",
}

CLETS = {
    "protectedPersonName": "Jane Doe",
    "protectedPersonAddress": "1 Main St",
    "protectedPersonCity": "Los Angeles",
    "protectedPersonState": "CA",
    "protectedPersonZip": "90012",
    "protectedPersonDOB": "1990-05-01",
    "protectedPersonGender": "F",
    "protectedPersonRace": "W",
    "restrainedPersonName": "John Doe",
    "restrainedPersonDOB": "1988-02-03",
    "restrainedPersonGender": "M",
    "lawEnforcementAgency": "LAPD",
    "caseNumber": "FL-2025-001",
    "county": "Los Angeles",
}


class FlakyWorkflowStore(InMemoryWorkflowStore):
    """Workflow store whose updates can be switched to fail."""

    def __init__(self) -> None:
        super().__init__()
        self.fail_updates = False

    async def update(self, workflow_id, changes):
        if self.fail_updates:
            raise StoreError("database unavailable")
        return await super().update(workflow_id, changes)


class SlowWorkflowStore(InMemoryWorkflowStore):
    def __init__(self, delay: float) -> None:
        super().__init__()
        self.delay = delay

    async def update(self, workflow_id, changes):
        await asyncio.sleep(self.delay)
        return await super().update(workflow_id, changes)


def _engine(workflow_store=None, **kwargs) -> TROWorkflowEngine:
    kwargs.setdefault("document_store", InMemoryDocumentStore())
    kwargs.setdefault("vault_store", InMemoryVaultStore())
    kwargs.setdefault("notifier", CollectingNotifier())
    kwargs.setdefault("guard", MutationGuard())
    return TROWorkflowEngine(
        "user-1",
        workflow_store=workflow_store or InMemoryWorkflowStore(),
        **kwargs,
    )


def test_start_workflow_derives_statuses_from_config():
    async def scenario():
        engine = _engine()
        workflow = await engine.start_workflow(
            PacketType.INITIATING_NO_CHILDREN, PacketConfig(requesting_child_support=True)
        )
        return engine, workflow

    engine, workflow = asyncio.run(scenario())
    assert workflow.id
    assert workflow.current_state is WorkflowState.DV100_IN_PROGRESS
    assert workflow.form_statuses == {
        FormType.DV100: FormStatus.NOT_STARTED,
        FormType.CLETS001: FormStatus.NOT_STARTED,
        FormType.FL150: FormStatus.NOT_STARTED,
        FormType.DV101: FormStatus.SKIPPED,
    }
    # DV-100 30 + CLETS 10 + FL-150 45
    assert workflow.metadata.estimated_time_remaining == 85
    assert engine.get_current_form() is FormType.DV100
    assert engine.get_next_form() is FormType.CLETS001
    assert engine.get_previous_form() is None


def test_load_round_trips_and_reports_missing():
    async def scenario():
        store = InMemoryWorkflowStore()
        first = _engine(store)
        created = await first.start_workflow(PacketType.RESPONSE)

        second = _engine(store)
        loaded = await second.load_workflow(created.id)

        stranger = TROWorkflowEngine(
            "someone-else", workflow_store=store, document_store=InMemoryDocumentStore()
        )
        with pytest.raises(WorkflowError) as excinfo:
            await stranger.load_workflow(created.id)
        return created, loaded, excinfo.value

    created, loaded, error = asyncio.run(scenario())
    assert loaded.current_state is WorkflowState.DV120_IN_PROGRESS
    assert loaded.form_statuses == created.form_statuses
    assert error.code is WorkflowErrorCode.LOAD_FAILED
    assert not error.retryable


def test_forward_walk_through_initiating_packet():
    async def scenario():
        engine = _engine()
        await engine.start_workflow(PacketType.INITIATING_NO_CHILDREN)

        with pytest.raises(WorkflowError) as excinfo:
            await engine.transition_to_next_form()
        assert excinfo.value.code is WorkflowErrorCode.INVALID_TRANSITION
        assert engine.workflow.current_state is WorkflowState.DV100_IN_PROGRESS

        await engine.update_form_status(FormType.DV100, FormStatus.COMPLETE)
        assert engine.can_transition_to_next_form()
        await engine.transition_to_next_form()
        assert engine.workflow.current_state is WorkflowState.CLETS_IN_PROGRESS

        await engine.update_form_status(FormType.CLETS001, FormStatus.COMPLETE)
        # FL-150 and DV-101 are skipped without support or extra space
        await engine.transition_to_next_form()
        return engine

    engine = asyncio.run(scenario())
    assert engine.workflow.current_state is WorkflowState.REVIEW_IN_PROGRESS
    assert engine.get_packet_completion_percentage() == 100


def test_previous_skips_skipped_forms():
    async def scenario():
        engine = _engine()
        await engine.start_workflow(
            PacketType.INITIATING_WITH_CHILDREN, PacketConfig(has_children=True, need_more_space=True)
        )
        for form_type in (FormType.DV100, FormType.CLETS001, FormType.DV105):
            await engine.update_form_status(form_type, FormStatus.COMPLETE)
        await engine.jump_to_form(FormType.DV101)
        assert engine.get_previous_form() is FormType.DV105
        await engine.transition_to_previous_form()
        return engine

    engine = asyncio.run(scenario())
    assert engine.workflow.current_state is WorkflowState.DV105_IN_PROGRESS
    assert engine.can_transition_to_previous_form()


def test_jump_rules():
    async def scenario():
        engine = _engine()
        await engine.start_workflow(PacketType.INITIATING_NO_CHILDREN)

        with pytest.raises(WorkflowError) as blocked:
            await engine.jump_to_form(FormType.CLETS001)
        with pytest.raises(WorkflowError) as foreign:
            await engine.jump_to_form(FormType.DV120)

        await engine.update_form_status(FormType.DV100, FormStatus.VALIDATED)
        await engine.jump_to_form(FormType.CLETS001)
        return engine, blocked.value, foreign.value

    engine, blocked, foreign = asyncio.run(scenario())
    assert blocked.code is WorkflowErrorCode.MISSING_DEPENDENCY
    assert blocked.context["unmet"] == ["DV-100"]
    assert "DV-100" in blocked.message
    assert foreign.code is WorkflowErrorCode.INVALID_TRANSITION
    assert engine.workflow.current_state is WorkflowState.CLETS_IN_PROGRESS


def test_config_change_never_downgrades_finished_forms():
    async def scenario():
        engine = _engine()
        await engine.start_workflow(PacketType.INITIATING_NO_CHILDREN)
        assert engine.workflow.form_statuses[FormType.FL150] is FormStatus.SKIPPED

        await engine.update_packet_config(requesting_spousal_support=True)
        assert engine.workflow.form_statuses[FormType.FL150] is FormStatus.NOT_STARTED
        assert engine.workflow.metadata.estimated_time_remaining == 30 + 10 + 45

        await engine.update_form_status(FormType.FL150, FormStatus.COMPLETE)
        await engine.update_packet_config({"requesting_spousal_support": False, "need_more_space": True})

        with pytest.raises(WorkflowError) as excinfo:
            await engine.update_packet_config(favourite_colour="blue")
        return engine, excinfo.value

    engine, error = asyncio.run(scenario())
    statuses = engine.workflow.form_statuses
    assert statuses[FormType.FL150] is FormStatus.COMPLETE
    assert statuses[FormType.DV101] is FormStatus.NOT_STARTED
    assert error.code is WorkflowErrorCode.VALIDATION_FAILED


def test_complete_requires_valid_packet():
    async def scenario():
        notifier = CollectingNotifier()
        engine = _engine(notifier=notifier)
        await engine.start_workflow(PacketType.INITIATING_NO_CHILDREN)
        await engine.save_form_data(FormType.DV100, DV100)
        await engine.update_form_status(FormType.DV100, FormStatus.COMPLETE)

        with pytest.raises(WorkflowError) as excinfo:
            await engine.complete_workflow()
        assert engine.workflow.current_state is WorkflowState.DV100_IN_PROGRESS

        await engine.save_form_data(FormType.CLETS001, CLETS)
        await engine.update_form_status(FormType.CLETS001, FormStatus.COMPLETE)
        await engine.complete_workflow()
        await engine.mark_filed()
        return engine, excinfo.value, notifier

    engine, error, notifier = asyncio.run(scenario())
    assert error.code is WorkflowErrorCode.VALIDATION_FAILED
    codes = [item["code"] for item in error.context["validation_errors"]]
    assert codes == ["INCOMPLETE_FORM"]
    assert engine.workflow.current_state is WorkflowState.FILED
    assert engine.workflow.metadata.completion_percentage == 100
    assert any(item.title == "Workflow Complete" for item in notifier.items)


def test_filing_requires_ready_state():
    async def scenario():
        engine = _engine()
        await engine.start_workflow(PacketType.MODIFICATION)
        with pytest.raises(WorkflowError) as excinfo:
            await engine.mark_filed()
        return excinfo.value

    assert asyncio.run(scenario()).code is WorkflowErrorCode.INVALID_TRANSITION


def test_reset_is_idempotent():
    async def scenario():
        engine = _engine()
        await engine.start_workflow(PacketType.RESPONSE)
        workflow_id = engine.workflow.id
        await engine.reset_workflow()
        first = engine.workflow.to_record()
        await engine.reset_workflow()
        second = engine.workflow.to_record()
        return workflow_id, engine, first, second

    workflow_id, engine, first, second = asyncio.run(scenario())
    assert engine.workflow.id == workflow_id
    assert engine.workflow.current_state is WorkflowState.PACKET_TYPE_SELECTION
    assert engine.workflow.form_statuses == {}
    assert first["current_state"] == second["current_state"]
    assert first["form_statuses"] == second["form_statuses"] == {}


def test_store_failure_leaves_memory_untouched():
    async def scenario():
        store = FlakyWorkflowStore()
        engine = _engine(store)
        await engine.start_workflow(PacketType.INITIATING_NO_CHILDREN)
        before = engine.workflow.to_record()

        store.fail_updates = True
        with pytest.raises(WorkflowError) as excinfo:
            await engine.update_form_status(FormType.DV100, FormStatus.COMPLETE)
        return engine, before, excinfo.value

    engine, before, error = asyncio.run(scenario())
    assert error.code is WorkflowErrorCode.SAVE_FAILED
    assert error.retryable
    assert engine.workflow.to_record() == before
    assert engine.error is error


def test_concurrent_mutations_are_single_flight():
    async def scenario():
        engine = _engine(SlowWorkflowStore(delay=0.05))
        await engine.start_workflow(PacketType.INITIATING_NO_CHILDREN)
        await engine.update_form_status(FormType.DV100, FormStatus.COMPLETE)
        results = await asyncio.gather(
            engine.transition_to_next_form(),
            engine.jump_to_form(FormType.DV100),
            return_exceptions=True,
        )
        return engine, results

    engine, results = asyncio.run(scenario())
    assert results[0] is None
    assert isinstance(results[1], WorkflowError)
    assert results[1].code is WorkflowErrorCode.DATA_CONFLICT
    assert engine.workflow.current_state is WorkflowState.CLETS_IN_PROGRESS


def test_form_data_and_autofill():
    async def scenario():
        documents = InMemoryDocumentStore()
        vault = InMemoryVaultStore()
        await vault.put("user-1", {"full_name": "Jane Q. Doe", "city": "Pasadena"})
        engine = _engine(document_store=documents, vault_store=vault)
        await engine.start_workflow(PacketType.INITIATING_NO_CHILDREN)

        assert await engine.get_form_data(FormType.DV100) is None
        document_id = await engine.save_form_data(FormType.DV100, DV100)
        again = await engine.save_form_data(FormType.DV100, {**DV100, "county": "Orange"})
        stored = await documents.get(document_id)

        await engine.update_form_status(FormType.DV100, FormStatus.COMPLETE)
        previous = await engine.autofill_form_from_previous(FormType.CLETS001)
        from_vault = await engine.autofill_form_from_vault(FormType.CLETS001)
        both = await engine.autofill_form(FormType.CLETS001)
        return engine, document_id, again, stored, previous, from_vault, both

    engine, document_id, again, stored, previous, from_vault, both = asyncio.run(scenario())
    assert again == document_id
    assert engine.workflow.form_data_refs == {FormType.DV100: document_id}
    assert stored["title"] == "DV-100 Form"
    assert stored["content"]["county"] == "Orange"
    assert previous.fields["protectedPersonName"] == "Jane Doe"
    assert previous.fields["county"] == "Orange"
    assert from_vault.fields == {"partyName": "Jane Q. Doe", "city": "Pasadena"}
    assert both.source == "both"
    assert both.fields["protectedPersonName"] == "Jane Doe"
    assert both.fields["city"] == "Pasadena"


def test_validate_form_without_data():
    async def scenario():
        engine = _engine()
        await engine.start_workflow(PacketType.INITIATING_NO_CHILDREN)
        return await engine.validate_current_form()

    result = asyncio.run(scenario())
    assert not result.valid
    assert result.errors[0].code == "FORM_NOT_FOUND"


def test_queries_without_workflow_are_safe():
    engine = _engine()
    assert engine.get_current_form() is None
    assert engine.get_next_form() is None
    assert engine.get_required_forms() == []
    assert engine.get_packet_completion_percentage() == 0
    assert engine.get_estimated_time_remaining() == 0
    assert engine.get_form_steps() == []
    assert not engine.are_dependencies_met(FormType.DV100)
    assert asyncio.run(engine.update_form_status(FormType.DV100, FormStatus.COMPLETE)) is None


def test_progress_queries():
    async def scenario():
        engine = _engine()
        await engine.start_workflow(
            PacketType.INITIATING_WITH_CHILDREN, PacketConfig(has_children=True)
        )
        await engine.update_form_status(FormType.DV100, FormStatus.COMPLETE)
        await engine.update_form_status(FormType.CLETS001, FormStatus.IN_PROGRESS)
        return engine

    engine = asyncio.run(scenario())
    # (100 + 50 + 0) / 3
    assert engine.get_packet_completion_percentage() == 50
    assert engine.get_form_completion_percentage(FormType.CLETS001) == 50
    # current form is DV-100 (done), so CLETS 10 + DV-105 20 remain
    assert engine.get_estimated_time_remaining() == 30
    steps = engine.get_form_steps()
    assert [step.form_type for step in steps] == [FormType.DV100, FormType.CLETS001, FormType.DV105]
    assert steps[2].dependencies == [FormType.DV100]
    assert engine.get_unmet_dependencies(FormType.DV105) == []


class RefusingWorkflowStore(InMemoryWorkflowStore):
    """Workflow store that lets rows be created but refuses every change."""

    async def update(self, workflow_id, changes):
        raise PermissionDeniedError("tro_workflows: access denied (403)")


def test_refused_write_is_a_permission_error():
    async def scenario():
        engine = _engine(RefusingWorkflowStore())
        await engine.start_workflow(PacketType.INITIATING_NO_CHILDREN)
        with pytest.raises(WorkflowError) as excinfo:
            await engine.update_form_status(FormType.DV100, FormStatus.IN_PROGRESS)
        return engine, excinfo.value

    engine, error = asyncio.run(scenario())
    assert error.code is WorkflowErrorCode.PERMISSION_DENIED
    assert not error.retryable
    assert error.message == "Failed to save workflow: permission denied"
    assert engine.workflow.status_of(FormType.DV100) is FormStatus.NOT_STARTED


def test_record_timestamps_with_short_fractions():
    record = {
        "id": "wf-1",
        "user_id": "user-1",
        "packet_type": "response",
        "current_state": "dv120_progress",
        "created_at": "2025-03-09T10:15:30.12+00:00",
        "updated_at": "2025-03-09T10:15:30.1234567Z",
    }
    workflow = Workflow.from_record(record)
    assert workflow.created_at.microsecond == 120000
    assert workflow.updated_at.microsecond == 123456
    assert workflow.updated_at.utcoffset().total_seconds() == 0


def test_malformed_row_is_a_load_failure():
    async def scenario():
        store = InMemoryWorkflowStore()
        row = await store.insert({"user_id": "user-1", "packet_type": "custody", "current_state": "not_started"})
        engine = _engine(store)
        with pytest.raises(WorkflowError) as excinfo:
            await engine.load_workflow(row["id"])
        return engine, excinfo.value

    engine, error = asyncio.run(scenario())
    assert error.code is WorkflowErrorCode.LOAD_FAILED
    assert not error.retryable
    assert engine.workflow is None
