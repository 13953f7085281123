"""TRO packet workflow state machine."""
from __future__ import annotations

import asyncio
import contextlib
import copy
import dataclasses
import logging
import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Iterator, Mapping, TypeVar

from troflow.core.autofill import (
    AutofillResult,
    autofill_from_both,
    autofill_from_previous_forms,
    autofill_from_vault,
)
from troflow.core.config import settings
from troflow.core.validation import (
    ValidationIssue,
    ValidationResult,
    validate_form_data,
    validate_form_schema,
    validate_packet_data,
)
from troflow.domain import dependencies
from troflow.domain.errors import WorkflowError, WorkflowErrorCode
from troflow.domain.workflow import (
    CONFIG_FORM_FLAGS,
    FORM_ESTIMATED_MINUTES,
    FORM_TITLES,
    FormStatus,
    FormType,
    PacketConfig,
    PacketType,
    Workflow,
    WorkflowMetadata,
    WorkflowState,
    entry_state,
    estimate_minutes,
    form_for_state,
    is_done,
    is_valid_transition,
    state_for_form,
)
from troflow.infrastructure.notify import LoggingNotifier, Notification, Notifier
from troflow.infrastructure.stores import (
    DocumentStore,
    InMemoryDocumentStore,
    InMemoryVaultStore,
    InMemoryWorkflowStore,
    NotFoundError,
    PermissionDeniedError,
    StoreError,
    VaultStore,
    WorkflowStore,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(slots=True)
class FormStep:
    form_type: FormType
    title: str
    description: str
    required: bool
    status: FormStatus
    estimated_minutes: int
    dependencies: list[FormType] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "form_type": self.form_type.value,
            "title": self.title,
            "description": self.description,
            "required": self.required,
            "status": self.status.value,
            "estimated_minutes": self.estimated_minutes,
            "dependencies": [item.value for item in self.dependencies],
        }


class MutationGuard:
    """Single-flight marker per workflow id, shared by every engine in the process."""

    def __init__(self) -> None:
        self._active: set[str] = set()

    @contextlib.contextmanager
    def hold(self, workflow_id: str) -> Iterator[None]:
        if workflow_id in self._active:
            raise WorkflowError(
                f"Workflow {workflow_id} is already being updated",
                WorkflowErrorCode.DATA_CONFLICT,
                retryable=True,
                context={"workflow_id": workflow_id},
            )
        self._active.add(workflow_id)
        try:
            yield
        finally:
            self._active.discard(workflow_id)

    def reset(self) -> None:
        self._active.clear()


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def status_completion(status: FormStatus | None) -> int:
    if is_done(status):
        return 100
    if status is FormStatus.IN_PROGRESS:
        return 50
    return 0


def packet_completion(workflow: Workflow) -> int:
    required = workflow.requirements.required
    if not required:
        return 0
    total = sum(status_completion(workflow.status_of(form)) for form in required)
    return _round_half_up(total / len(required))


def remaining_minutes(workflow: Workflow) -> int:
    """Minutes left from the current form onwards, counting only unfinished forms."""

    current = form_for_state(workflow.current_state)
    order = workflow.form_order
    if current is None or current not in order:
        return workflow.metadata.estimated_time_remaining or 0
    remaining = 0
    for form_type in order[order.index(current):]:
        status = workflow.status_of(form_type)
        if status is FormStatus.SKIPPED or is_done(status):
            continue
        remaining += FORM_ESTIMATED_MINUTES[form_type]
    return remaining


class TROWorkflowEngine:
    """Drives one user's workflow through its packet's forms.

    Mutating operations are no-ops until a workflow is started or loaded.
    Store failures surface as :class:`WorkflowError` and leave
    ``self.workflow`` exactly as it was.
    """

    def __init__(
        self,
        user_id: str,
        *,
        workflow_store: WorkflowStore,
        document_store: DocumentStore,
        vault_store: VaultStore | None = None,
        notifier: Notifier | None = None,
        guard: MutationGuard | None = None,
        timeout_s: float | None = None,
    ) -> None:
        self.user_id = user_id
        self.workflow: Workflow | None = None
        self.error: WorkflowError | None = None
        self._workflows = workflow_store
        self._documents = document_store
        self._vault = vault_store
        self._notifier = notifier or LoggingNotifier()
        self._guard = guard or _guard
        self._timeout_s = settings.REMOTE_TIMEOUT_S if timeout_s is None else timeout_s

    # ------------------------------------------------------------------
    # helpers
    # ------------------------------------------------------------------
    async def _remote(self, call: Awaitable[T]) -> T:
        return await asyncio.wait_for(call, self._timeout_s)

    def _fail(self, error: WorkflowError) -> WorkflowError:
        self.error = error
        logger.warning("Workflow error [%s]: %s", error.code.value, error.message)
        self._notifier.notify(Notification("Workflow error", error.message, "error"))
        return error

    def _store_failure(
        self,
        exc: Exception,
        action: str,
        code: WorkflowErrorCode,
        context: dict[str, Any],
    ) -> WorkflowError:
        """Translate a store failure; refusals are final, everything else may be retried."""

        if isinstance(exc, PermissionDeniedError):
            return self._fail(
                WorkflowError(f"{action}: permission denied", WorkflowErrorCode.PERMISSION_DENIED, context=context)
            )
        return self._fail(
            WorkflowError(f"{action}: {str(exc) or exc.__class__.__name__}", code, retryable=True, context=context)
        )

    @contextlib.contextmanager
    def _mutating(self) -> Iterator[Workflow]:
        workflow = self.workflow
        if workflow is None:
            raise self._fail(WorkflowError("No workflow is loaded", WorkflowErrorCode.LOAD_FAILED))
        with self._guard.hold(workflow.id):
            yield workflow

    async def _commit(self, updated: Workflow, fields: tuple[str, ...]) -> Workflow:
        """Persist ``fields`` of ``updated``; adopt it in memory only once the store accepts it."""

        updated.updated_at = datetime.now(timezone.utc)
        record = updated.to_record()
        changes = {name: record[name] for name in (*fields, "updated_at")}
        try:
            await self._remote(self._workflows.update(updated.id, changes))
        except (StoreError, asyncio.TimeoutError) as exc:
            raise self._store_failure(
                exc,
                "Failed to save workflow",
                WorkflowErrorCode.SAVE_FAILED,
                {"workflow_id": updated.id, "fields": list(fields)},
            ) from exc
        self.workflow = updated
        self.error = None
        return updated

    def _draft(self, workflow: Workflow, **changes: Any) -> Workflow:
        return dataclasses.replace(copy.deepcopy(workflow), **changes)

    def _effective_state(self, workflow: Workflow) -> WorkflowState:
        """A finished form's in-progress state counts as its complete state for moving on."""

        current = form_for_state(workflow.current_state)
        if current is not None and is_done(workflow.status_of(current)):
            return state_for_form(current, in_progress=False)
        return workflow.current_state

    async def _move_to(self, target: WorkflowState, *, check: bool = True) -> None:
        with self._mutating() as workflow:
            source = self._effective_state(workflow)
            if check and not is_valid_transition(source, target):
                raise self._fail(
                    WorkflowError(
                        f"Invalid transition from {workflow.current_state.value} to {target.value}",
                        WorkflowErrorCode.INVALID_TRANSITION,
                        context={"from": workflow.current_state.value, "to": target.value},
                    )
                )
            updated = self._draft(workflow, current_state=target)
            updated.metadata.estimated_time_remaining = remaining_minutes(updated)
            await self._commit(updated, ("current_state", "metadata"))
            logger.info("Workflow %s moved %s -> %s", workflow.id, workflow.current_state.value, target.value)

    # ------------------------------------------------------------------
    # lifecycle
    # ------------------------------------------------------------------
    async def start_workflow(self, packet_type: PacketType | str, config: PacketConfig | None = None) -> Workflow:
        packet_type = PacketType(packet_type)
        config = config or PacketConfig()
        workflow = Workflow(
            id="",
            user_id=self.user_id,
            packet_type=packet_type,
            current_state=entry_state(packet_type),
            packet_config=config,
        )
        requirements = workflow.requirements
        for form_type in requirements.required:
            workflow.form_statuses[form_type] = FormStatus.NOT_STARTED
        for form_type in requirements.optional:
            workflow.form_statuses[form_type] = (
                FormStatus.NOT_STARTED if config.enables(form_type) else FormStatus.SKIPPED
            )
        workflow.metadata = WorkflowMetadata(
            completion_percentage=0,
            estimated_time_remaining=estimate_minutes(packet_type, config),
        )

        record = workflow.to_record()
        record.pop("id")
        try:
            row = await self._remote(self._workflows.insert(record))
        except (StoreError, asyncio.TimeoutError) as exc:
            raise self._store_failure(
                exc, "Failed to create workflow", WorkflowErrorCode.SAVE_FAILED, {"packet_type": packet_type.value}
            ) from exc
        self.workflow = Workflow.from_record(row)
        self.error = None
        logger.info("Started %s workflow %s", packet_type.value, self.workflow.id)
        return self.workflow

    async def load_workflow(self, workflow_id: str) -> Workflow:
        try:
            row = await self._remote(self._workflows.get(workflow_id, self.user_id))
        except NotFoundError as exc:
            raise self._fail(
                WorkflowError(
                    f"Workflow {workflow_id} not found",
                    WorkflowErrorCode.LOAD_FAILED,
                    context={"workflow_id": workflow_id},
                )
            ) from exc
        except (StoreError, asyncio.TimeoutError) as exc:
            raise self._store_failure(
                exc, "Failed to load workflow", WorkflowErrorCode.LOAD_FAILED, {"workflow_id": workflow_id}
            ) from exc
        try:
            workflow = Workflow.from_record(row)
        except (KeyError, TypeError, ValueError) as exc:
            raise self._fail(
                WorkflowError(
                    f"Workflow {workflow_id} is malformed: {exc}",
                    WorkflowErrorCode.LOAD_FAILED,
                    context={"workflow_id": workflow_id},
                )
            ) from exc
        self.workflow = workflow
        self.error = None
        return self.workflow

    async def update_form_status(self, form_type: FormType | str, status: FormStatus | str) -> None:
        if self.workflow is None:
            return
        form_type, status = FormType(form_type), FormStatus(status)
        with self._mutating() as workflow:
            updated = self._draft(workflow)
            updated.form_statuses[form_type] = status
            updated.metadata.last_edited_form = form_type
            updated.metadata.completion_percentage = packet_completion(updated)
            updated.metadata.estimated_time_remaining = remaining_minutes(updated)
            await self._commit(updated, ("form_statuses", "metadata"))

    async def update_packet_config(self, changes: Mapping[str, Any] | None = None, **kwargs: Any) -> None:
        """Merge config changes and re-derive the optional forms they govern.

        Only optional forms of this packet that are still ``not_started`` or
        ``skipped`` are flipped; finished or in-progress forms keep their status.
        """

        if self.workflow is None:
            return
        changes = {**(changes or {}), **kwargs}
        with self._mutating() as workflow:
            try:
                config = workflow.packet_config.merged(changes)
            except ValueError as exc:
                raise self._fail(
                    WorkflowError(str(exc), WorkflowErrorCode.VALIDATION_FAILED, context={"keys": sorted(changes)})
                ) from exc

            updated = self._draft(workflow, packet_config=config)
            optional = set(workflow.requirements.optional)
            touched = {CONFIG_FORM_FLAGS[key] for key in changes if key in CONFIG_FORM_FLAGS}
            for form_type in touched & optional:
                current = updated.status_of(form_type)
                if current not in (None, FormStatus.NOT_STARTED, FormStatus.SKIPPED):
                    continue
                updated.form_statuses[form_type] = (
                    FormStatus.NOT_STARTED if config.enables(form_type) else FormStatus.SKIPPED
                )
            updated.metadata.estimated_time_remaining = estimate_minutes(workflow.packet_type, config)
            await self._commit(updated, ("packet_config", "form_statuses", "metadata"))

    # ------------------------------------------------------------------
    # transitions
    # ------------------------------------------------------------------
    async def transition_to_next_form(self) -> None:
        if self.workflow is None:
            return
        next_form = self.get_next_form()
        target = WorkflowState.REVIEW_IN_PROGRESS if next_form is None else state_for_form(next_form)
        await self._move_to(target)

    async def transition_to_previous_form(self) -> None:
        if self.workflow is None:
            return
        previous = self.get_previous_form()
        if previous is None:
            return
        await self._move_to(state_for_form(previous), check=False)

    async def jump_to_form(self, form_type: FormType | str) -> None:
        if self.workflow is None:
            return
        form_type = FormType(form_type)
        workflow = self.workflow
        if form_type not in workflow.requirements.all_forms:
            raise self._fail(
                WorkflowError(
                    f"Form {form_type.value} is not part of this packet type",
                    WorkflowErrorCode.INVALID_TRANSITION,
                    context={"form_type": form_type.value, "packet_type": workflow.packet_type.value},
                )
            )
        unmet = self.get_unmet_dependencies(form_type)
        if unmet:
            raise self._fail(
                WorkflowError(
                    f"Cannot jump to {form_type.value}. Please complete: {', '.join(item.value for item in unmet)}",
                    WorkflowErrorCode.MISSING_DEPENDENCY,
                    retryable=True,
                    context={"form_type": form_type.value, "unmet": [item.value for item in unmet]},
                )
            )
        await self._move_to(state_for_form(form_type), check=False)

    async def complete_workflow(self) -> None:
        if self.workflow is None:
            return
        validation = await self.validate_packet()
        if not validation.valid:
            raise self._fail(
                WorkflowError(
                    "Cannot complete workflow. Please fix validation errors.",
                    WorkflowErrorCode.VALIDATION_FAILED,
                    retryable=True,
                    context={"validation_errors": [item.to_dict() for item in validation.errors]},
                )
            )
        with self._mutating() as workflow:
            updated = self._draft(workflow, current_state=WorkflowState.READY_TO_FILE)
            updated.metadata.completion_percentage = 100
            updated.metadata.estimated_time_remaining = 0
            updated.metadata.validation_errors = []
            await self._commit(updated, ("current_state", "metadata"))
        self._notifier.notify(Notification("Workflow Complete", "Your TRO packet is ready to file!", "success"))

    async def mark_filed(self) -> None:
        if self.workflow is None:
            return
        await self._move_to(WorkflowState.FILED)

    async def reset_workflow(self) -> None:
        if self.workflow is None:
            return
        with self._mutating() as workflow:
            updated = self._draft(
                workflow,
                current_state=WorkflowState.PACKET_TYPE_SELECTION,
                form_statuses={},
                metadata=WorkflowMetadata(),
            )
            await self._commit(updated, ("current_state", "form_statuses", "metadata"))

    # ------------------------------------------------------------------
    # validation
    # ------------------------------------------------------------------
    async def validate_current_form(self) -> ValidationResult:
        current = self.get_current_form()
        if current is None:
            return ValidationResult()
        return await self.validate_form(current)

    async def validate_form(self, form_type: FormType | str) -> ValidationResult:
        form_type = FormType(form_type)
        data = await self.get_form_data(form_type)
        if data is None:
            return ValidationResult(
                errors=[ValidationIssue(message="Form data not found", code="FORM_NOT_FOUND", form_type=form_type)]
            )
        result = validate_form_schema(form_type, data)
        result.extend(validate_form_data(form_type, data))
        return result

    async def validate_packet(self) -> ValidationResult:
        if self.workflow is None:
            return ValidationResult(errors=[ValidationIssue(message="No workflow loaded", code="NO_WORKFLOW")])
        collected: dict[FormType, dict[str, Any]] = {}
        for form_type in self.workflow.form_order:
            if self.workflow.status_of(form_type) is FormStatus.SKIPPED:
                continue
            data = await self.get_form_data(form_type)
            if data:
                collected[form_type] = data
        return validate_packet_data(self.workflow, collected)

    def can_transition_to_next_form(self) -> bool:
        if self.workflow is None:
            return False
        current = self.get_current_form()
        return current is not None and is_done(self.workflow.status_of(current))

    def can_transition_to_previous_form(self) -> bool:
        return self.get_previous_form() is not None

    # ------------------------------------------------------------------
    # autofill
    # ------------------------------------------------------------------
    async def _completed_form_data(self) -> dict[FormType, dict[str, Any]]:
        collected: dict[FormType, dict[str, Any]] = {}
        if self.workflow is None:
            return collected
        for form_type, status in self.workflow.form_statuses.items():
            if is_done(status):
                data = await self.get_form_data(form_type)
                if data:
                    collected[form_type] = data
        return collected

    async def _vault_data(self) -> dict[str, Any] | None:
        if self._vault is None:
            return None
        try:
            return await self._remote(self._vault.get(self.user_id))
        except (StoreError, asyncio.TimeoutError) as exc:
            raise self._fail(
                WorkflowError(
                    f"Could not read the personal data vault: {str(exc) or exc.__class__.__name__}",
                    WorkflowErrorCode.AUTOFILL_FAILED,
                    retryable=True,
                    context={"user_id": self.user_id},
                )
            ) from exc

    async def autofill_form_from_previous(self, target_form: FormType | str) -> AutofillResult:
        target_form = FormType(target_form)
        if self.workflow is None:
            return AutofillResult(source="previous_form")
        result = autofill_from_previous_forms(target_form, await self._completed_form_data())
        self._notifier.notify(
            Notification("Autofilled Fields", f"Filled {result.fields_autofilled} field(s) from previous forms")
        )
        return result

    async def autofill_form_from_vault(self, target_form: FormType | str) -> AutofillResult:
        target_form = FormType(target_form)
        vault_data = await self._vault_data()
        if not vault_data:
            return AutofillResult(source="vault")
        result = autofill_from_vault(target_form, vault_data)
        self._notifier.notify(
            Notification(
                "Autofilled from Vault",
                f"Filled {result.fields_autofilled} field(s) from your Personal Data Vault",
            )
        )
        return result

    async def autofill_form(self, target_form: FormType | str) -> AutofillResult:
        target_form = FormType(target_form)
        vault_data = await self._vault_data() or {}
        return autofill_from_both(target_form, vault_data, await self._completed_form_data())

    # ------------------------------------------------------------------
    # form data
    # ------------------------------------------------------------------
    async def get_form_data(self, form_type: FormType | str) -> dict[str, Any] | None:
        if self.workflow is None:
            return None
        ref = self.workflow.form_data_refs.get(FormType(form_type))
        if not ref:
            return None
        try:
            row = await self._remote(self._documents.get(ref))
        except (StoreError, asyncio.TimeoutError) as exc:
            logger.warning("Could not read document %s: %s", ref, str(exc) or exc.__class__.__name__)
            return None
        return dict(row.get("content") or {})

    async def save_form_data(self, form_type: FormType | str, data: dict[str, Any]) -> str | None:
        """Write a form's field values; returns the backing document id."""

        if self.workflow is None:
            return None
        form_type = FormType(form_type)
        with self._mutating() as workflow:
            ref = workflow.form_data_refs.get(form_type)
            try:
                if ref:
                    await self._remote(
                        self._documents.update(
                            ref,
                            {"content": data, "updated_at": datetime.now(timezone.utc).isoformat()},
                        )
                    )
                    return ref
                row = await self._remote(
                    self._documents.insert(
                        {
                            "title": f"{form_type.value} Form",
                            "form_type": form_type.value,
                            "workflow_id": workflow.id,
                            "content": data,
                            "metadata": {},
                            "user_id": self.user_id,
                        }
                    )
                )
            except (StoreError, asyncio.TimeoutError) as exc:
                raise self._store_failure(
                    exc,
                    f"Failed to save {form_type.value} data",
                    WorkflowErrorCode.SAVE_FAILED,
                    {"form_type": form_type.value},
                ) from exc

            updated = self._draft(workflow)
            updated.form_data_refs[form_type] = str(row["id"])
            updated.metadata.last_edited_form = form_type
            await self._commit(updated, ("form_data_refs", "metadata"))
            return updated.form_data_refs[form_type]

    # ------------------------------------------------------------------
    # queries
    # ------------------------------------------------------------------
    def get_current_form(self) -> FormType | None:
        if self.workflow is None:
            return None
        return form_for_state(self.workflow.current_state)

    def get_next_form(self) -> FormType | None:
        if self.workflow is None:
            return None
        order = self.workflow.form_order
        current = self.get_current_form()
        if current is None:
            candidates = order
        elif current in order:
            candidates = order[order.index(current) + 1:]
        else:
            return None
        for form_type in candidates:
            if self.workflow.status_of(form_type) is not FormStatus.SKIPPED:
                return form_type
        return None

    def get_previous_form(self) -> FormType | None:
        if self.workflow is None:
            return None
        order = self.workflow.form_order
        current = self.get_current_form()
        if current is None or current not in order:
            return None
        for form_type in reversed(order[: order.index(current)]):
            if self.workflow.status_of(form_type) is not FormStatus.SKIPPED:
                return form_type
        return None

    def get_required_forms(self) -> list[FormType]:
        return list(self.workflow.requirements.required) if self.workflow else []

    def get_optional_forms(self) -> list[FormType]:
        return list(self.workflow.requirements.optional) if self.workflow else []

    def get_form_completion_percentage(self, form_type: FormType | str) -> int:
        if self.workflow is None:
            return 0
        return status_completion(self.workflow.status_of(FormType(form_type)))

    def get_packet_completion_percentage(self) -> int:
        return packet_completion(self.workflow) if self.workflow else 0

    def get_estimated_time_remaining(self) -> int:
        return remaining_minutes(self.workflow) if self.workflow else 0

    def get_form_steps(self) -> list[FormStep]:
        if self.workflow is None:
            return []
        required = set(self.workflow.requirements.required)
        steps: list[FormStep] = []
        for form_type in self.workflow.form_order:
            status = self.workflow.status_of(form_type) or FormStatus.NOT_STARTED
            if status is FormStatus.SKIPPED:
                continue
            steps.append(
                FormStep(
                    form_type=form_type,
                    title=FORM_TITLES[form_type],
                    description=f"Complete {form_type.value} form",
                    required=form_type in required,
                    status=status,
                    estimated_minutes=FORM_ESTIMATED_MINUTES[form_type],
                    dependencies=self.get_dependencies(form_type),
                )
            )
        return steps

    def get_dependencies(self, form_type: FormType | str) -> list[FormType]:
        return dependencies.get_dependencies(FormType(form_type))

    def are_dependencies_met(self, form_type: FormType | str) -> bool:
        if self.workflow is None:
            return False
        return dependencies.are_dependencies_met(FormType(form_type), self.workflow.form_statuses)

    def get_unmet_dependencies(self, form_type: FormType | str) -> list[FormType]:
        if self.workflow is None:
            return []
        return dependencies.get_unmet_dependencies(FormType(form_type), self.workflow.form_statuses)


# ----------------------------------------------------------------------
# process-wide wiring
# ----------------------------------------------------------------------
@dataclass(slots=True)
class StoreBundle:
    documents: DocumentStore
    workflows: WorkflowStore
    vault: VaultStore


def _in_memory_stores() -> StoreBundle:
    return StoreBundle(InMemoryDocumentStore(), InMemoryWorkflowStore(), InMemoryVaultStore())


_guard = MutationGuard()
_stores = _in_memory_stores()
_notifier: Notifier = LoggingNotifier()


def configure_stores(documents: DocumentStore, workflows: WorkflowStore, vault: VaultStore) -> None:
    """Install the stores used by engines created from here on."""

    global _stores
    _stores = StoreBundle(documents, workflows, vault)


def get_stores() -> StoreBundle:
    return _stores


def create_workflow_engine(user_id: str) -> TROWorkflowEngine:
    return TROWorkflowEngine(
        user_id,
        workflow_store=_stores.workflows,
        document_store=_stores.documents,
        vault_store=_stores.vault,
        notifier=_notifier,
        guard=_guard,
    )


def reset_workflow_state() -> None:
    """Back to fresh in-memory stores (used in tests)."""

    global _stores
    _stores = _in_memory_stores()
    _guard.reset()
