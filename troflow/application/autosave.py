"""Debounced, retrying background persistence of one document's edits."""
from __future__ import annotations

import asyncio
import copy
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any

from troflow.core.config import Settings, settings
from troflow.core.validation import ValidationResult, validate_field_positions, validate_form_schema
from troflow.domain.workflow import FormType
from troflow.infrastructure.notify import LoggingNotifier, Notification, Notifier
from troflow.infrastructure.offline import ConnectivityMonitor, OfflineSyncQueue, PendingUpdate
from troflow.infrastructure.stores import DocumentStore, NetworkError, StoreError, utcnow_iso

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    """Exponential backoff for failed saves.

    ``max_attempts`` counts every write including the first, so the default
    policy waits 5, 10, 20 and 40 seconds between its five attempts.
    """

    max_attempts: int = 5
    base_delay_s: float = 5.0
    factor: float = 2.0
    max_delay_s: float = 60.0

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.base_delay_s < 0 or self.max_delay_s < 0 or self.factor < 1:
            raise ValueError("delays must be non-negative and factor at least 1")

    def delay_for(self, attempt: int) -> float:
        """Seconds to wait after failed attempt number ``attempt`` (1-based)."""

        return min(self.base_delay_s * self.factor ** (attempt - 1), self.max_delay_s)

    def delays(self) -> list[float]:
        return [self.delay_for(attempt) for attempt in range(1, self.max_attempts)]

    @classmethod
    def from_settings(cls, config: Settings = settings) -> "RetryPolicy":
        return cls(
            max_attempts=config.RETRY_MAX_ATTEMPTS,
            base_delay_s=config.RETRY_BASE_DELAY_S,
            factor=config.RETRY_FACTOR,
            max_delay_s=config.RETRY_MAX_DELAY_S,
        )


class SaveOutcome(str, Enum):
    SKIPPED = "skipped"
    SAVED = "saved"
    QUEUED_OFFLINE = "queued_offline"
    VALIDATION_FAILED = "validation_failed"
    FAILED = "failed"


_Snapshot = tuple[dict[str, Any], dict[str, Any]]


class AutoSaveEngine:
    """Keeps a remote document eventually consistent with local edits.

    Construct it with the data as first loaded; that snapshot counts as saved.
    Feed later edits through :meth:`update`.  Saves happen once edits have
    been quiet for ``debounce_ms``, never overlap, and end in one of: saved,
    queued offline, rejected by validation, or failed after exhausting the
    retry policy.  None of those paths raise into the event loop.
    """

    def __init__(
        self,
        document_id: str | None,
        form_data: dict[str, Any] | None,
        field_positions: dict[str, Any] | None,
        *,
        store: DocumentStore,
        offline_queue: OfflineSyncQueue | None = None,
        connectivity: ConnectivityMonitor | None = None,
        notifier: Notifier | None = None,
        enabled: bool = True,
        debounce_ms: int | None = None,
        retry_policy: RetryPolicy | None = None,
        form_type: FormType | None = None,
        timeout_s: float | None = None,
    ) -> None:
        self.document_id = document_id
        self.form_type = form_type
        self._store = store
        self._offline_queue = offline_queue
        self._connectivity = connectivity
        self._notifier = notifier or LoggingNotifier()
        self._enabled = enabled
        self._debounce_s = (settings.AUTOSAVE_DEBOUNCE_MS if debounce_ms is None else debounce_ms) / 1000
        self._retry = retry_policy or RetryPolicy.from_settings()
        self._timeout_s = settings.REMOTE_TIMEOUT_S if timeout_s is None else timeout_s

        self._current: _Snapshot = self._snapshot(form_data, field_positions)
        self._saved: _Snapshot = copy.deepcopy(self._current)
        self._dirty = False
        self._saving = False
        self._last_error: str | None = None
        self._lock = asyncio.Lock()
        self._timer: asyncio.Task[None] | None = None
        self._background: set[asyncio.Task[Any]] = set()

    # ------------------------------------------------------------------
    # state exposed to the UI
    # ------------------------------------------------------------------
    @property
    def has_unsaved_changes(self) -> bool:
        return self._dirty

    @property
    def is_saving(self) -> bool:
        return self._saving

    @property
    def last_error(self) -> str | None:
        return self._last_error

    @property
    def enabled(self) -> bool:
        return self._enabled

    @enabled.setter
    def enabled(self, value: bool) -> None:
        self._enabled = value
        if not value:
            self._cancel_timer()
        elif self._dirty:
            self._schedule()

    # ------------------------------------------------------------------
    # edits
    # ------------------------------------------------------------------
    @staticmethod
    def _snapshot(form_data: dict[str, Any] | None, field_positions: dict[str, Any] | None) -> _Snapshot:
        return copy.deepcopy(form_data or {}), copy.deepcopy(field_positions or {})

    def update(self, form_data: dict[str, Any], field_positions: dict[str, Any] | None = None) -> None:
        """Record the latest local state; restarts the debounce window on a real change."""

        if field_positions is None:
            field_positions = self._current[1]
        self._current = self._snapshot(form_data, field_positions)
        if self._current == self._saved:
            self._dirty = False
            self._cancel_timer()
            return
        self._dirty = True
        self._schedule()

    def _schedule(self) -> None:
        if not (self._enabled and self.document_id):
            return
        self._cancel_timer()
        self._timer = asyncio.get_running_loop().create_task(self._debounced())

    def _cancel_timer(self) -> None:
        if self._timer is not None and not self._timer.done():
            self._timer.cancel()
        self._timer = None

    async def _debounced(self) -> None:
        await asyncio.sleep(self._debounce_s)
        # from here on the write belongs to nobody's timer and cannot be cancelled by new edits
        self._timer = None
        await self._save(force=False)

    # ------------------------------------------------------------------
    # saving
    # ------------------------------------------------------------------
    async def save_now(self) -> SaveOutcome:
        """Skip the debounce window and save the current state right away."""

        self._cancel_timer()
        if not self.document_id:
            return SaveOutcome.SKIPPED
        return await self._save(force=True)

    def close(self) -> asyncio.Task[SaveOutcome] | None:
        """Teardown: drop the pending timer and fire one last save if dirty.

        The returned task is not awaited by the engine; in-flight writes are
        left to finish on their own.
        """

        self._cancel_timer()
        if not (self._dirty and self._enabled and self.document_id):
            return None
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning("Document %s closed with unsaved changes and no running loop", self.document_id)
            return None
        task = loop.create_task(self._save(force=True))
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    async def _save(self, *, force: bool) -> SaveOutcome:
        async with self._lock:
            payload = copy.deepcopy(self._current)
            if not force and payload == self._saved:
                self._dirty = False
                return SaveOutcome.SKIPPED
            self._saving = True
            try:
                outcome = await self._persist(payload)
            finally:
                self._saving = False

        # edits that arrived while we were writing get their own debounce window
        if self._dirty and self._timer is None and outcome in (SaveOutcome.SAVED, SaveOutcome.QUEUED_OFFLINE):
            self._schedule()
        return outcome

    async def _persist(self, payload: _Snapshot) -> SaveOutcome:
        form_data, field_positions = payload
        validation = validate_form_schema(self.form_type, form_data)
        validation.extend(validate_field_positions(field_positions))
        if not validation.valid:
            self._report_invalid(validation)
            return SaveOutcome.VALIDATION_FAILED

        if self._connectivity is not None and not self._connectivity.online and self._offline_queue is not None:
            return await self._enqueue(payload)

        changes = {
            "content": form_data,
            "metadata": {"fieldPositions": field_positions},
        }
        last_error: Exception | None = None
        for attempt in range(1, self._retry.max_attempts + 1):
            changes["updated_at"] = utcnow_iso()
            try:
                await asyncio.wait_for(self._store.update(self.document_id, changes), self._timeout_s)
            except NetworkError as exc:
                if self._offline_queue is not None:
                    logger.info("Network error saving %s, queueing offline: %s", self.document_id, exc)
                    return await self._enqueue(payload)
                last_error = exc
            except (StoreError, asyncio.TimeoutError) as exc:
                last_error = exc
            except Exception as exc:  # third-party stores raise their own types
                logger.exception("Unexpected error saving %s", self.document_id)
                last_error = exc
            else:
                self._mark_saved(payload)
                logger.info("Saved document %s", self.document_id)
                return SaveOutcome.SAVED

            self._last_error = str(last_error) or last_error.__class__.__name__
            if attempt < self._retry.max_attempts:
                delay = self._retry.delay_for(attempt)
                logger.warning(
                    "Save of %s failed (attempt %s/%s), retrying in %ss: %s",
                    self.document_id,
                    attempt,
                    self._retry.max_attempts,
                    delay,
                    self._last_error,
                )
                self._notifier.notify(
                    Notification("Auto-save failed", f"Will retry in {delay:g} seconds.", "warning")
                )
                await asyncio.sleep(delay)

        logger.error("Giving up on saving %s after %s attempts", self.document_id, self._retry.max_attempts)
        self._notifier.notify(
            Notification(
                "Auto-save failed",
                f"Your changes could not be saved after {self._retry.max_attempts} attempts. "
                "Check your connection and save again.",
                "error",
            )
        )
        return SaveOutcome.FAILED

    async def _enqueue(self, payload: _Snapshot) -> SaveOutcome:
        form_data, field_positions = payload
        await self._offline_queue.queue_update(
            PendingUpdate(
                document_id=self.document_id,
                form_data=form_data,
                field_positions=field_positions,
                destination=f"legal_documents/{self.document_id}",
            )
        )
        self._mark_saved(payload)
        self._notifier.notify(
            Notification("Saved offline", "Changes will sync when you're back online.", "info")
        )
        return SaveOutcome.QUEUED_OFFLINE

    def _mark_saved(self, payload: _Snapshot) -> None:
        self._saved = payload
        self._dirty = self._current != self._saved
        self._last_error = None

    def _report_invalid(self, validation: ValidationResult) -> None:
        details = "; ".join(
            f"{issue.field}: {issue.message}" if issue.field else issue.message for issue in validation.errors
        )
        self._last_error = details
        logger.info("Not saving %s, validation failed: %s", self.document_id, details)
        self._notifier.notify(Notification("Validation error", details, "error"))
