from __future__ import annotations

import asyncio
import copy
import sys
from pathlib import Path

import pytest

sys.path.append(str(Path(__file__).resolve().parents[1]))

from troflow.application.autosave import AutoSaveEngine, RetryPolicy, SaveOutcome
from troflow.domain.workflow import FormType
from troflow.infrastructure.notify import CollectingNotifier
from troflow.infrastructure.offline import ConnectivityMonitor, InMemoryOfflineQueue
from troflow.infrastructure.stores import NetworkError, StoreError

NO_WAIT = RetryPolicy(max_attempts=5, base_delay_s=0, max_delay_s=0)


class RecordingStore:
    """Document store double that records every update attempt."""

    def __init__(self, failures=None, delay: float = 0.0) -> None:
        self.calls: list[tuple[str, dict]] = []
        self.failures = list(failures or [])
        self.delay = delay
        self.in_flight = 0
        self.max_in_flight = 0

    async def get(self, document_id):
        raise NotImplementedError

    async def insert(self, record):
        raise NotImplementedError

    async def update(self, document_id, changes):
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(self.delay)
            self.calls.append((document_id, copy.deepcopy(changes)))
            if self.failures:
                failure = self.failures.pop(0)
                if failure is not None:
                    raise failure
            return {"id": document_id, **changes}
        finally:
            self.in_flight -= 1


def _engine(store, **kwargs) -> AutoSaveEngine:
    kwargs.setdefault("debounce_ms", 20)
    kwargs.setdefault("retry_policy", NO_WAIT)
    kwargs.setdefault("notifier", CollectingNotifier())
    return AutoSaveEngine("doc-1", {"partyName": "Jane"}, {}, store=store, **kwargs)


def test_default_retry_curve():
    policy = RetryPolicy()
    assert policy.delays() == [5, 10, 20, 40]
    assert policy.delay_for(6) == 60
    with pytest.raises(ValueError):
        RetryPolicy(max_attempts=0)


def test_rapid_edits_coalesce_into_one_save_of_last_state():
    async def scenario():
        store = RecordingStore()
        engine = _engine(store, debounce_ms=50)
        for name in ("Jane A", "Jane B", "Jane C"):
            engine.update({"partyName": name})
            await asyncio.sleep(0.01)
        assert engine.has_unsaved_changes
        await asyncio.sleep(0.2)
        return store, engine

    store, engine = asyncio.run(scenario())
    assert len(store.calls) == 1
    document_id, changes = store.calls[0]
    assert document_id == "doc-1"
    assert changes["content"] == {"partyName": "Jane C"}
    assert changes["metadata"] == {"fieldPositions": {}}
    assert not engine.has_unsaved_changes


def test_unchanged_data_is_never_written():
    async def scenario():
        store = RecordingStore()
        engine = _engine(store)
        engine.update({"partyName": "Jane"})
        await asyncio.sleep(0.1)
        engine.update({"partyName": "Janet"})
        engine.update({"partyName": "Jane"})
        await asyncio.sleep(0.1)
        return store, engine

    store, engine = asyncio.run(scenario())
    assert store.calls == []
    assert not engine.has_unsaved_changes


def test_identical_data_after_a_save_is_not_written_again():
    async def scenario():
        store = RecordingStore()
        engine = _engine(store)
        engine.update({"partyName": "Janet"}, {"partyName": {"top": 10, "left": 5}})
        await asyncio.sleep(0.1)
        engine.update({"partyName": "Janet"}, {"partyName": {"top": 10, "left": 5}})
        await asyncio.sleep(0.1)
        return store, engine

    store, engine = asyncio.run(scenario())
    assert len(store.calls) == 1
    assert store.calls[0][1]["content"] == {"partyName": "Janet"}
    assert not engine.has_unsaved_changes


def test_unexpected_store_exception_goes_through_retries():
    async def scenario():
        store = RecordingStore(failures=[ValueError("malformed row")] * 5)
        notifier = CollectingNotifier()
        engine = _engine(store, notifier=notifier)
        engine.update({"partyName": "Janet"})
        await asyncio.sleep(0.2)
        return store, notifier, engine

    store, notifier, engine = asyncio.run(scenario())
    assert len(store.calls) == 5
    assert engine.last_error == "malformed row"
    assert engine.has_unsaved_changes
    assert not engine.is_saving
    assert notifier.items[-1].level == "error"
    assert "after 5 attempts" in notifier.items[-1].description


def test_unexpected_store_exception_then_success():
    async def scenario():
        store = RecordingStore(failures=[ValueError("malformed row"), None])
        engine = _engine(store)
        engine.update({"partyName": "Janet"})
        return await engine.save_now(), store, engine

    outcome, store, engine = asyncio.run(scenario())
    assert outcome is SaveOutcome.SAVED
    assert len(store.calls) == 2
    assert engine.last_error is None


def test_save_now_without_document_is_skipped():
    async def scenario():
        store = RecordingStore()
        engine = AutoSaveEngine(None, {}, {}, store=store)
        engine.update({"partyName": "Jane"})
        return await engine.save_now(), store

    outcome, store = asyncio.run(scenario())
    assert outcome is SaveOutcome.SKIPPED
    assert store.calls == []


def test_invalid_data_is_not_persisted_or_retried():
    async def scenario():
        store = RecordingStore()
        notifier = CollectingNotifier()
        engine = _engine(store, notifier=notifier, form_type=FormType.FL150)
        engine.update({"partyName": "Jane", "email": "nope"}, {"partyName": {"top": 150, "left": 0}})
        outcome = await engine.save_now()
        return outcome, store, notifier, engine

    outcome, store, notifier, engine = asyncio.run(scenario())
    assert outcome is SaveOutcome.VALIDATION_FAILED
    assert store.calls == []
    assert engine.has_unsaved_changes
    assert "email: Invalid email address" in engine.last_error
    assert "partyName.top" in engine.last_error
    assert [item.level for item in notifier.items] == ["error"]


def test_transient_failures_retry_then_succeed():
    async def scenario():
        store = RecordingStore(failures=[StoreError("boom"), asyncio.TimeoutError(), None])
        notifier = CollectingNotifier()
        engine = _engine(store, notifier=notifier)
        engine.update({"partyName": "Janet"})
        outcome = await engine.save_now()
        return outcome, store, notifier, engine

    outcome, store, notifier, engine = asyncio.run(scenario())
    assert outcome is SaveOutcome.SAVED
    assert len(store.calls) == 3
    assert [item.level for item in notifier.items] == ["warning", "warning"]
    assert engine.last_error is None
    assert not engine.has_unsaved_changes


def test_exhausted_retries_surface_a_terminal_error():
    async def scenario():
        store = RecordingStore(failures=[StoreError("down")] * 3)
        notifier = CollectingNotifier()
        policy = RetryPolicy(max_attempts=3, base_delay_s=0, max_delay_s=0)
        engine = _engine(store, notifier=notifier, retry_policy=policy)
        engine.update({"partyName": "Janet"})
        outcome = await engine.save_now()
        return outcome, store, notifier, engine

    outcome, store, notifier, engine = asyncio.run(scenario())
    assert outcome is SaveOutcome.FAILED
    assert len(store.calls) == 3
    assert notifier.items[-1].level == "error"
    assert "after 3 attempts" in notifier.items[-1].description
    assert engine.has_unsaved_changes
    assert engine.last_error == "down"


def test_hung_store_call_times_out():
    async def scenario():
        store = RecordingStore(delay=1.0)
        policy = RetryPolicy(max_attempts=1, base_delay_s=0)
        engine = _engine(store, retry_policy=policy, timeout_s=0.01)
        engine.update({"partyName": "Janet"})
        return await engine.save_now()

    assert asyncio.run(scenario()) is SaveOutcome.FAILED


def test_offline_edits_go_to_queue():
    async def scenario():
        store = RecordingStore()
        queue = InMemoryOfflineQueue()
        notifier = CollectingNotifier()
        engine = _engine(
            store,
            offline_queue=queue,
            connectivity=ConnectivityMonitor(online=False),
            notifier=notifier,
        )
        engine.update({"partyName": "Janet"}, {"partyName": {"top": 1, "left": 2}})
        outcome = await engine.save_now()
        return outcome, store, await queue.pending(), notifier, engine

    outcome, store, pending, notifier, engine = asyncio.run(scenario())
    assert outcome is SaveOutcome.QUEUED_OFFLINE
    assert store.calls == []
    assert len(pending) == 1
    assert pending[0].document_id == "doc-1"
    assert pending[0].form_data == {"partyName": "Janet"}
    assert pending[0].field_positions == {"partyName": {"top": 1, "left": 2}}
    assert notifier.items[0].title == "Saved offline"
    assert not engine.has_unsaved_changes


def test_network_error_falls_back_to_queue():
    async def scenario():
        store = RecordingStore(failures=[NetworkError("unreachable")])
        queue = InMemoryOfflineQueue()
        engine = _engine(store, offline_queue=queue, connectivity=ConnectivityMonitor())
        engine.update({"partyName": "Janet"})
        outcome = await engine.save_now()
        return outcome, store, await queue.pending_count()

    outcome, store, pending = asyncio.run(scenario())
    assert outcome is SaveOutcome.QUEUED_OFFLINE
    assert len(store.calls) == 1
    assert pending == 1


def test_saves_never_overlap():
    async def scenario():
        store = RecordingStore(delay=0.05)
        engine = _engine(store)
        engine.update({"partyName": "A"})
        first = asyncio.create_task(engine.save_now())
        await asyncio.sleep(0.01)
        assert engine.is_saving
        engine.update({"partyName": "B"})
        second = asyncio.create_task(engine.save_now())
        await asyncio.gather(first, second)
        return store

    store = asyncio.run(scenario())
    assert store.max_in_flight == 1
    assert [changes["content"]["partyName"] for _, changes in store.calls] == ["A", "B"]


def test_close_flushes_dirty_state():
    async def scenario():
        store = RecordingStore()
        engine = _engine(store, debounce_ms=10_000)
        engine.update({"partyName": "Janet"})
        task = engine.close()
        assert task is not None
        return await task, store

    outcome, store = asyncio.run(scenario())
    assert outcome is SaveOutcome.SAVED
    assert store.calls[0][1]["content"] == {"partyName": "Janet"}


def test_disabled_engine_does_not_autosave():
    async def scenario():
        store = RecordingStore()
        engine = _engine(store, enabled=False)
        engine.update({"partyName": "Janet"})
        await asyncio.sleep(0.1)
        return store, engine

    store, engine = asyncio.run(scenario())
    assert store.calls == []
    assert engine.has_unsaved_changes
