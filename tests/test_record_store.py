"""Tests for the RecordStore.

Tests:
- Create/get/list/delete scenario
- Defensive copies on read
- Rollback on persistence failure
- Patch semantics for update
- Sync queue integration
- Switching backends reloads wholesale
"""

import threading
from unittest.mock import MagicMock

import pytest
from conftest import mc_draft

from questflow.errors import InvalidFormat, NotFound, PersistenceError
from questflow.protocols import Severity
from questflow.storage import DirectoryBackend, PersistenceBackend, RecordStore
from questflow.types import DraftAttachment, Record, RecordKind


def failing_backend(**failures):
    backend = MagicMock(spec=PersistenceBackend)
    backend.load_all.return_value = []
    backend.supports_binary = False
    backend.save.side_effect = lambda record, collection: record.copy()
    for name, error in failures.items():
        getattr(backend, name).side_effect = error
    return backend


class TestScenario:
    def test_create_then_delete(self, store):
        record = store.create(mc_draft())

        assert len(store.list()) == 1
        assert store.get(record.id).correct_choice_index == 1

        assert store.delete(record.id) is True
        assert store.list() == []
        with pytest.raises(NotFound):
            store.get(record.id)

    def test_get_returns_input_plus_assigned_fields(self, store):
        created = store.create(mc_draft())
        fetched = store.get(created.id)

        assert fetched.kind is RecordKind.MULTIPLE_CHOICE
        assert fetched.body == "2+2?"
        assert fetched.choices == ["3", "4"]
        assert fetched.id
        assert fetched.created_at == fetched.updated_at

    def test_delete_is_idempotent(self, store):
        record = store.create(mc_draft())
        assert store.delete(record.id) is True
        assert store.delete(record.id) is False

    def test_list_is_in_creation_order(self, store):
        ids = [store.create(mc_draft(body=f"q{i}")).id for i in range(3)]
        assert [r.id for r in store.list()] == ids


class TestCreate:
    def test_explicit_id_is_kept(self, store):
        assert store.create(mc_draft(id="custom")).id == "custom"

    def test_duplicate_id_rejected(self, store):
        store.create(mc_draft(id="dup"))
        with pytest.raises(InvalidFormat, match="already exists"):
            store.create(mc_draft(id="dup"))
        assert len(store) == 1

    def test_unknown_field_rejected(self, store):
        with pytest.raises(InvalidFormat, match="colour"):
            store.create(mc_draft(colour="red"))

    def test_kind_required(self, store):
        with pytest.raises(InvalidFormat, match="kind"):
            store.create({"body": "?"})

    def test_invalid_draft_changes_nothing(self, store):
        with pytest.raises(InvalidFormat):
            store.create(mc_draft(correct_choice_index=9))
        assert store.list() == []

    def test_accepts_record_instance(self, store):
        record = store.create(Record(id="", kind=RecordKind.FILL_BLANK, body="The ___ is blue"))
        assert record.id
        assert record.created_at is not None

    def test_persistence_failure_rolls_back(self, notifier):
        backend = failing_backend(save=PersistenceError("disk full"))
        store = RecordStore(backend, notifier=notifier)

        with pytest.raises(PersistenceError):
            store.create(mc_draft())

        assert store.list() == []
        assert notifier.events == [(Severity.ERROR, "Save Error", "Failed to save question.")]

    def test_length_waits_for_pending_create(self, notifier):
        saving = threading.Event()
        release = threading.Event()

        def slow_failure(record, collection):
            saving.set()
            release.wait(timeout=5)
            raise PersistenceError("disk full")

        store = RecordStore(failing_backend(save=slow_failure), notifier=notifier)
        writer = threading.Thread(target=lambda: pytest.raises(PersistenceError, store.create, mc_draft()))
        writer.start()
        assert saving.wait(timeout=5)

        lengths = []
        reader = threading.Thread(target=lambda: lengths.append(len(store)))
        reader.start()
        reader.join(timeout=0.2)
        assert reader.is_alive()

        release.set()
        writer.join(timeout=5)
        reader.join(timeout=5)
        assert lengths == [0]


class TestReadsAreCopies:
    def test_mutating_list_result_does_not_leak(self, store):
        record = store.create(mc_draft())
        listed = store.list()
        listed[0].choices.append("5")
        listed.clear()

        assert store.get(record.id).choices == ["3", "4"]
        assert len(store) == 1

    def test_mutating_get_result_does_not_leak(self, store):
        record = store.create(mc_draft())
        fetched = store.get(record.id)
        fetched.body = "changed"
        assert store.get(record.id).body == "2+2?"


class TestUpdate:
    def test_overwrites_fields_and_bumps_updated_at(self, store):
        record = store.create(mc_draft())
        updated = store.update(record.id, {"body": "3+3?", "choices": ["5", "6"], "correct_choice_index": 1})

        assert updated.body == "3+3?"
        assert updated.choices == ["5", "6"]
        assert updated.created_at == record.created_at
        assert updated.updated_at >= record.updated_at
        assert store.get(record.id) == updated

    def test_missing_record(self, store):
        with pytest.raises(NotFound):
            store.update("nope", {"body": "x"})

    @pytest.mark.parametrize("field", ["id", "created_at", "updated_at", "colour"])
    def test_rejects_immutable_and_unknown_fields(self, store, field):
        record = store.create(mc_draft())
        with pytest.raises(InvalidFormat):
            store.update(record.id, {field: "x"})

    def test_inconsistent_patch_changes_nothing(self, store):
        record = store.create(mc_draft())
        with pytest.raises(InvalidFormat):
            store.update(record.id, {"choices": ["only one"]})
        assert store.get(record.id) == record

    def test_kind_string_is_parsed(self, store):
        record = store.create(mc_draft())
        updated = store.update(record.id, {"kind": "true_false", "choices": ["True", "False"], "correct_choice_index": 0})
        assert updated.kind is RecordKind.TRUE_FALSE

    def test_persistence_failure_rolls_back(self, notifier):
        backend = failing_backend()
        store = RecordStore(backend, notifier=notifier)
        record = store.create(mc_draft())
        backend.save.side_effect = PersistenceError("disk full")

        with pytest.raises(PersistenceError):
            store.update(record.id, {"body": "changed"})

        assert store.get(record.id).body == "2+2?"
        assert notifier.titles() == ["Update Error"]

    def test_dropped_stored_attachments_are_released(self, directory_backend):
        store = RecordStore(directory_backend)
        record = store.create(
            mc_draft(attachments=[DraftAttachment(media_type="image/png", name="a.png", data=b"png")])
        )
        media_file = directory_backend.root / record.attachments[0].path
        assert media_file.exists()

        store.update(record.id, {"attachments": []})
        assert not media_file.exists()


class TestDelete:
    def test_persistence_failure_restores_position(self, notifier):
        backend = failing_backend()
        store = RecordStore(backend, notifier=notifier)
        first = store.create(mc_draft(id="a"))
        store.create(mc_draft(id="b"))
        backend.delete.side_effect = PersistenceError("read-only")

        with pytest.raises(PersistenceError):
            store.delete(first.id)

        assert [r.id for r in store.list()] == ["a", "b"]
        assert notifier.titles() == ["Delete Error"]


class TestSyncIntegration:
    def test_mutations_are_queued_then_kicked(self, fallback):
        queue = MagicMock()
        store = RecordStore(fallback, sync_queue=queue)

        record = store.create(mc_draft())
        store.update(record.id, {"body": "changed"})
        store.delete(record.id)

        actions = [c.args[0] for c in queue.enqueue.call_args_list]
        assert actions == ["create", "update", "delete"]
        assert queue.enqueue.call_args_list[2].args[1] == {"id": record.id}
        assert all(c.kwargs == {"drain": False} for c in queue.enqueue.call_args_list)
        assert queue.kick.call_count == 3

    def test_payload_is_serialized_snapshot(self, fallback):
        queue = MagicMock()
        store = RecordStore(fallback, sync_queue=queue)
        record = store.create(mc_draft())

        payload = queue.enqueue.call_args.args[1]
        assert payload["id"] == record.id
        assert payload["question"] == "2+2?"
        assert payload["answer"] == 1

    def test_nothing_queued_when_sync_disabled(self, fallback):
        queue = MagicMock()
        store = RecordStore(fallback, sync_queue=queue, sync_enabled_fn=lambda: False)
        store.create(mc_draft())
        queue.enqueue.assert_not_called()
        queue.kick.assert_not_called()

    def test_nothing_queued_when_persist_fails(self):
        queue = MagicMock()
        store = RecordStore(failing_backend(save=PersistenceError("x")), sync_queue=queue)
        with pytest.raises(PersistenceError):
            store.create(mc_draft())
        queue.enqueue.assert_not_called()

    def test_queue_write_failure_does_not_fail_mutation(self, fallback):
        queue = MagicMock()
        queue.enqueue.side_effect = PersistenceError("queue unwritable")
        store = RecordStore(fallback, sync_queue=queue)

        record = store.create(mc_draft())

        assert record.id in store
        queue.kick.assert_not_called()


class TestSwitchBackend:
    def test_replaces_collection_wholesale(self, store, record_dir):
        store.create(mc_draft(id="only-in-fallback"))
        other = DirectoryBackend(record_dir)
        RecordStore(other).create(mc_draft(id="only-in-directory"))

        count = store.switch_backend(other)

        assert count == 1
        assert [r.id for r in store.list()] == ["only-in-directory"]
        assert store.backend is other

    def test_failed_load_keeps_current_backend(self, store):
        store.create(mc_draft(id="kept"))
        broken = failing_backend(load_all=PersistenceError("unreadable"))

        with pytest.raises(PersistenceError):
            store.switch_backend(broken)

        assert [r.id for r in store.list()] == ["kept"]

    def test_mirror_receives_directory_records(self, fallback, directory_backend):
        store = RecordStore(directory_backend, mirror=fallback)
        store.create(
            mc_draft(id="m1", attachments=[DraftAttachment(media_type="image/jpeg", name="a.jpg", data=b"jpg")])
        )

        mirrored = fallback.load_all()
        assert [r.id for r in mirrored] == ["m1"]
        assert mirrored[0].attachments[0].path == "media/m1_0.jpg"


class TestClear:
    def test_clear_empties_backend_and_mirror(self, fallback, directory_backend):
        store = RecordStore(directory_backend, mirror=fallback)
        store.create(mc_draft())

        store.clear()

        assert store.list() == []
        assert directory_backend.load_all() == []
        assert fallback.load_all() == []
