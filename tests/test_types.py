"""Tests for questflow.types: records, attachment descriptors, queue items and settings."""

from datetime import datetime, timedelta, timezone

import pytest

from questflow.errors import InvalidFormat
from questflow.types import (
    DetachedAttachment,
    DraftAttachment,
    DrainResult,
    MergeResult,
    QueueItem,
    Record,
    RecordKind,
    Settings,
    StoredAttachment,
    attachment_from_dict,
)

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def record_dict(**overrides):
    data = {
        "id": "q1",
        "type": "multiple_choice",
        "question": "2+2?",
        "options": ["3", "4"],
        "answer": 1,
        "media": [],
        "createdAt": NOW.isoformat(),
        "updatedAt": NOW.isoformat(),
    }
    data.update(overrides)
    return data


class TestRecordKind:
    def test_parse_values(self):
        assert RecordKind.parse("fill_blank") is RecordKind.FILL_BLANK
        assert RecordKind.parse(RecordKind.TRUE_FALSE) is RecordKind.TRUE_FALSE

    def test_parse_unknown_raises_invalid_format(self):
        with pytest.raises(InvalidFormat, match="essay"):
            RecordKind.parse("essay")

    def test_has_choices(self):
        assert RecordKind.MULTIPLE_CHOICE.has_choices
        assert RecordKind.TRUE_FALSE.has_choices
        assert not RecordKind.FILL_BLANK.has_choices


class TestRecordValidation:
    def test_valid_record(self):
        Record(id="q1", kind=RecordKind.MULTIPLE_CHOICE, choices=["a", "b"], correct_choice_index=0).validate()

    def test_answer_out_of_range(self):
        record = Record(id="q1", kind=RecordKind.MULTIPLE_CHOICE, choices=["a"], correct_choice_index=1)
        with pytest.raises(InvalidFormat, match="out of range"):
            record.validate()

    def test_answer_without_choices(self):
        record = Record(id="q1", kind=RecordKind.FILL_BLANK, correct_choice_index=0)
        with pytest.raises(InvalidFormat):
            record.validate()

    def test_bool_answer_rejected(self):
        record = Record(id="q1", kind=RecordKind.TRUE_FALSE, choices=["T", "F"], correct_choice_index=True)
        with pytest.raises(InvalidFormat, match="integer"):
            record.validate()

    def test_fill_blank_cannot_have_choices(self):
        record = Record(id="q1", kind=RecordKind.FILL_BLANK, choices=["x"])
        with pytest.raises(InvalidFormat, match="cannot have choices"):
            record.validate()

    def test_non_string_body(self):
        with pytest.raises(InvalidFormat, match="body"):
            Record(id="q1", kind=RecordKind.FILL_BLANK, body=42).validate()

    def test_updated_before_created(self):
        record = Record(
            id="q1",
            kind=RecordKind.FILL_BLANK,
            created_at=NOW,
            updated_at=NOW - timedelta(seconds=1),
        )
        with pytest.raises(InvalidFormat, match="updatedAt"):
            record.validate()

    def test_attachments_must_be_descriptors(self):
        record = Record(id="q1", kind=RecordKind.FILL_BLANK, attachments=[{"type": "image/png"}])
        with pytest.raises(InvalidFormat, match="attachment"):
            record.validate()


class TestRecordSerialization:
    def test_from_dict_reads_layout(self):
        record = Record.from_dict(
            record_dict(media=[{"type": "image/png", "name": "a.png", "path": "media/q1_0.png"}])
        )
        assert record.kind is RecordKind.MULTIPLE_CHOICE
        assert record.body == "2+2?"
        assert record.correct_choice_index == 1
        assert record.attachments == [
            StoredAttachment(media_type="image/png", name="a.png", path="media/q1_0.png")
        ]
        assert record.updated_at == NOW

    def test_to_dict_omits_unset_answer(self):
        record = Record(id="q1", kind=RecordKind.FILL_BLANK, body="The sky is ___", created_at=NOW, updated_at=NOW)
        data = record.to_dict()
        assert "answer" not in data
        assert data["type"] == "fill_blank"
        assert data["options"] == []

    def test_to_dict_never_contains_bytes(self):
        record = Record(
            id="q1",
            kind=RecordKind.FILL_BLANK,
            attachments=[DraftAttachment(media_type="image/png", name="a.png", data=b"\x89PNG")],
        )
        assert record.to_dict()["media"] == [{"type": "image/png", "name": "a.png"}]

    def test_missing_created_at_defaults_to_updated_at(self):
        data = record_dict()
        del data["createdAt"]
        assert Record.from_dict(data).created_at == NOW

    def test_z_suffix_timestamps(self):
        record = Record.from_dict(record_dict(createdAt="2026-03-01T12:00:00Z", updatedAt="2026-03-01T12:00:00.000Z"))
        assert record.updated_at == NOW

    @pytest.mark.parametrize(
        "overrides",
        [
            {"type": "essay"},
            {"options": "not a list"},
            {"media": {"type": "image/png"}},
            {"updatedAt": "yesterday"},
            {"answer": 5},
        ],
    )
    def test_malformed_records(self, overrides):
        with pytest.raises(InvalidFormat):
            Record.from_dict(record_dict(**overrides))

    def test_non_object(self):
        with pytest.raises(InvalidFormat, match="object"):
            Record.from_dict(["q1"])

    def test_copy_is_independent(self):
        record = Record.from_dict(record_dict())
        clone = record.copy()
        clone.choices.append("5")
        assert record.choices == ["3", "4"]


class TestAttachmentDescriptors:
    def test_draft_store_and_detach(self):
        draft = DraftAttachment(media_type="audio/mpeg", name="clip.mp3", data=b"ID3")
        assert draft.store("media/q1_0.mpeg") == StoredAttachment("audio/mpeg", "clip.mp3", "media/q1_0.mpeg")
        assert draft.detach() == DetachedAttachment("audio/mpeg", "clip.mp3")

    def test_from_dict_without_path_is_detached(self):
        assert attachment_from_dict({"type": "image/png", "name": "a.png"}).state == "detached"

    def test_from_dict_requires_media_type(self):
        with pytest.raises(InvalidFormat, match="media type"):
            attachment_from_dict({"name": "a.png"})


class TestQueueItem:
    def test_round_trip_uses_persisted_names(self):
        item = QueueItem(id="i1", action="create", payload={"id": "q1"}, enqueued_at=NOW, attempts=2)
        data = item.to_dict()
        assert data == {
            "id": "i1",
            "action": "create",
            "data": {"id": "q1"},
            "timestamp": NOW.isoformat(),
            "retries": 2,
        }
        assert QueueItem.from_dict(data) == item


class TestResults:
    def test_drain_result_success(self):
        assert DrainResult(completed=True).success
        assert not DrainResult(completed=True, errors=["boom"]).success
        assert not DrainResult().success

    def test_merge_result_counts(self):
        result = MergeResult(inserted=2, replaced=1, kept=3)
        assert result.total == 6
        assert result.changed == 3


class TestSettings:
    def test_defaults(self):
        settings = Settings()
        assert settings.auto_sync is True
        assert settings.dark_mode is False
        assert not settings.sync_configured

    def test_persisted_names(self):
        data = Settings(api_url="https://x", api_key="k").to_dict()
        assert data == {
            "apiUrl": "https://x",
            "apiKey": "k",
            "autoSync": True,
            "darkMode": False,
            "lastSyncTime": None,
            "directoryPath": None,
        }
        assert Settings.from_dict(data).sync_configured
