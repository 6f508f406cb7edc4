"""Tests for questflow.utils module."""

from datetime import datetime, timezone
from unittest.mock import patch

import pytest

from questflow.utils import format_datetime, generate_id, get_questflow_home, parse_datetime


class TestGetQuestflowHome:
    def test_uses_environment_override(self, tmp_path, monkeypatch):
        monkeypatch.setenv("QUESTFLOW_DATA_DIR", str(tmp_path / "custom"))
        home = get_questflow_home()
        assert home == tmp_path / "custom"
        assert home.is_dir()

    def test_defaults_to_dot_questflow(self, tmp_path, monkeypatch):
        monkeypatch.delenv("QUESTFLOW_DATA_DIR")
        with patch("questflow.utils.Path.home", return_value=tmp_path):
            assert get_questflow_home() == tmp_path / ".questflow"


class TestGenerateId:
    def test_unique(self):
        assert len({generate_id() for _ in range(100)}) == 100

    def test_is_hex(self):
        assert all(c in "0123456789abcdef" for c in generate_id())


class TestDatetimes:
    def test_format_none(self):
        assert format_datetime(None) is None

    def test_parse_empty(self):
        assert parse_datetime(None) is None
        assert parse_datetime("") is None

    def test_parse_zulu_suffix(self):
        assert parse_datetime("2024-03-01T12:00:00Z") == datetime(2024, 3, 1, 12, tzinfo=timezone.utc)

    def test_naive_is_utc(self):
        assert parse_datetime("2024-03-01T12:00:00").tzinfo == timezone.utc

    def test_round_trip(self):
        now = datetime.now(timezone.utc)
        assert parse_datetime(format_datetime(now)) == now

    @pytest.mark.parametrize("value", ["yesterday", 1700000000])
    def test_invalid(self, value):
        with pytest.raises(ValueError):
            parse_datetime(value)
