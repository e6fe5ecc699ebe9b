"""
Unit tests for atomic file operations and JSON helpers.
"""

import json
import os
from datetime import date
from unittest.mock import patch

import pytest

from utils.file_ops import atomic_write, atomic_write_json, read_json


class TestAtomicWrite:
    """Tests for atomic_write."""

    def test_writes_content(self, tmp_path):
        target = tmp_path / "out.txt"
        atomic_write(target, "hello")
        assert target.read_text(encoding="utf-8") == "hello"

    def test_creates_parent_directories(self, tmp_path):
        target = tmp_path / "a" / "b" / "out.txt"
        atomic_write(str(target), "x")
        assert target.exists()

    def test_overwrites_existing(self, tmp_path):
        target = tmp_path / "out.txt"
        target.write_text("old", encoding="utf-8")
        atomic_write(target, "new")
        assert target.read_text(encoding="utf-8") == "new"

    def test_no_temp_files_left(self, tmp_path):
        atomic_write(tmp_path / "out.txt", "x")
        assert os.listdir(tmp_path) == ["out.txt"]

    def test_failed_rename_keeps_original_and_cleans_up(self, tmp_path):
        target = tmp_path / "out.txt"
        target.write_text("original", encoding="utf-8")

        with patch("utils.file_ops.os.replace", side_effect=OSError("rename failed")):
            with pytest.raises(OSError):
                atomic_write(target, "new")

        assert target.read_text(encoding="utf-8") == "original"
        assert os.listdir(tmp_path) == ["out.txt"]


class TestJsonHelpers:
    """Tests for atomic_write_json and read_json."""

    def test_round_trip(self, tmp_path):
        target = tmp_path / "store.json"
        atomic_write_json(target, {"b": 1, "a": [1, 2]})

        assert read_json(target) == {"a": [1, 2], "b": 1}
        assert target.read_text(encoding="utf-8").startswith('{\n  "a"')

    def test_missing_file_returns_default(self, tmp_path):
        assert read_json(tmp_path / "absent.json", default={}) == {}

    def test_blank_file_returns_default(self, tmp_path):
        target = tmp_path / "blank.json"
        target.write_text("  \n", encoding="utf-8")
        assert read_json(target, default=[]) == []

    def test_invalid_json_raises(self, tmp_path):
        target = tmp_path / "bad.json"
        target.write_text("{not json", encoding="utf-8")
        with pytest.raises(ValueError):
            read_json(target)

    def test_non_json_values_stringified(self, tmp_path):
        target = tmp_path / "dates.json"
        atomic_write_json(target, {"day": date(2025, 3, 1)})
        assert json.loads(target.read_text(encoding="utf-8")) == {"day": "2025-03-01"}
