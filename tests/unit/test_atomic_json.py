"""
Unit tests for atomic file writes.
"""

import json
import os
from unittest.mock import patch

import pytest

from salesindex.utils import atomic_write_json, atomic_write_text


@pytest.mark.unit
class TestAtomicWrite:
    def test_writes_pretty_json_with_newline(self, tmp_path):
        target = tmp_path / "out.json"
        atomic_write_json(target, {"b": 1, "a": [1, 2]})

        content = target.read_text()
        assert content.endswith("}\n")
        assert json.loads(content) == {"b": 1, "a": [1, 2]}
        assert '\n  "b": 1' in content

    def test_creates_parent_directories(self, tmp_path):
        target = tmp_path / "nested" / "deeper" / "out.json"
        atomic_write_json(target, [])
        assert json.loads(target.read_text()) == []

    def test_unserializable_data_raises_value_error(self, tmp_path):
        target = tmp_path / "out.json"
        target.write_text("original")
        with pytest.raises(ValueError):
            atomic_write_json(target, {"bad": object()})
        assert target.read_text() == "original"

    def test_failed_replace_keeps_original_and_cleans_up(self, tmp_path):
        target = tmp_path / "out.json"
        target.write_text("original")

        with patch("salesindex.utils.atomic.os.replace", side_effect=OSError("disk full")):
            with pytest.raises(OSError):
                atomic_write_text(target, "new content")

        assert target.read_text() == "original"
        assert sorted(os.listdir(tmp_path)) == ["out.json"]

    def test_unicode_preserved(self, tmp_path):
        target = tmp_path / "out.json"
        atomic_write_json(target, {"name": "ünïcødé"})
        assert "ünïcødé" in target.read_text(encoding="utf-8")
