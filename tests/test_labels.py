"""
Tests for YOLO class label discovery.
"""

import pytest

from conftest import FakeSession
from detection.labels import (
    SidecarLabelProvider,
    ensure_labels_sidecar,
    labels_from_metadata,
    parse_label_metadata,
    sidecar_path,
)


class TestParseLabelMetadata:
    def test_ultralytics_mapping(self):
        assert parse_label_metadata("{0: 'person', 1: 'bicycle', 2: 'car'}") == ["person", "bicycle", "car"]

    def test_mapping_is_ordered_by_index(self):
        assert parse_label_metadata("{10: 'k', 2: 'c', 1: 'b'}") == ["b", "c", "k"]

    def test_list(self):
        assert parse_label_metadata("['cat', 'dog']") == ["cat", "dog"]

    def test_plain_text(self):
        assert parse_label_metadata("cat, dog\nbird") == ["cat", "dog", "bird"]

    def test_empty(self):
        assert parse_label_metadata("   ") == []


class TestLabelsFromMetadata:
    def test_prefers_names_key(self):
        assert labels_from_metadata({"names": "{0: 'a'}", "labels": "b"}) == ["a"]

    def test_falls_back_to_other_keys(self):
        assert labels_from_metadata({"stride": "32", "classes": "x,y"}) == ["x", "y"]

    def test_indexed_keys(self):
        assert labels_from_metadata({"names1": "dog", "names0": "cat"}) == ["cat", "dog"]

    def test_nothing(self):
        assert labels_from_metadata({}) == []
        assert labels_from_metadata({"author": "someone"}) == []


class TestSidecar:
    def test_path(self, tmp_path):
        assert sidecar_path("yolov8n", tmp_path / "yolov8n.onnx") == tmp_path / "yolov8n.labels.txt"

    def test_provider_reads_non_blank_lines(self, tmp_path):
        (tmp_path / "m.labels.txt").write_text("person\n\n  car \n")
        assert SidecarLabelProvider().get_labels("m", tmp_path / "m.onnx") == ["person", "car"]

    def test_provider_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            SidecarLabelProvider().get_labels("m", tmp_path / "m.onnx")

    def test_ensure_writes_from_metadata(self, tmp_path):
        session = FakeSession([], metadata={"names": "{0: 'person', 1: 'car'}"})

        assert ensure_labels_sidecar("m", tmp_path / "m.onnx", session)
        assert (tmp_path / "m.labels.txt").read_text() == "person\ncar\n"

    def test_ensure_keeps_existing_sidecar(self, tmp_path):
        (tmp_path / "m.labels.txt").write_text("mine\n")
        session = FakeSession([], metadata={"names": "{0: 'person'}"})

        assert ensure_labels_sidecar("m", tmp_path / "m.onnx", session)
        assert (tmp_path / "m.labels.txt").read_text() == "mine\n"

    def test_ensure_without_metadata(self, tmp_path):
        assert not ensure_labels_sidecar("m", tmp_path / "m.onnx", FakeSession([]))
        assert not (tmp_path / "m.labels.txt").exists()
