"""
Tests for the YOLO model manager.
"""

import threading

import numpy as np
import pytest

from conftest import MODEL_BYTES, FakeSession, fake_http
from detection.yolo_manager import YoloManager, index_of_label
from models.config import YoloOptions
from models.detection import DetectionKind
from models.errors import ProvisioningError, ShapeMismatchError
from models.registry import ModelRegistry
from provisioning import ModelProvisioner

METADATA = {"names": "{0: 'person', 1: 'car'}"}


@pytest.fixture
def provisioner(registry_text, tmp_path):
    return ModelProvisioner(
        ModelRegistry.from_declaration(registry_text),
        tmp_path / "models",
        session=fake_http(MODEL_BYTES),
        chunk_size=1000,
    )


@pytest.fixture
def sessions(yolo_output_nac):
    created = []

    def factory(path, options):
        session = FakeSession(yolo_output_nac, metadata=METADATA)
        created.append((path, session))
        return session

    factory.created = created
    return factory


@pytest.fixture
def manager(provisioner, sessions):
    return YoloManager(provisioner, YoloOptions(input_size=64), session_factory=sessions)


@pytest.fixture
def frame():
    return np.zeros((64, 128, 3), dtype=np.uint8)


class TestIndexOfLabel:
    def test_case_insensitive(self):
        assert index_of_label(["Person", "car"], "PERSON") == 0
        assert index_of_label(["Person", "car"], " car ") == 1
        assert index_of_label(["Person", "car"], "dog") == -1


class TestYoloManager:
    def test_ensure_model_provisions_and_loads(self, manager, provisioner, sessions):
        detector = manager.ensure_model("tiny")

        assert manager.has_session("tiny")
        assert detector.labels == ["person", "car"]
        assert provisioner.labels_path("tiny").read_text() == "person\ncar\n"
        assert sessions.created[0][0] == str(provisioner.artifact_path("tiny"))

    def test_model_is_loaded_once(self, manager, sessions):
        first = manager.ensure_model("tiny")
        assert manager.ensure_model("tiny") is first
        assert len(sessions.created) == 1

    def test_concurrent_loads_create_one_session(self, manager, sessions):
        barrier = threading.Barrier(4)

        def worker():
            barrier.wait()
            manager.ensure_model("tiny")

        threads = [threading.Thread(target=worker) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(sessions.created) == 1

    def test_detect_best_match_of_class(self, manager, frame):
        result = manager.detect("tiny", "car", frame, 0.25)

        assert result.success
        assert result.label == "car"
        assert result.class_id == 1
        assert result.confidence == pytest.approx(70.0)

    def test_detect_person(self, manager, frame):
        result = manager.detect("tiny", "Person", frame, 0.25)
        assert result.center_point_in_image == (64, 32)
        assert result.confidence == pytest.approx(90.0)

    def test_detect_unknown_label(self, manager, frame):
        result = manager.detect("tiny", "zebra", frame, 0.25)
        assert not result.success
        assert result.kind is DetectionKind.NEURAL

    def test_detect_below_threshold(self, manager, frame):
        assert not manager.detect("tiny", "car", frame, 0.8).success

    def test_detect_unknown_model_raises(self, manager, frame):
        with pytest.raises(ProvisioningError):
            manager.detect("nope", "person", frame, 0.25)

    def test_unload_and_close(self, manager):
        detector = manager.ensure_model("tiny")

        assert manager.unload_model("tiny") is True
        assert detector.closed
        assert not manager.has_session("tiny")
        assert manager.unload_model("tiny") is False

        manager.ensure_model("tiny")
        manager.close()
        assert not manager.has_session("tiny")

    def test_available_models(self, manager):
        assert manager.available_models() == []
        manager.ensure_model("tiny")
        assert manager.available_models() == ["tiny"]

    def test_classes_for_model(self, manager, provisioner):
        assert manager.classes_for_model("tiny") == []

        manager.ensure_model("tiny")
        assert manager.classes_for_model("tiny") == ["person", "car"]

        manager.unload_model("tiny")
        assert manager.classes_for_model("tiny") == ["person", "car"]

        provisioner.labels_path("tiny").unlink()
        assert manager.classes_for_model("tiny") == []

    def test_progress_is_forwarded(self, manager):
        events = []
        manager.subscribe(events.append)
        manager.ensure_model("tiny")
        assert events[-1].progress_percent == 100

    def test_shape_mismatch_evicts_detector(self, provisioner, yolo_output_nac, frame):
        changed = np.zeros((1, 12, 6), dtype=np.float32)
        created = []

        def factory(path, options):
            outputs = [yolo_output_nac, changed] if not created else yolo_output_nac
            session = FakeSession(outputs, metadata=METADATA)
            created.append(session)
            return session

        manager = YoloManager(provisioner, YoloOptions(input_size=64), session_factory=factory)
        first = manager.ensure_model("tiny")

        assert manager.detect("tiny", "car", frame, 0.25).success
        with pytest.raises(ShapeMismatchError):
            manager.detect("tiny", "car", frame, 0.25)

        assert first.closed
        assert not manager.has_session("tiny")
        assert manager.detect("tiny", "car", frame, 0.25).success
        assert len(created) == 2
