"""
Tests for the YOLO detector against a fake inference session.
"""

import numpy as np
import pytest

from conftest import FakeSession
from detection.yolo_detector import YoloDetector, clamp_roi
from models.config import YoloOptions
from models.detection import DetectionKind
from models.errors import InvalidArgumentError, InvalidStateError, ShapeMismatchError

LABELS = ["person", "car"]


@pytest.fixture
def options():
    return YoloOptions(input_size=64)


@pytest.fixture
def frame():
    # 128x64 -> scale 0.5, 16px vertical padding in a 64px canvas
    return np.zeros((64, 128, 3), dtype=np.uint8)


class TestClampRoi:
    def test_none_is_full_frame(self):
        assert clamp_roi(None, 100, 50) == (0, 0, 100, 50)

    def test_clamped_to_frame(self):
        assert clamp_roi((-10, 40, 50, 50), 100, 50) == (0, 40, 40, 10)

    def test_outside_frame_is_empty(self):
        x, y, w, h = clamp_roi((200, 0, 10, 10), 100, 50)
        assert w == 0


class TestYoloDetector:
    def test_detections_mapped_to_frame(self, options, frame, yolo_output_nac):
        detector = YoloDetector(FakeSession(yolo_output_nac), options, labels=LABELS)

        results = detector.detect(frame, conf_threshold=0.25)

        assert [r.class_id for r in results] == [0, 1, 0]
        assert [r.label for r in results] == ["person", "car", "person"]
        assert [r.confidence for r in results] == pytest.approx([90.0, 70.0, 60.0])
        first = results[0]
        assert first.success
        assert first.kind is DetectionKind.NEURAL
        assert first.bounding_box.as_tuple() == pytest.approx((48, 24, 80, 40))
        assert first.center_point_in_image == (64, 32)
        assert results[2].center_point_in_image == (20, 48)

    def test_layouts_give_same_results(self, options, frame, yolo_output_nac, yolo_output_anc):
        a = YoloDetector(FakeSession(yolo_output_nac), options).detect(frame)
        b = YoloDetector(FakeSession(yolo_output_anc), options).detect(frame)
        assert a == b

    def test_roi_offsets_results(self, options, yolo_output_nac):
        frame = np.zeros((128, 256, 3), dtype=np.uint8)
        detector = YoloDetector(FakeSession(yolo_output_nac), options)

        results = detector.detect(frame, roi=(64, 32, 128, 64))

        assert results[0].center_point_in_image == (128, 64)
        assert results[0].bounding_box.as_tuple() == pytest.approx((112, 56, 144, 72))

    def test_empty_roi_returns_nothing(self, options, frame, yolo_output_nac):
        session = FakeSession(yolo_output_nac)
        detector = YoloDetector(session, options)

        assert detector.detect(frame, roi=(500, 500, 10, 10)) == []
        assert session.calls == []

    def test_none_frame_returns_nothing(self, options, yolo_output_nac):
        assert YoloDetector(FakeSession(yolo_output_nac), options).detect(None) == []

    def test_class_filter(self, options, frame, yolo_output_nac):
        detector = YoloDetector(FakeSession(yolo_output_nac), options)
        results = detector.detect(frame, class_ids=[1])
        assert [r.class_id for r in results] == [1]

    def test_threshold_filters_and_is_validated(self, options, frame, yolo_output_nac):
        detector = YoloDetector(FakeSession(yolo_output_nac), options)
        assert len(detector.detect(frame, conf_threshold=0.65)) == 2
        assert detector.detect(frame, conf_threshold=0.95) == []
        with pytest.raises(InvalidArgumentError):
            detector.detect(frame, conf_threshold=1.5)

    def test_unknown_class_label_falls_back_to_id(self, options, frame, yolo_output_nac):
        detector = YoloDetector(FakeSession(yolo_output_nac), options, labels=["person"])
        assert detector.detect(frame)[1].label == "1"

    def test_input_tensor(self, options, yolo_output_nac):
        frame = np.zeros((64, 128, 3), dtype=np.uint8)
        frame[:, :] = (0, 0, 255)  # red in BGR
        session = FakeSession(yolo_output_nac, input_name="data")
        YoloDetector(session, options).detect(frame)

        tensor = session.calls[0]["data"]
        assert tensor.shape == (1, 3, 64, 64)
        assert tensor.dtype == np.float32
        assert tensor[0, 0, 32, 32] == pytest.approx(1.0)
        assert tensor[0, 2, 32, 32] == 0.0
        assert tensor[0, 0, 0, 32] == 0.0  # padding

    def test_buffers_are_reused(self, options, frame, yolo_output_nac):
        detector = YoloDetector(FakeSession(yolo_output_nac), options)
        detector.detect(frame)
        canvas, tensor, output = detector.buffers.canvas, detector.buffers.tensor, detector.buffers.output

        detector.detect(np.zeros((100, 60, 3), dtype=np.uint8))

        assert detector.buffers.canvas is canvas
        assert detector.buffers.tensor is tensor
        assert detector.buffers.output is output

    def test_grayscale_frame(self, options, yolo_output_nac):
        detector = YoloDetector(FakeSession(yolo_output_nac), options)
        assert len(detector.detect(np.zeros((64, 128), dtype=np.uint8))) == 3

    def test_shape_change_makes_detector_unusable(self, options, frame, yolo_output_nac):
        changed = np.zeros((1, 12, 6), dtype=np.float32)
        detector = YoloDetector(FakeSession([yolo_output_nac, changed]), options)
        detector.detect(frame)

        with pytest.raises(ShapeMismatchError):
            detector.detect(frame)
        with pytest.raises(InvalidStateError):
            detector.detect(frame)

    def test_close(self, options, frame, yolo_output_nac):
        with YoloDetector(FakeSession(yolo_output_nac), options) as detector:
            detector.detect(frame)

        assert detector.closed
        assert detector.buffers.released
        detector.close()
        with pytest.raises(InvalidStateError):
            detector.detect(frame)
