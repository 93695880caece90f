"""Tests for the zero-shot detector wrapper with the Hugging Face model mocked out."""

from unittest.mock import MagicMock, patch

import pytest
from PIL import Image

pytest.importorskip("torch")
pytest.importorskip("transformers")

from visionary import detection  # noqa: E402
from visionary.schemas import CoordinateSpace, DetectionKind  # noqa: E402


def test_boxes_to_detections_skips_malformed_rows():
    out = detection.boxes_to_detections(
        [[10, 20, 110, 220], [1, 2]],
        [1.4, 0.9],
        ["cat", "dog"],
        source="grounding-dino",
    )
    assert len(out) == 1
    assert out[0].label == "cat"
    assert out[0].confidence == 1.0
    assert out[0].box.rounded() == [10.0, 20.0, 110.0, 220.0]
    assert out[0].coordinate_space == CoordinateSpace.PIXEL_ABSOLUTE
    assert out[0].kind == DetectionKind.OBJECT


def _detector(processed: dict) -> tuple:
    processor = MagicMock()
    processor.return_value.to.return_value = {}
    processor.post_process_grounded_object_detection.return_value = [processed]
    model = MagicMock()
    with patch.object(detection.AutoProcessor, "from_pretrained", return_value=processor), patch.object(
        detection.AutoModelForZeroShotObjectDetection, "from_pretrained"
    ) as load_model:
        load_model.return_value.to.return_value = model
        det = detection.OpenVocabularyDetector("fake/model", device="cpu", threshold=0.4)
    return det, processor


def test_detect_with_targets():
    det, processor = _detector(
        {"boxes": [[0, 0, 50, 50], [10, 10, 30, 30]], "scores": [0.8, 0.6], "text_labels": ["a cat", "dog"]}
    )
    out = det.detect(Image.new("RGB", (100, 80)), ["cat"])

    assert [d.label for d in out] == ["a cat"]
    assert out[0].source == "fake/model"
    call_kwargs = processor.call_args.kwargs
    assert call_kwargs["text"] == [["cat"]]
    post_kwargs = processor.post_process_grounded_object_detection.call_args.kwargs
    assert post_kwargs["threshold"] == 0.4
    assert post_kwargs["target_sizes"] == [(80, 100)]


def test_detect_everything_uses_default_vocabulary():
    det, processor = _detector({"boxes": [], "scores": [], "text_labels": []})
    assert det.detect(Image.new("RGB", (10, 10)), []) == []
    assert processor.call_args.kwargs["text"] == [detection.DEFAULT_VOCABULARY]
