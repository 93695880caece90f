"""Tests for pydantic models and detection parsing."""

from __future__ import annotations

import json

import pytest
from pydantic import ValidationError

from visionary.schemas import (
    CoordinateSpace,
    Detection,
    DetectionKind,
    SessionConfig,
    ToolRequest,
    ToolResult,
    safe_parse_detections,
)


class TestToolRequest:
    def test_coerces_values_to_strings(self) -> None:
        req = ToolRequest(id="1", name="detect_objects", arguments={"target_objects": ["cat", "dog"], "n": 3, "x": None})
        assert req.arguments == {"target_objects": "cat, dog", "n": "3"}

    def test_frozen(self) -> None:
        req = ToolRequest(id="1", name="read_text")
        with pytest.raises(ValidationError):
            req.name = "other"  # type: ignore[misc]


class TestToolResult:
    def test_failure_payload(self) -> None:
        req = ToolRequest(id="1", name="read_text")
        res = ToolResult.failure(req, "read_text failed: timeout")
        assert not res.ok
        assert res.payload() == {"status": "error", "tool": "read_text", "error": "read_text failed: timeout"}

    def test_success_payload_is_copy(self) -> None:
        req = ToolRequest(id="1", name="read_text")
        res = ToolResult.success(req, [], {"status": "success"})
        res.payload()["status"] = "changed"
        assert res.summary["status"] == "success"


class TestSafeParseDetections:
    def test_nested_bbox_and_score(self) -> None:
        raw = json.dumps(
            {"detections": [{"label": "cat", "score": 1.5, "bbox": {"xmin": 1, "ymin": 2, "xmax": 3, "ymax": 4}}]}
        )
        dets, err = safe_parse_detections(raw, kind=DetectionKind.OBJECT, space=None)
        assert err is None
        assert dets[0].confidence == 1.0
        assert dets[0].box.rounded() == [1.0, 2.0, 3.0, 4.0]
        assert dets[0].coordinate_space is None

    def test_skips_bad_items(self) -> None:
        raw = json.dumps({"objects": [{"xmin": 0, "ymin": 0, "xmax": 1, "ymax": 1}, {"label": "no box"}, "nope"]})
        dets, err = safe_parse_detections(raw, kind=DetectionKind.OBJECT, space=CoordinateSpace.NORMALIZED_01)
        assert dets == []
        assert err is None

    def test_bare_list(self) -> None:
        raw = '[{"text": "SALE", "xmin": 1, "ymin": 1, "xmax": 9, "ymax": 9}]'
        dets, err = safe_parse_detections(raw, kind=DetectionKind.TEXT, space=CoordinateSpace.PIXEL_ABSOLUTE)
        assert [d.label for d in dets] == ["SALE"]

    @pytest.mark.parametrize("raw,error", [("not json", "json_load_error"), ('{"objects": 3}', "data_not_list")])
    def test_errors(self, raw, error) -> None:
        dets, err = safe_parse_detections(raw, kind=DetectionKind.OBJECT, space=None)
        assert dets == []
        assert err is not None and err.startswith(error)


class TestSessionConfig:
    def test_env_defaults(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("VISIONARY_MODEL", "qwen2.5-vl")
        monkeypatch.setenv("VISIONARY_MAX_TOOL_ROUNDS", "3")
        monkeypatch.setenv("VISIONARY_DETECTOR", "VLM")
        cfg = SessionConfig()
        assert cfg.model == "qwen2.5-vl"
        assert cfg.max_tool_rounds == 3
        assert cfg.detector == "vlm"

    def test_api_key_from_named_env(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("MY_KEY", "sk-test")
        assert SessionConfig(api_key_env="MY_KEY").api_key == "sk-test"

    @pytest.mark.parametrize(
        "kwargs",
        [{"max_tool_rounds": 0}, {"max_workers": -1}, {"detector": "yolo"}, {"ocr": "easyocr"}, {"detector_threshold": 2}],
    )
    def test_rejects_bad_values(self, kwargs) -> None:
        with pytest.raises(ValidationError):
            SessionConfig(**kwargs)


def test_detection_confidence_bounds() -> None:
    with pytest.raises(ValidationError):
        Detection(label="x", confidence=1.2, box={"xmin": 0, "ymin": 0, "xmax": 1, "ymax": 1})
