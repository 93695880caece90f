"""Tests for the Tesseract capability with pytesseract patched out."""

from __future__ import annotations

from types import SimpleNamespace
from typing import Any

import pytest
from PIL import Image

import visionary.ocr as ocr
from visionary.schemas import CoordinateSpace, DetectionKind

DATA = {
    "text": ["", "Hello", "World", "   ", "faint", "flat"],
    "conf": ["-1", "96.5", 88, "90", "12", "70"],
    "left": [0, 10, 80, 0, 5, 5],
    "top": [0, 20, 20, 0, 5, 5],
    "width": [640, 60, 50, 10, 10, 0],
    "height": [480, 15, 15, 10, 10, 4],
}


def test_words_from_data() -> None:
    words = ocr.words_from_data(DATA)
    assert [w.label for w in words] == ["Hello", "World", "faint"]
    hello = words[0]
    assert hello.box.rounded() == [10.0, 20.0, 70.0, 35.0]
    assert hello.confidence == pytest.approx(0.965)
    assert hello.coordinate_space == CoordinateSpace.PIXEL_ABSOLUTE
    assert hello.kind == DetectionKind.TEXT
    assert hello.source == "tesseract"


def test_words_from_data_min_confidence() -> None:
    assert [w.label for w in ocr.words_from_data(DATA, min_confidence=50)] == ["Hello", "World"]


class TestTesseractOCR:
    def _fake(self, calls: list) -> SimpleNamespace:
        def image_to_data(image: Any, **kwargs: Any):
            calls.append(kwargs)
            return DATA

        return SimpleNamespace(
            get_tesseract_version=lambda: "5.3.0",
            image_to_data=image_to_data,
            Output=SimpleNamespace(DICT="dict"),
        )

    def test_recognize(self, monkeypatch: pytest.MonkeyPatch) -> None:
        calls: list = []
        monkeypatch.setattr(ocr, "pytesseract", self._fake(calls))
        engine = ocr.TesseractOCR(lang="deu")
        words = engine.recognize(Image.new("L", (640, 480)), focus_area="prices")
        assert [w.label for w in words] == ["Hello", "World"]
        assert calls[0]["lang"] == "deu"
        assert calls[0]["output_type"] == "dict"
        assert engine.version == "5.3.0"

    def test_missing_binary_fails_construction(self, monkeypatch: pytest.MonkeyPatch) -> None:
        def missing():
            raise OSError("tesseract is not installed or it's not in your PATH")

        fake = self._fake([])
        fake.get_tesseract_version = missing
        monkeypatch.setattr(ocr, "pytesseract", fake)
        with pytest.raises(OSError):
            ocr.TesseractOCR()
