"""Tests for CLI functionality."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, List

import pytest

import visionary.cli as cli_mod
from conftest import ScriptedModel, call, reply
from visionary.capabilities import DETECT_OBJECTS
from visionary.cli import main, parse_args
from visionary.dispatcher import CapabilityDispatcher
from visionary.orchestrator import Orchestrator


@pytest.fixture
def patched_cli(monkeypatch: pytest.MonkeyPatch, registry):
    """Route the CLI through scripted models and fake capabilities."""
    configs: List[Any] = []
    fake_registry = registry

    def fake_from_config(config, registry=None):
        configs.append(config)
        model = ScriptedModel([reply(None, call("c1", DETECT_OBJECTS, target_objects="cat")), reply("One cat.")])
        chosen = registry if registry is not None else fake_registry
        return Orchestrator(model, CapabilityDispatcher(chosen), config=config)

    monkeypatch.setattr(cli_mod, "build_default_registry", lambda config: registry)
    monkeypatch.setattr(cli_mod.Orchestrator, "from_config", staticmethod(fake_from_config))
    return configs


class TestAsk:
    def test_single_image_with_outputs(
        self, tmp_path: Path, test_image_path: Path, patched_cli, capsys: pytest.CaptureFixture[str]
    ) -> None:
        out_dir = tmp_path / "out"
        rc = main(
            [
                "ask",
                "--input",
                str(test_image_path),
                "--prompt",
                "how many cats?",
                "--out",
                str(out_dir),
                "--model",
                "test-model",
                "--max-rounds",
                "3",
            ]
        )

        assert rc == 0
        assert capsys.readouterr().out.strip() == "One cat."
        assert patched_cli[0].model == "test-model"
        assert patched_cli[0].max_tool_rounds == 3

        (run_dir,) = list(out_dir.iterdir())
        record = json.loads((run_dir / "photo.json").read_text())
        assert record["answer"]["text"] == "One cat."
        assert record["image_size"] == [64, 48]
        assert [e["status"] for e in record["tool_log"]] == ["success"]
        assert record["detections"][0]["label"] == "cat"
        assert [t["role"] for t in record["turns"]] == ["system", "user", "agent", "agent"]
        assert (run_dir / "photo.png").exists()

    def test_folder_prints_json_lines(
        self, tmp_path: Path, test_image_path: Path, patched_cli, capsys: pytest.CaptureFixture[str]
    ) -> None:
        folder = tmp_path / "imgs"
        folder.mkdir()
        for name in ("a.jpg", "b.jpg"):
            (folder / name).write_bytes(test_image_path.read_bytes())

        rc = main(["ask", "--input", str(folder), "--prompt", "cats?"])

        assert rc == 0
        lines = [json.loads(line) for line in capsys.readouterr().out.strip().splitlines()]
        assert [Path(r["image"]).name for r in lines] == ["a.jpg", "b.jpg"]
        assert all(r["answer"] == "One cat." and r["error"] is None for r in lines)
        assert len(patched_cli) == 2

    def test_unreadable_image_is_reported(
        self, tmp_path: Path, patched_cli, capsys: pytest.CaptureFixture[str]
    ) -> None:
        bad = tmp_path / "broken.jpg"
        bad.write_bytes(b"not an image")
        rc = main(["ask", "--input", str(bad), "--prompt", "?"])
        assert rc == 1
        assert capsys.readouterr().out.startswith("error: image load failed")

    def test_empty_folder(self, tmp_path: Path, patched_cli) -> None:
        assert main(["ask", "--input", str(tmp_path), "--prompt", "?"]) == 2


class TestChat:
    def test_repl_session(
        self,
        test_image_path: Path,
        patched_cli,
        monkeypatch: pytest.MonkeyPatch,
        capsys: pytest.CaptureFixture[str],
    ) -> None:
        lines = iter(["", "how many cats?", "/detections", "/tools", "/bogus", "/quit"])
        monkeypatch.setattr("builtins.input", lambda prompt="": next(lines))

        rc = main(["chat", "--image", str(test_image_path)])

        assert rc == 0
        out = capsys.readouterr().out
        assert "agent> (1 tool calls) One cat." in out
        assert "'cat'" in out
        assert "detect_objects [success]" in out
        assert "/image <path-or-url>" in out

    def test_eof_exits(self, patched_cli, monkeypatch: pytest.MonkeyPatch) -> None:
        def _eof(prompt: str = "") -> str:
            raise EOFError

        monkeypatch.setattr("builtins.input", _eof)
        assert main(["chat"]) == 0

    def test_question_without_image(
        self, patched_cli, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
    ) -> None:
        lines = iter(["what is this?", "/quit"])
        monkeypatch.setattr("builtins.input", lambda prompt="": next(lines))
        assert main(["chat"]) == 0
        assert "One cat." in capsys.readouterr().out


def test_parse_args_requires_subcommand() -> None:
    with pytest.raises(SystemExit):
        parse_args([])


def test_parse_args_defaults() -> None:
    args = parse_args(["ask", "--input", "x.jpg", "--prompt", "hi", "--detector", "vlm", "--ocr", "vlm"])
    assert args.command == "ask"
    assert args.limit == 0
    assert args.out is None
    assert (args.detector, args.ocr) == ("vlm", "vlm")
