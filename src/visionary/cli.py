from __future__ import annotations

import argparse
import json
import os
import sys
from typing import Any, Dict, Iterable, Optional

from tqdm import tqdm

from visionary.capabilities import CapabilityRegistry, build_default_registry
from visionary.errors import OrchestratorError
from visionary.logging import get_logger
from visionary.orchestrator import Orchestrator
from visionary.reader import iter_images
from visionary.render import draw_detections
from visionary.schemas import FinalAnswer, SessionConfig
from visionary.utils.images import ActiveImage
from visionary.writer import JSONDirWriter, safe_stem

logger = get_logger(__name__)


def _add_session_args(p: argparse.ArgumentParser) -> None:
    p.add_argument("--model", default=os.getenv("VISIONARY_MODEL", "gpt-4o-mini"))
    p.add_argument(
        "--api-base",
        default=os.getenv("VISIONARY_API_BASE"),
        help="OpenAI-compatible base URL",
    )
    p.add_argument(
        "--detector",
        choices=["ovd", "vlm"],
        default=os.getenv("VISIONARY_DETECTOR", "ovd"),
        help="Object detection backend: local zero-shot detector or the vision LLM",
    )
    p.add_argument(
        "--ocr",
        choices=["tesseract", "vlm"],
        default=os.getenv("VISIONARY_OCR", "tesseract"),
        help="Text recognition backend",
    )
    p.add_argument(
        "--hf-model",
        default=None,
        help="Hugging Face model id for --detector ovd (e.g., IDEA-Research/grounding-dino-tiny)",
    )
    p.add_argument(
        "--vision-model",
        default=os.getenv("VISIONARY_VISION_MODEL"),
        help="Model used by the vlm backends; defaults to --model",
    )
    p.add_argument(
        "--threshold", type=float, default=0.3, help="Score threshold for detections"
    )
    p.add_argument(
        "--max-rounds",
        type=int,
        default=int(os.getenv("VISIONARY_MAX_TOOL_ROUNDS", "8")),
        help="Maximum tool rounds per message before giving up",
    )
    p.add_argument(
        "--max-workers", type=int, default=int(os.getenv("VISIONARY_MAX_WORKERS", "4"))
    )
    p.add_argument(
        "--timeout",
        type=float,
        default=None,
        help="Seconds allowed per message (model and tool calls included); unset waits forever",
    )


# ----------------------- Ask subcommand -----------------------
def _add_ask_parser(sub: argparse._SubParsersAction) -> None:
    p = sub.add_parser(
        "ask",
        help="Ask one question about one or more images",
        description=(
            "Ask the agent a question about an image, a folder of images, a URL or a text file "
            "listing paths/URLs. Each image gets a fresh conversation."
        ),
    )
    p.add_argument("--input", required=True, help="Image path, URL, folder or list file")
    p.add_argument("--prompt", required=True, help="Question to ask about each image")
    p.add_argument(
        "--out",
        default=None,
        help="Optional output folder; writes <image>.json (answer, turns, tool log, detections) and an annotated <image>.png",
    )
    p.add_argument("--limit", type=int, default=0, help="Process at most N images; 0 processes all")
    _add_session_args(p)
    p.set_defaults(command="ask")


def _config_from_args(args: argparse.Namespace) -> SessionConfig:
    return SessionConfig(
        model=args.model,
        api_base=args.api_base,
        detector=args.detector,
        ocr=args.ocr,
        detector_model=args.hf_model,
        detector_threshold=args.threshold,
        vision_model=args.vision_model,
        max_tool_rounds=args.max_rounds,
        max_workers=args.max_workers,
        timeout=args.timeout,
    )


def session_record(orch: Orchestrator, answer: FinalAnswer | None, error: str | None = None) -> Dict[str, Any]:
    """JSON-able dump of a conversation: turns, tool log and current detections."""
    conv = orch.conversation
    image = conv.active_image
    return {
        "image": image.name if image else None,
        "image_size": list(image.size) if image else None,
        "answer": answer.model_dump(mode="json") if answer else None,
        "error": error,
        "turns": [t.model_dump(mode="json") for t in conv.turns],
        "tool_log": [e.model_dump(mode="json") for e in conv.ledger.entries()],
        "detections": [d.model_dump(mode="json") for d in conv.aggregator.snapshot()],
    }


def _ask_one(
    config: SessionConfig,
    registry: CapabilityRegistry,
    item: dict,
    prompt: str,
    writer: JSONDirWriter | None,
) -> Dict[str, Any]:
    ref = item.get("path") or item.get("url") or "image"
    orch = Orchestrator.from_config(config, registry=registry)
    answer: FinalAnswer | None = None
    error: str | None = None
    try:
        image = ActiveImage.from_item(item)
        answer = orch.handle_user_message(prompt, image=image)
    except OrchestratorError as e:
        error = str(e)
    except (OSError, ValueError) as e:
        logger.error(f"failed to load {ref}: {e}")
        error = f"image load failed: {e}"
    rec = session_record(orch, answer, error)
    if writer is not None:
        stem = safe_stem(ref)
        writer.write(stem, rec)
        if orch.conversation.active_image is not None:
            rendered = draw_detections(
                orch.conversation.active_image.image, orch.conversation.aggregator.snapshot()
            )
            writer.write_image(stem, rendered)
    return {"image": ref, "answer": answer.text if answer else None, "error": error}


def _run_ask(args: argparse.Namespace) -> int:
    config = _config_from_args(args)
    items = list(iter_images(args.input, limit=args.limit if args.limit > 0 else None))
    if not items:
        logger.error(f"no images found under {args.input}")
        return 2
    logger.info(f"found {len(items)} images")
    registry = build_default_registry(config)
    writer = JSONDirWriter(args.out) if args.out else None

    failures = 0
    results = []
    for item in tqdm(items, desc="ask", unit="img", disable=len(items) == 1):
        res = _ask_one(config, registry, item, args.prompt, writer)
        failures += 1 if res["error"] else 0
        results.append(res)

    if len(results) == 1:
        res = results[0]
        print(res["answer"] if res["answer"] is not None else f"error: {res['error']}")
    else:
        for res in results:
            print(json.dumps(res, ensure_ascii=False))
    if writer is not None:
        logger.info(f"done. outputs under {writer.run_dir}")
    return 1 if failures == len(results) else 0


# ----------------------- Chat subcommand -----------------------
CHAT_HELP = """commands:
  /image <path-or-url>   upload a new image (clears detections)
  /detections            list detections gathered for the current image
  /tools                 show the tool call log
  /save <file.png>       save the current image with detections drawn
  /reset                 forget the agent's chat history
  /quit                  exit"""


def _add_chat_parser(sub: argparse._SubParsersAction) -> None:
    p = sub.add_parser(
        "chat",
        help="Interactive conversation about an image",
        description="Chat with the agent; it calls detection and OCR tools to look at the uploaded image.",
    )
    p.add_argument("--image", default=None, help="Optional image to start with")
    _add_session_args(p)
    p.set_defaults(command="chat")


def _chat_command(orch: Orchestrator, line: str) -> bool:
    """Handle a slash command; return False to exit."""
    cmd, _, rest = line.partition(" ")
    rest = rest.strip()
    conv = orch.conversation
    if cmd in ("/quit", "/exit"):
        return False
    if cmd == "/image" and rest:
        orch.upload_image(ActiveImage.from_item({"url": rest} if rest.startswith(("http://", "https://")) else {"path": rest}))
        print(f"[system] Image uploaded: {conv.active_image.name}")  # type: ignore[union-attr]
    elif cmd == "/detections":
        snap = conv.aggregator.snapshot()
        if not snap:
            print("(no detections)")
        for d in snap:
            print(f"  {d.kind.value:6s} {d.label!r} {d.box.rounded()} conf={d.confidence}")
    elif cmd == "/tools":
        for e in conv.ledger.entries():
            print(f"  {e.tool_name} [{e.status.value}] args={e.arguments_snapshot} {e.error or ''}")
    elif cmd == "/save" and rest and conv.active_image is not None:
        draw_detections(conv.active_image.image, conv.aggregator.snapshot()).save(rest)
        print(f"saved {rest}")
    elif cmd == "/reset":
        orch.reset()
    else:
        print(CHAT_HELP)
    return True


def _run_chat(args: argparse.Namespace) -> int:
    config = _config_from_args(args)
    orch = Orchestrator.from_config(config)
    if args.image:
        orch.upload_image(ActiveImage.from_path(args.image))
    print("type a question, or /help for commands")
    while True:
        try:
            line = input("you> ").strip()
        except (EOFError, KeyboardInterrupt):
            print()
            return 0
        if not line:
            continue
        if line.startswith("/"):
            try:
                if not _chat_command(orch, line):
                    return 0
            except (OSError, ValueError) as e:
                print(f"[system] {e}")
            continue
        try:
            answer = orch.handle_user_message(line)
        except OrchestratorError as e:
            print(f"[system] {e}")
            continue
        tools = f" ({len(answer.invocation_ids)} tool calls)" if answer.invocation_ids else ""
        print(f"agent>{tools} {answer.text}")


def parse_args(argv: Optional[Iterable[str]] = None) -> argparse.Namespace:
    p = argparse.ArgumentParser(prog="visionary")
    sub = p.add_subparsers(dest="command")
    sub.required = True

    _add_ask_parser(sub)
    _add_chat_parser(sub)

    return p.parse_args(list(argv) if argv is not None else None)


def main(argv: Optional[Iterable[str]] = None) -> int:
    args = parse_args(argv)
    if args.command == "ask":
        return _run_ask(args)
    if args.command == "chat":
        return _run_chat(args)
    logger.error(f"unknown command: {args.command}")
    return 2


if __name__ == "__main__":
    sys.exit(main())
