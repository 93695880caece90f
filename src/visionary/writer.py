from __future__ import annotations

import json
import os
import time
import uuid
from typing import Any, Dict
from urllib.parse import urlparse

from PIL import Image


def safe_stem(image_ref: str) -> str:
	"""Filename stem for a local path or URL; never contains path separators."""
	parsed = urlparse(image_ref)
	if parsed.scheme in ("http", "https"):
		stem = os.path.splitext(os.path.basename(parsed.path))[0] or parsed.netloc
	else:
		stem = os.path.splitext(os.path.basename(image_ref))[0]
	return stem.replace("/", "_").replace("\\", "_").replace(":", "_") or "image"


class JSONDirWriter:
	"""Write per-image session outputs under a unique run directory."""

	def __init__(self, base_dir: str) -> None:
		self.base_dir = base_dir
		os.makedirs(self.base_dir or ".", exist_ok=True)
		ts = time.strftime("%Y%m%d-%H%M%S")
		short = uuid.uuid4().hex[:8]
		self.run_dir = os.path.join(self.base_dir, f"run-{ts}-{short}")
		os.makedirs(self.run_dir, exist_ok=True)

	def write(self, filename: str, record: Dict[str, Any]) -> str:
		if not filename.endswith(".json"):
			filename = f"{filename}.json"
		path = os.path.join(self.run_dir, filename)
		with open(path, "w", encoding="utf-8") as f:
			json.dump(record, f, ensure_ascii=False, indent=2, default=str)
		return path

	def write_image(self, filename: str, image: Image.Image) -> str:
		if not filename.lower().endswith((".png", ".jpg", ".jpeg")):
			filename = f"{filename}.png"
		path = os.path.join(self.run_dir, filename)
		image.save(path)
		return path
