from __future__ import annotations

import base64
import os
import uuid
from dataclasses import dataclass, field
from io import BytesIO
from typing import Any, Dict

from PIL import Image
from urllib.parse import urlparse

__all__ = [
    "ActiveImage",
    "encode_jpeg",
    "load_image_bytes_jpeg",
    "load_image_from_item",
    "image_part_from_image",
]


def encode_jpeg(im: Image.Image, quality: int = 95) -> bytes:
    """Re-encode a PIL image as high-quality JPEG bytes."""
    buf = BytesIO()
    im.convert("RGB").save(buf, format="JPEG", quality=quality, optimize=True, subsampling=0)
    return buf.getvalue()


def load_image_bytes_jpeg(path: str) -> bytes:
    """Open an image and re-encode as high-quality JPEG bytes."""
    with Image.open(path) as im:
        return encode_jpeg(im)


def load_image_from_item(item: Dict[str, Any]) -> Image.Image:
    if item.get("image") and isinstance(item.get("image"), Image.Image):
        return item["image"].convert("RGB")
    if item.get("path"):
        with Image.open(item["path"]) as im:
            return im.convert("RGB")
    if item.get("url"):
        import urllib.request

        parsed = urlparse(item["url"])
        if parsed.scheme not in ("http", "https"):
            raise ValueError(
                f"unsupported url scheme for image load: {parsed.scheme or '(none)'}"
            )

        with urllib.request.urlopen(item["url"]) as resp:
            data = resp.read()
        return Image.open(BytesIO(data)).convert("RGB")
    raise ValueError("item must include 'image', 'path' or 'url'")


def image_part_from_image(im: Image.Image) -> Dict[str, Any]:
    """Return an OpenAI chat image_url part carrying the image as a JPEG data URL."""
    b64str = base64.b64encode(encode_jpeg(im)).decode("utf-8")
    return {
        "type": "image_url",
        "image_url": {"url": f"data:image/jpeg;base64,{b64str}"},
    }


@dataclass(frozen=True)
class ActiveImage:
    """The image a conversation is currently about.

    Capabilities only read it; replacing it is the conversation's job.
    """

    image: Image.Image
    name: str = "image"
    id: str = field(default_factory=lambda: uuid.uuid4().hex)

    @property
    def width(self) -> int:
        return self.image.width

    @property
    def height(self) -> int:
        return self.image.height

    @property
    def size(self) -> tuple[int, int]:
        return self.image.size

    def image_part(self) -> Dict[str, Any]:
        return image_part_from_image(self.image)

    @classmethod
    def from_item(cls, item: Dict[str, Any]) -> "ActiveImage":
        """Build from a reader item (``path``/``url``/``image`` plus optional ``id``)."""
        im = load_image_from_item(item)
        ref = item.get("path") or item.get("url") or item.get("id") or "image"
        return cls(image=im, name=os.path.basename(str(ref)) or "image")

    @classmethod
    def from_path(cls, path: str) -> "ActiveImage":
        return cls.from_item({"path": path})
