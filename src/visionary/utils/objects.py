from __future__ import annotations

from typing import Iterable, TypeVar

from visionary.logging import get_logger

logger = get_logger(__name__)

__all__ = [
    "parse_label_filter",
    "loose_label_filter",
]

D = TypeVar("D")


def parse_label_filter(arg: object) -> list[str]:
    """Split a comma-separated target list into lowercase labels.

    Anything that is not a string (or is blank) means "no filter".
    """
    if not isinstance(arg, str):
        return []
    seen: set[str] = set()
    out: list[str] = []
    for part in arg.split(","):
        s = part.strip().strip("\"'").strip().lower()
        if s and s not in seen:
            seen.add(s)
            out.append(s)
    return out


def loose_label_filter(detections: Iterable[D], targets: list[str]) -> list[D]:
    """Keep detections whose label contains any target (case-insensitive).

    If the filter would drop everything the full list is returned instead, so
    the agent still sees what the model found and can decide for itself.
    """
    items = list(detections)
    if not targets:
        return items
    filtered = [
        d for d in items if any(t in str(getattr(d, "label", "")).lower() for t in targets)
    ]
    if not filtered:
        logger.debug("label filter %s matched nothing; returning %d unfiltered", targets, len(items))
        return items
    return filtered
