"""Aspect-ratio negotiation.

Providers only accept a small fixed set of ratios or sizes. User input
(``WxH``, ``WXH`` or ``W:H``) is snapped to the closest supported value:

1. exact lookup table,
2. parsed ratio, nearest candidate by absolute difference,
3. default when the input cannot be parsed.
"""

from __future__ import annotations

import logging
import re
from typing import Iterable, Mapping

logger = logging.getLogger(__name__)

_SIZE_RE = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*[xX:]\s*(\d+(?:\.\d+)?)\s*$")

# Flux, Kling and similar ratio-enum providers
STANDARD_RATIOS = ("21:9", "16:9", "4:3", "1:1", "3:4", "9:16", "9:21")

SIZE_TO_ASPECT_RATIO: dict[str, str] = {
    "1024x1024": "1:1",
    "512x512": "1:1",
    "768x768": "1:1",
    "1024x768": "4:3",
    "1536x1152": "4:3",
    "768x1024": "3:4",
    "1152x1536": "3:4",
    "1920x1080": "16:9",
    "1792x1008": "16:9",
    "1344x756": "16:9",
    "1080x1920": "9:16",
    "1008x1792": "9:16",
    "756x1344": "9:16",
    "2560x1080": "21:9",
    "1792x756": "21:9",
    "1080x2560": "9:21",
    "756x1792": "9:21",
    **{ratio: ratio for ratio in STANDARD_RATIOS},
}


def parse_ratio(value: str) -> float | None:
    """``"1024x768"`` / ``"4:3"`` → width / height, or None."""
    match = _SIZE_RE.match(value or "")
    if not match:
        return None
    width, height = float(match.group(1)), float(match.group(2))
    if width <= 0 or height <= 0:
        return None
    return width / height


def snap_to_nearest(
    size_input: str | None,
    candidates: Iterable[str],
    default: str = "1:1",
    lookup: Mapping[str, str] | None = None,
) -> str:
    """Snap ``size_input`` onto one of ``candidates``.

    Candidates may be ratios (``16:9``) or sizes (``1536x1024``); both are
    compared by their width/height ratio.
    """
    candidates = list(candidates)
    if not size_input:
        return default

    if lookup and size_input in lookup and lookup[size_input] in candidates:
        return lookup[size_input]
    if size_input in candidates:
        return size_input

    ratio = parse_ratio(size_input)
    if ratio is None:
        logger.warning("Unable to parse size %r, using default %s", size_input, default)
        return default

    best = default
    best_diff = float("inf")
    for candidate in candidates:
        candidate_ratio = parse_ratio(candidate)
        if candidate_ratio is None:
            continue
        diff = abs(ratio - candidate_ratio)
        if diff < best_diff:
            best, best_diff = candidate, diff
    return best


def to_aspect_ratio(size_input: str | None, default: str = "1:1") -> str:
    """Snap onto the standard seven-ratio set."""
    return snap_to_nearest(size_input, STANDARD_RATIOS, default, SIZE_TO_ASPECT_RATIO)
