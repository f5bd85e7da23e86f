"""Font metrics used to measure and re-wrap SVG text the way a browser canvas would."""
from __future__ import annotations

import logging
import os
import platform
import re
from functools import lru_cache
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from PIL import ImageFont

logger = logging.getLogger(__name__)

_FONT_FILE_SUFFIXES = {".ttf", ".otf", ".ttc", ".otc"}
_FALLBACK_FAMILIES = ("Inter", "Segoe UI", "DejaVu Sans", "Arial")
_BOLD_WEIGHT = 600
_NON_ALNUM_RE = re.compile(r"[^a-z0-9]+")
_PARAGRAPH_SPLIT_RE = re.compile(r"\r?\n")
_WORD_SPLIT_RE = re.compile(r"\s+")


def _platform_font_directories() -> List[Path]:
    system = platform.system().lower()
    if "windows" in system:
        roots = [Path(os.environ.get("WINDIR", r"C:\Windows")) / "Fonts"]
        local_app_data = os.environ.get("LOCALAPPDATA")
        if local_app_data:
            roots.append(Path(local_app_data) / "Microsoft" / "Windows" / "Fonts")
        return roots
    if "darwin" in system:
        return [
            Path("/System/Library/Fonts"),
            Path("/Library/Fonts"),
            Path.home() / "Library" / "Fonts",
        ]
    return [
        Path("/usr/share/fonts"),
        Path("/usr/local/share/fonts"),
        Path.home() / ".fonts",
        Path.home() / ".local" / "share" / "fonts",
    ]


DEFAULT_FONT_DIRECTORIES: Tuple[Path, ...] = tuple(_platform_font_directories())


def _normalise_family(value: str) -> str:
    return _NON_ALNUM_RE.sub("", value.lower())


@lru_cache(maxsize=8)
def _font_index(directories: Tuple[Path, ...]) -> Dict[str, Path]:
    """Map normalised font file stems (``dejavusansbold``) to font files."""
    index: Dict[str, Path] = {}
    for root in directories:
        if not root.is_dir():
            continue
        for dir_path, _dir_names, file_names in os.walk(root, onerror=lambda _err: None):
            for file_name in sorted(file_names):
                candidate = Path(dir_path) / file_name
                if candidate.suffix.lower() not in _FONT_FILE_SUFFIXES:
                    continue
                index.setdefault(_normalise_family(candidate.stem), candidate)
    return index


def build_font_family_stack(font_family: Optional[str]) -> str:
    """CSS font-family stack with the default sans-serif fallbacks appended."""
    default_stack = 'Inter, "Segoe UI", sans-serif'
    if not font_family:
        return default_stack
    sanitized = font_family.replace('"', "").replace("'", "").strip()
    if not sanitized:
        return default_stack
    primary = f'"{sanitized}"' if re.search(r"\s", sanitized) else sanitized
    return f'{primary}, "Inter", "Segoe UI", sans-serif'


def resolve_font_path(
    font_family: Optional[str],
    font_weight: Optional[int] = None,
    font_dirs: Optional[Iterable[Path]] = None,
) -> Optional[Path]:
    """Find a font file for ``font_family``, walking the fallback stack."""
    directories = tuple(Path(directory) for directory in (font_dirs or ())) + DEFAULT_FONT_DIRECTORIES
    index = _font_index(directories)
    if not index:
        return None

    families: List[str] = []
    if font_family:
        families.append(font_family)
    families.extend(_FALLBACK_FAMILIES)

    bold = font_weight is not None and font_weight >= _BOLD_WEIGHT
    for family in families:
        key = _normalise_family(family)
        if not key:
            continue
        candidates = [f"{key}bold", key] if bold else [key, f"{key}regular"]
        for candidate in candidates:
            if candidate in index:
                return index[candidate]
    return None


@lru_cache(maxsize=64)
def _load_font_file(path: str, size: int) -> Optional[ImageFont.FreeTypeFont]:
    try:
        return ImageFont.truetype(path, size)
    except OSError:
        return None


def load_font(
    font_family: Optional[str],
    font_weight: Optional[int],
    font_size: float,
    font_dirs: Optional[Iterable[Path]] = None,
):
    """Load a Pillow font for measurement, falling back to Pillow's bundled font."""
    effective_size = max(1, int(round(font_size)))
    font_path = resolve_font_path(font_family, font_weight, font_dirs)
    if font_path is not None:
        font = _load_font_file(str(font_path), effective_size)
        if font is not None:
            return font
    logger.debug("No font file for %r; using Pillow default font", font_family)
    return ImageFont.load_default(size=effective_size)


def measure_text_width(font, text: str) -> float:
    if not text:
        return 0.0
    try:
        return float(font.getlength(text))
    except AttributeError:
        left, _, right, _ = font.getbbox(text)
        return float(right - left)


def measure_widest_line(
    lines: Sequence[str],
    font_family: Optional[str],
    font_size: float,
    font_weight: Optional[int] = None,
    font_dirs: Optional[Iterable[Path]] = None,
) -> Optional[float]:
    """Width of the widest rendered line, or ``None`` when nothing measurable."""
    font = load_font(font_family, font_weight, font_size, font_dirs)
    widest = max((measure_text_width(font, line) for line in lines), default=0.0)
    return widest if widest > 0 else None


def wrap_text_to_lines(
    text: str,
    max_width: float,
    font_family: Optional[str],
    font_weight: Optional[int],
    font_size: float,
    font_dirs: Optional[Iterable[Path]] = None,
) -> List[str]:
    """Greedy word wrap of ``text`` so every line fits ``max_width``.

    Explicit newlines always break. A single word wider than ``max_width``
    stays on its own line rather than being split.
    """
    font = load_font(font_family, font_weight, font_size, font_dirs)
    result: List[str] = []

    for paragraph in _PARAGRAPH_SPLIT_RE.split(text):
        if not paragraph.strip():
            result.append("")
            continue

        current = ""
        for word in _WORD_SPLIT_RE.split(paragraph.strip()):
            candidate = f"{current} {word}" if current else word
            if not current or measure_text_width(font, candidate) <= max_width:
                current = candidate
            else:
                result.append(current)
                current = word

        if current:
            result.append(current)

    return result or [""]


__all__ = [
    "DEFAULT_FONT_DIRECTORIES",
    "build_font_family_stack",
    "load_font",
    "measure_text_width",
    "measure_widest_line",
    "resolve_font_path",
    "wrap_text_to_lines",
]
