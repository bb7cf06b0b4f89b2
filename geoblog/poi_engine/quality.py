"""
Title quality gate.

Pure functions over a candidate's display name. The generic-noun denylist and the
placeholder markers are configuration (data/quality.yaml); treat them as a
tunable, locale-specific heuristic.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Optional

import yaml

from .config import DATA_DIR

logger = logging.getLogger(__name__)

_HAS_LETTER_RE = re.compile(r"[a-zа-яё]", re.IGNORECASE)
_DIGITS_ONLY_RE = re.compile(r"^\d+$")
_WS_RE = re.compile(r"\s+")

MIN_TITLE_LENGTH = 3

DEFAULT_GENERIC_NAMES = (
    "магазин", "кафе", "ресторан", "отель", "парк", "сквер", "площадь",
    "улица", "дом", "здание", "сооружение", "объект", "место", "точка",
    "shop", "cafe", "restaurant", "hotel", "park", "square", "street",
    "building", "structure", "object", "place", "point", "unnamed",
    "без названия", "неизвестно", "неизвестное место", "название отсутствует",
    "безымянный", "неопознанный", "неопределенный",
)

DEFAULT_PLACEHOLDER_MARKERS = (
    "???", "...", "unnamed", "без названия", "неизвестно", "название отсутствует",
)


@dataclass(frozen=True)
class QualityRules:
    generic_names: frozenset
    placeholder_markers: tuple

    @classmethod
    def from_lists(cls, generic_names: Iterable[str], placeholder_markers: Iterable[str]) -> "QualityRules":
        return cls(
            generic_names=frozenset(str(n).strip().lower() for n in generic_names if str(n).strip()),
            placeholder_markers=tuple(str(m).lower() for m in placeholder_markers if str(m)),
        )


DEFAULT_RULES = QualityRules.from_lists(DEFAULT_GENERIC_NAMES, DEFAULT_PLACEHOLDER_MARKERS)


def load_quality_rules(path: Optional[str] = None) -> QualityRules:
    """Load rules from YAML; missing keys fall back to the built-in lists."""
    p = Path(path) if path else DATA_DIR / "quality.yaml"
    try:
        with open(p, "r", encoding="utf-8") as f:
            cfg = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        logger.warning("quality rules: couldn't load %s (%s); using built-in lists", p, e)
        return DEFAULT_RULES

    return QualityRules.from_lists(
        cfg.get("generic_names") or DEFAULT_GENERIC_NAMES,
        cfg.get("placeholder_markers") or DEFAULT_PLACEHOLDER_MARKERS,
    )


def rejection_reason(title, rules: QualityRules = DEFAULT_RULES, strict: bool = False) -> Optional[str]:
    """Return why `title` fails the gate, or None when it passes."""
    if not isinstance(title, str):
        return "not_a_string"
    trimmed = title.strip()
    if not trimmed:
        return "empty"
    if len(trimmed) < MIN_TITLE_LENGTH:
        return "too_short"
    if _DIGITS_ONLY_RE.match(trimmed):
        return "digits_only"
    if not _HAS_LETTER_RE.search(trimmed):
        return "no_letters"

    lower = trimmed.lower()
    if lower in rules.generic_names:
        return "generic_name"
    if len(lower) >= 2 and lower.startswith('"') and lower.endswith('"'):
        if lower[1:-1].strip() in rules.generic_names:
            return "quoted_generic_name"
    if strict and all(word in rules.generic_names for word in lower.strip('"').split()):
        return "generic_words_only"
    for marker in rules.placeholder_markers:
        if marker in lower:
            return "placeholder"
    return None


def is_valid_title(title, rules: QualityRules = DEFAULT_RULES) -> bool:
    return rejection_reason(title, rules) is None


def is_quality_title(title, rules: QualityRules = DEFAULT_RULES) -> bool:
    """Ingestion-time variant: also rejects titles made only of generic words ("кафе ресторан")."""
    return rejection_reason(title, rules, strict=True) is None


def sanitize_title(title) -> str:
    """
    Trim and collapse whitespace. Returns "" when the result is still too short or
    has no letters; callers treat "" as rejection.
    """
    if not title or not isinstance(title, str):
        return ""
    sanitized = _WS_RE.sub(" ", title.strip())
    if len(sanitized) < MIN_TITLE_LENGTH or not _HAS_LETTER_RE.search(sanitized):
        return ""
    return sanitized
