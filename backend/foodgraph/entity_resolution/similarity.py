"""Deterministic string similarity helpers for entity resolution."""

from __future__ import annotations

import re
from difflib import SequenceMatcher


_NON_ALNUM_RE = re.compile(r"[^a-z0-9\s]")
_MULTISPACE_RE = re.compile(r"\s+")
MAX_NAME_LENGTH = 255


def normalize_entity_name(value: str) -> str:
    """Canonical storage form: trimmed, lowercase, single-spaced."""

    return _MULTISPACE_RE.sub(" ", value.strip().lower())[:MAX_NAME_LENGTH].strip()


def normalize_entity_text(value: str) -> str:
    """Normalize entity names/aliases for matching."""

    collapsed = _MULTISPACE_RE.sub(" ", value.strip().lower())
    cleaned = _NON_ALNUM_RE.sub("", collapsed)
    return _MULTISPACE_RE.sub(" ", cleaned).strip()


def alias_key(value: str) -> str:
    return " ".join(value.lower().split())


def merge_aliases(existing: list[str], incoming: list[str]) -> list[str]:
    """Order-preserving, case-insensitive alias union."""

    seen = set()
    merged: list[str] = []
    for value in [*existing, *incoming]:
        clean = " ".join(value.strip().split())[:MAX_NAME_LENGTH]
        key = alias_key(clean)
        if not clean or not key or key in seen:
            continue
        seen.add(key)
        merged.append(clean)
    return merged


def token_set_similarity(left: str, right: str) -> float:
    """Return token overlap similarity in [0, 1]."""

    left_tokens = set(normalize_entity_text(left).split())
    right_tokens = set(normalize_entity_text(right).split())
    if not left_tokens or not right_tokens:
        return 0.0
    intersection = len(left_tokens & right_tokens)
    union = len(left_tokens | right_tokens)
    return intersection / union if union else 0.0


def string_similarity(left: str, right: str) -> float:
    """Composite deterministic similarity score."""

    norm_left = normalize_entity_text(left)
    norm_right = normalize_entity_text(right)
    if not norm_left or not norm_right:
        return 0.0
    if norm_left == norm_right:
        return 1.0
    sequence = SequenceMatcher(a=norm_left, b=norm_right).ratio()
    token = token_set_similarity(norm_left, norm_right)
    return max(sequence, token)


def edit_distance(left: str, right: str, *, limit: int | None = None) -> int:
    """Levenshtein distance; stops early once every path exceeds `limit`."""

    if left == right:
        return 0
    if len(left) < len(right):
        left, right = right, left
    if not right:
        return len(left)
    if limit is not None and len(left) - len(right) > limit:
        return limit + 1

    previous = list(range(len(right) + 1))
    for i, left_char in enumerate(left, start=1):
        current = [i]
        for j, right_char in enumerate(right, start=1):
            current.append(
                min(
                    previous[j] + 1,
                    current[j - 1] + 1,
                    previous[j - 1] + (left_char != right_char),
                )
            )
        if limit is not None and min(current) > limit:
            return limit + 1
        previous = current
    return previous[-1]
