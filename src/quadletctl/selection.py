"""Selection expressions for choosing which unit entries to install.

An expression is a comma-separated list of terms:

* ``all`` on its own selects every entry;
* ``a-b`` selects the inclusive 1-based range ``a..b``;
* ``n`` selects the entry at 1-based position ``n``;
* anything else selects entries whose destination name equals the term.

Out-of-range positions are silently ignored; duplicates collapse to the first
occurrence. An expression that selects nothing is an error.
"""
from __future__ import annotations

import re
from collections.abc import Iterator, Sequence
from dataclasses import dataclass

from .sources import UnitEntry

ALL_KEYWORD = "all"

_RANGE_RE = re.compile(r"^(\d+)-(\d+)$")
_INDEX_RE = re.compile(r"^\d+$")


class SelectionError(RuntimeError):
    """Raised when a selection expression is empty or matches nothing."""


@dataclass(frozen=True, slots=True)
class SelectionSet:
    """Unique, in-bounds 0-based indices into the candidate list."""

    indices: tuple[int, ...]

    def __iter__(self) -> Iterator[int]:
        return iter(self.indices)

    def __len__(self) -> int:
        return len(self.indices)

    def entries(self, candidates: Sequence[UnitEntry]) -> list[UnitEntry]:
        """Return the selected entries in selection order."""
        return [candidates[index] for index in self.indices]


def parse_selection(expression: str | None, candidates: Sequence[UnitEntry]) -> SelectionSet:
    """Evaluate *expression* against *candidates*."""
    text = (expression or "").strip()
    if not text:
        raise SelectionError("Nothing selected.")

    count = len(candidates)
    if text == ALL_KEYWORD:
        return SelectionSet(indices=tuple(range(count)))

    picked: list[int] = []
    for raw_term in text.split(","):
        term = raw_term.strip()
        if not term:
            continue
        range_match = _RANGE_RE.match(term)
        if range_match:
            start, end = int(range_match.group(1)), int(range_match.group(2))
            picked.extend(position - 1 for position in range(max(start, 1), min(end, count) + 1))
        elif _INDEX_RE.match(term):
            position = int(term)
            if 1 <= position <= count:
                picked.append(position - 1)
        else:
            picked.extend(
                index
                for index, entry in enumerate(candidates)
                if entry.destination_name == term
            )

    if not picked:
        raise SelectionError(f"Selection {text!r} matched nothing.")
    return SelectionSet(indices=tuple(dict.fromkeys(picked)))


__all__ = ["ALL_KEYWORD", "SelectionError", "SelectionSet", "parse_selection"]
