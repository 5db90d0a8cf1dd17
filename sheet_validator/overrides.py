"""User decisions to exclude a (sheet, column)'s issues from the pass/fail verdict."""

from __future__ import annotations

from typing import Iterable, Mapping


class OverrideSet:
    def __init__(self, pairs: Iterable[tuple[str, str]] = ()):
        self._pairs: set[tuple[str, str]] = set()
        for sheet, column in pairs:
            self.set(sheet, column, True)

    def set(self, sheet: str, column: str, enabled: bool = True) -> None:
        key = (str(sheet), str(column).strip())
        if enabled:
            self._pairs.add(key)
        else:
            self._pairs.discard(key)

    def toggle(self, sheet: str, column: str) -> bool:
        enabled = not self.is_overridden(sheet, column)
        self.set(sheet, column, enabled)
        return enabled

    def is_overridden(self, sheet: str, column: str) -> bool:
        return (str(sheet), str(column).strip()) in self._pairs

    def clear(self) -> None:
        self._pairs.clear()

    def pairs(self) -> list[tuple[str, str]]:
        return sorted(self._pairs)

    def copy(self) -> "OverrideSet":
        return OverrideSet(self._pairs)

    @classmethod
    def from_mapping(cls, mapping: Mapping[tuple[str, str], bool]) -> "OverrideSet":
        """Build from the ``(sheet, column) -> checked`` map a results view feeds back."""
        return cls(key for key, checked in mapping.items() if checked)

    def __contains__(self, key) -> bool:
        sheet, column = key
        return self.is_overridden(sheet, column)

    def __len__(self) -> int:
        return len(self._pairs)

    def __iter__(self):
        return iter(self.pairs())

    def __eq__(self, other) -> bool:
        return isinstance(other, OverrideSet) and self._pairs == other._pairs

    def __repr__(self) -> str:
        return f"OverrideSet({self.pairs()!r})"
