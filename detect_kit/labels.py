from __future__ import annotations

from pathlib import Path
from typing import Iterator, Sequence, Tuple, Union

from .errors import LabelIndexError

PathLike = Union[str, Path]


class LabelTable(Sequence[str]):
    """
    Immutable, index-addressable class names.

    Built from a newline-delimited text blob; empty lines are dropped. Lines
    are otherwise kept verbatim (a trailing "\\r" from CRLF files stays part of
    the label).
    """

    __slots__ = ("_names",)

    def __init__(self, names: Sequence[str]):
        self._names: Tuple[str, ...] = tuple(names)

    @classmethod
    def from_text(cls, text: str) -> "LabelTable":
        return cls([line for line in text.split("\n") if line])

    def __getitem__(self, index):  # type: ignore[override]
        return self._names[index]

    def __len__(self) -> int:
        return len(self._names)

    def __iter__(self) -> Iterator[str]:
        return iter(self._names)

    def __eq__(self, other: object) -> bool:
        if isinstance(other, LabelTable):
            return self._names == other._names
        return NotImplemented

    def __hash__(self) -> int:
        return hash(self._names)

    def __repr__(self) -> str:
        return f"LabelTable({len(self._names)} labels)"

    def resolve(self, index: int) -> str:
        """
        Name for a decoded class index. Negative indices are not wrapped.
        """

        if index < 0 or index >= len(self._names):
            raise LabelIndexError(index, len(self._names))
        return self._names[index]


def load_labels(path: PathLike) -> LabelTable:
    """
    Load a label file (one class name per line, UTF-8).
    """

    p = Path(path)
    if not p.exists():
        raise FileNotFoundError(f"Label file not found: {p}")
    # newline="" keeps "\r" so files decode exactly like an in-memory blob.
    with open(p, "r", encoding="utf-8", newline="") as f:
        return LabelTable.from_text(f.read())
