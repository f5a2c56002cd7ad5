"""Sorted sets of disjoint half-open integer ranges."""

from __future__ import annotations

import bisect
from dataclasses import dataclass
from typing import Iterator, Optional, Union, overload


@dataclass(frozen=True, order=True)
class Range:
    """A half-open range ``[start, end)``."""

    start: int
    end: int


def _check(start: int, end: int) -> None:
    if start > end:
        raise ValueError(f"invalid range: start {start} is above end {end}")


class RangeSet:
    """An ordered list of non-overlapping ranges; touching ranges are merged on add."""

    def __init__(self, start: Optional[int] = None, end: Optional[int] = None) -> None:
        self._ranges: list[Range] = []
        if (start is None) != (end is None):
            raise TypeError("start and end must be given together")
        if start is not None and end is not None:
            _check(start, end)
            self._ranges.append(Range(start, end))

    def add(self, start: int, end: int) -> None:
        """Add ``[start, end)``, merging it with every range it touches or overlaps."""
        _check(start, end)
        if start == end:
            return
        ranges = self._ranges
        lo = bisect.bisect_left(ranges, start, key=lambda r: r.end)
        hi = bisect.bisect_right(ranges, end, key=lambda r: r.start)
        if lo >= hi:
            ranges.insert(lo, Range(start, end))
            return
        merged = Range(min(start, ranges[lo].start), max(end, ranges[hi - 1].end))
        ranges[lo:hi] = [merged]

    def subtract(self, start: int, end: int) -> None:
        """Remove ``[start, end)`` from the set, dropping ranges that become empty."""
        _check(start, end)
        if start == end:
            return
        result: list[Range] = []
        for r in self._ranges:
            if r.start < end and r.end > start:
                if r.start < start:
                    result.append(Range(r.start, start))
                if end < r.end:
                    result.append(Range(end, r.end))
            else:
                result.append(r)
        self._ranges = result

    def drop(self, begin_index: int, end_index: int) -> None:
        """Remove the ranges at indices ``begin_index`` up to, not including, ``end_index``."""
        if not 0 <= begin_index < end_index <= len(self._ranges):
            raise ValueError(f"invalid index span [{begin_index}, {end_index})")
        del self._ranges[begin_index:end_index]

    def clear(self) -> None:
        self._ranges.clear()

    def __len__(self) -> int:
        return len(self._ranges)

    def __iter__(self) -> Iterator[Range]:
        return iter(self._ranges)

    @overload
    def __getitem__(self, index: int) -> Range: ...

    @overload
    def __getitem__(self, index: slice) -> list[Range]: ...

    def __getitem__(self, index: Union[int, slice]) -> Union[Range, list[Range]]:
        return self._ranges[index]

    def __eq__(self, other: object) -> bool:
        if isinstance(other, RangeSet):
            return self._ranges == other._ranges
        return NotImplemented

    def __repr__(self) -> str:
        inner = ", ".join(f"[{r.start}, {r.end})" for r in self._ranges)
        return f"RangeSet({inner})"