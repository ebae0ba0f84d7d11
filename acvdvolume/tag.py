"""Cheap per-item tagging that is reset in constant time."""

from __future__ import annotations

MAX_TIME = 2**31 - 1


class Tag:
    """Marks items as tagged for the current time stamp.

    Resetting only advances the time stamp, so clearing all tags costs
    nothing until the counter overflows.
    """

    def __init__(self) -> None:
        self._last_tag: list[int] = []
        self.time = 0

    def __len__(self) -> int:
        return len(self._last_tag)

    def _check(self, item: int) -> None:
        if not 0 <= item < len(self._last_tag):
            raise IndexError(f"item {item} out of range 0..{len(self._last_tag) - 1}")

    def _reset_counter(self) -> None:
        self.time = 0
        self._last_tag = [-1] * len(self._last_tag)

    def set_number_of_items(self, count: int) -> None:
        """Resize to ``count`` items, all untagged."""
        if count < 0:
            raise ValueError("number of items must not be negative")
        self._last_tag = [-1] * count
        self._reset_counter()

    def reset(self) -> None:
        """Untag every item."""
        if self.time == MAX_TIME:
            self._reset_counter()
        else:
            self.time += 1

    def is_tagged(self, item: int) -> bool:
        self._check(item)
        return self._last_tag[item] == self.time

    def tag(self, item: int) -> None:
        self._check(item)
        self._last_tag[item] = self.time

    def untag(self, item: int) -> None:
        self._check(item)
        self._last_tag[item] = self.time - 1


class TagWithList(Tag):
    """A tag that also remembers which items were tagged, in order."""

    def __init__(self) -> None:
        super().__init__()
        self._tagged_items: list[int] = []

    @property
    def tagged_items(self) -> list[int]:
        """Items tagged since the last reset, in tagging order."""
        return list(self._tagged_items)

    def reset(self) -> None:
        self._tagged_items.clear()
        super().reset()

    def tag(self, item: int) -> None:
        if not self.is_tagged(item):
            self._tagged_items.append(item)
        super().tag(item)