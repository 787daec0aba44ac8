from typing import Any, Callable, Iterator


class RingBuffer:
    """Fixed-capacity arena addressed by slot index.

    Appending to a full buffer overwrites the oldest slot. ``on_evict`` is
    called with the entry being dropped, so owners can release what it holds.
    """

    def __init__(self, capacity: int, on_evict: Callable[[Any], None] | None = None):
        if capacity < 1:
            raise ValueError(f"Capacity must be at least 1, got {capacity}")

        self.capacity = capacity
        self.on_evict = on_evict
        self.evicted: int = 0

        self._slots: list = [None] * capacity
        self._head: int = 0  # next slot to write
        self._size: int = 0

    def append(self, item: Any) -> None:
        if self._size == self.capacity:
            old = self._slots[self._head]
            self.evicted += 1
            if self.on_evict is not None:
                self.on_evict(old)
        else:
            self._size += 1

        self._slots[self._head] = item
        self._head = (self._head + 1) % self.capacity

    def latest(self) -> Any:
        if self._size == 0:
            return None
        return self._slots[(self._head - 1) % self.capacity]

    def clear(self) -> None:
        for item in self:
            if self.on_evict is not None:
                self.on_evict(item)
        self._slots = [None] * self.capacity
        self._head = 0
        self._size = 0

    def __getitem__(self, index: int) -> Any:
        if index < 0:
            index += self._size
        if not 0 <= index < self._size:
            raise IndexError("RingBuffer index out of range")

        start = (self._head - self._size) % self.capacity
        return self._slots[(start + index) % self.capacity]

    def __iter__(self) -> Iterator[Any]:
        start = (self._head - self._size) % self.capacity
        for i in range(self._size):
            yield self._slots[(start + i) % self.capacity]

    def __len__(self) -> int:
        return self._size
