from collections import OrderedDict
from typing import List

from app.config import PRIORITY_SET_CAPACITY


class PrioritySet:
    """
    Bounded, deduplicated set of order codes, most recently touched first.

    Touching a code already present moves it to the front. Past capacity the
    least recently touched code is dropped.
    """

    def __init__(self, capacity: int = PRIORITY_SET_CAPACITY):
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self.capacity = capacity
        # Ordered oldest -> newest; snapshot() reverses it
        self._entries: "OrderedDict[str, None]" = OrderedDict()

    def touch(self, order_code: str) -> None:
        if order_code in self._entries:
            self._entries.move_to_end(order_code)
        else:
            self._entries[order_code] = None
        while len(self._entries) > self.capacity:
            self._entries.popitem(last=False)

    def drain(self) -> List[str]:
        codes = self.snapshot()
        self._entries.clear()
        return codes

    def snapshot(self) -> List[str]:
        return list(reversed(self._entries))

    def __contains__(self, order_code: str) -> bool:
        return order_code in self._entries

    def __len__(self) -> int:
        return len(self._entries)
