"""
Offset-ordered placement list.

Singly linked list of placed buffers, kept in ascending offset order, whose
entries live in a fixed pool of carved LIST_ENTRY_DTYPE records. Links are
pool indices; -1 marks the end of the chain in storage and is surfaced as
None to Python callers.
"""

from typing import Iterator, Optional

import numpy as np

END_OF_LIST = -1


class OffsetOrderedList:
    """Placed buffers in ascending offset order, backed by a carved entry pool"""

    def __init__(self, entries: np.ndarray):
        self._entries = entries
        self._first_entry_index: Optional[int] = None
        self._next_free_entry = 0

    def reset(self):
        """Forget every entry (the pool is reused from the start)"""
        self._first_entry_index = None
        self._next_free_entry = 0

    @property
    def first_index(self) -> Optional[int]:
        return self._first_entry_index

    @property
    def capacity(self) -> int:
        return len(self._entries)

    def __len__(self) -> int:
        return self._next_free_entry

    def offset_of(self, entry_index: int) -> int:
        return int(self._entries[entry_index]['offset'])

    def requirements_index_of(self, entry_index: int) -> int:
        return int(self._entries[entry_index]['requirements_index'])

    def next_of(self, entry_index: int) -> Optional[int]:
        next_index = int(self._entries[entry_index]['next_entry_index'])
        return None if next_index == END_OF_LIST else next_index

    def __iter__(self) -> Iterator[int]:
        """Entry indices in offset order"""
        entry_index = self._first_entry_index
        while entry_index is not None:
            yield entry_index
            entry_index = self.next_of(entry_index)

    def insert(self, offset: int, requirements_index: int) -> int:
        """
        Add a placed buffer, keeping offset order.

        Entries with an equal offset stay ahead of the new one.

        Returns:
            Pool index of the new entry
        """
        if self._next_free_entry >= len(self._entries):
            raise IndexError(f"offset list full ({len(self._entries)} entries)")

        new_index = self._next_free_entry
        self._next_free_entry += 1
        new_entry = self._entries[new_index]
        new_entry['offset'] = offset
        new_entry['requirements_index'] = requirements_index

        first = self._first_entry_index
        if first is None or self.offset_of(first) > offset:
            new_entry['next_entry_index'] = END_OF_LIST if first is None else first
            self._first_entry_index = new_index
            return new_index

        current = first
        while True:
            next_index = self.next_of(current)
            if next_index is None or self.offset_of(next_index) > offset:
                new_entry['next_entry_index'] = END_OF_LIST if next_index is None else next_index
                self._entries[current]['next_entry_index'] = new_index
                return new_index
            current = next_index

    def next_simultaneously_active(self, start: Optional[int], first_time_used: int,
                                   last_time_used: int, requirements: np.ndarray) -> Optional[int]:
        """
        First entry after start whose buffer is alive during the given interval.

        Args:
            start: Entry to search after, None to search from the head
            first_time_used: Start of the interval (inclusive)
            last_time_used: End of the interval (inclusive)
            requirements: Carved buffer records the entries refer to

        Returns:
            Pool index of the entry, or None if there is none
        """
        candidate = self._first_entry_index if start is None else self.next_of(start)
        while candidate is not None:
            record = requirements[self.requirements_index_of(candidate)]
            if not (record['first_time_used'] > last_time_used or
                    first_time_used > record['last_time_used']):
                return candidate
            candidate = self.next_of(candidate)
        return None
