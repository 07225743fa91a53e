"""
Placement Order

Decides the order in which buffers are handed to the greedy placement engine:
offline (caller-pinned) buffers first, in registration order, then online
buffers by first_time_used ascending and, among buffers created together,
last_time_used descending so the longest-lived one is placed first.
"""

import numpy as np

from memplan.core.structures import ONLINE_PLANNED_BUFFER


def sort_two_level(primary, secondary, ids) -> None:
    """
    Stable in-place reorder of three parallel sequences.

    Primary key ascending, secondary key descending. Entries with equal keys
    keep their relative order.

    Args:
        primary: First-level keys (ascending)
        secondary: Second-level keys (descending)
        ids: Payload reordered alongside the keys
    """
    if not (len(primary) == len(secondary) == len(ids)):
        raise ValueError(
            f"sequences differ in length: {len(primary)}, {len(secondary)}, {len(ids)}"
        )
    if len(primary) < 2:
        return

    primary_keys = np.asarray(primary, dtype=np.int64)
    secondary_keys = np.asarray(secondary, dtype=np.int64)
    ids_values = np.asarray(ids)

    # lexsort sorts by the last key first and is stable
    order = np.lexsort((-secondary_keys, primary_keys))

    primary[:] = primary_keys[order].tolist()
    secondary[:] = secondary_keys[order].tolist()
    ids[:] = ids_values[order].tolist()


def build_placement_order(requirements: np.ndarray, buffer_count: int,
                          created_sorted: np.ndarray,
                          last_used_sorted: np.ndarray,
                          ids_sorted: np.ndarray) -> int:
    """
    Fill the carved sort arrays with the placement order.

    Args:
        requirements: Carved buffer records (BUFFER_RECORD_DTYPE)
        buffer_count: Number of registered buffers
        created_sorted: Receives first_time_used per placement slot
        last_used_sorted: Receives last_time_used per placement slot
        ids_sorted: Receives the buffer index per placement slot

    Returns:
        Number of offline buffers at the head of the order
    """
    records = requirements[:buffer_count]
    offline = records['offline_offset'] != ONLINE_PLANNED_BUFFER

    # Registration order within each partition
    ordered = np.concatenate((np.flatnonzero(offline), np.flatnonzero(~offline)))
    offline_count = int(offline.sum())

    ids_sorted[:buffer_count] = ordered
    created_sorted[:buffer_count] = records['first_time_used'][ordered]
    last_used_sorted[:buffer_count] = records['last_time_used'][ordered]

    sort_two_level(created_sorted[offline_count:buffer_count],
                   last_used_sorted[offline_count:buffer_count],
                   ids_sorted[offline_count:buffer_count])
    return offline_count
