from typing import Any, List, Tuple

import numpy as np

from ..data_structures.device import Device


class RankingExtractor:
    """
    Orders vertices by score with a full key/value sort on the device.

    A full sort does more work than a partial top-k selection but leans on
    the backend's bulk sort. The key, value and scratch buffers live only
    for the duration of one call.
    """

    def __init__(self, device: Device):
        self.device = device

    def ranked(self, scores: Any, k: int, descending: bool = True) -> List[Tuple[int, float]]:
        """
        Return the first ``k`` vertices of the sorted order.

        Args:
            scores: Device array with one score per vertex
            k: Number of entries to return (clamped to the vertex count)
            descending: Highest scores first when True

        Returns:
            List of (vertex id, score) pairs
        """
        if k < 0:
            raise ValueError(f"k must be non-negative, got {k}")
        num_nodes = len(scores)
        k = min(k, num_nodes)
        if k == 0:
            return []

        device = self.device
        keys = device.allocate(num_nodes, scores.dtype)
        values = device.allocate(num_nodes, np.int32)
        try:
            keys[...] = scores
            values[...] = device.xp.arange(num_nodes, dtype=np.int32)
            sorted_keys, sorted_values = device.sort_pairs(keys, values, descending=descending)
            top_keys = device.to_host(sorted_keys[:k])
            top_values = device.to_host(sorted_values[:k])
            del sorted_keys, sorted_values
        finally:
            device.free(keys)
            device.free(values)

        return [(int(v), float(s)) for v, s in zip(top_values, top_keys)]

    def top_ranked(self, scores: Any, k: int) -> List[Tuple[int, float]]:
        """Highest-scored ``k`` vertices, descending by score."""
        return self.ranked(scores, k, descending=True)

    def bottom_ranked(self, scores: Any, k: int) -> List[Tuple[int, float]]:
        """Lowest-scored ``k`` vertices, ascending by score."""
        return self.ranked(scores, k, descending=False)
