import threading
from typing import Dict

import numpy as np

from ..errors import ResourceExhaustionError


class HostAtomicAccumulator:
    """
    Atomic scatter-add into a shared host array.

    Concurrent ``add`` calls never touch the target directly: every thread
    accumulates into its own private buffer and ``merge`` folds the buffers
    into the target once all tasks of the pass are done. The result is the
    same as if every add had been applied atomically to the target, with no
    locks on the hot path.
    """

    def __init__(self, target: np.ndarray):
        self.target = target
        self._partials: Dict[int, np.ndarray] = {}

    def add(self, indices: np.ndarray, values: np.ndarray) -> None:
        """Add ``values[i]`` into ``target[indices[i]]`` for every i."""
        key = threading.get_ident()
        partial = self._partials.get(key)
        if partial is None:
            try:
                partial = np.zeros(self.target.shape, dtype=np.float64)
            except MemoryError as exc:
                raise ResourceExhaustionError(
                    f"could not allocate a {self.target.size}-slot accumulator buffer"
                ) from exc
            self._partials[key] = partial
        partial += np.bincount(indices, weights=values, minlength=self.target.size)

    def merge(self) -> None:
        """Fold all private buffers into the target and drop them."""
        partials, self._partials = self._partials, {}
        if not partials:
            return
        buffers = iter(partials.values())
        # fold into the first buffer instead of stacking them all
        total = next(buffers)
        for partial in buffers:
            total += partial
        self.target += total.astype(self.target.dtype, copy=False)
