from typing import Any

from ..data_structures.device import Device


class PageRankState:
    """
    Per-vertex arrays owned by one PageRank solver.

    Every vector is allocated with one slot more than the vertex count. The
    stages only ever touch the first ``num_nodes`` entries (exposed as the
    ``prev``, ``curr``, ``contribution`` and ``abs_diff`` views), so the spare
    slot stays zero and out-of-range reads by the reduction stay harmless.
    """

    FIELDS = ("prev_score", "curr_score", "contribution", "abs_diff", "reduction")

    def __init__(self, device: Device, num_nodes: int, dtype: Any):
        """
        Allocate the state arrays.

        Args:
            device: Device to allocate on
            num_nodes: Number of vertices
            dtype: Score element type

        Raises:
            ResourceExhaustionError: If any array cannot be allocated; arrays
                allocated before the failure are released first
        """
        self.device = device
        self.num_nodes = num_nodes
        self.dtype = dtype

        arrays = {}
        try:
            arrays["prev_score"] = device.allocate(num_nodes + 1, dtype, fill=0)
            arrays["curr_score"] = device.allocate(num_nodes + 1, dtype, fill=0)
            arrays["contribution"] = device.allocate(num_nodes + 1, dtype, fill=0)
            arrays["abs_diff"] = device.allocate(num_nodes + 1, dtype, fill=0)
            arrays["reduction"] = device.allocate(1, dtype, fill=0)
        except Exception:
            for array in arrays.values():
                device.free(array)
            raise

        self.prev_score = arrays["prev_score"]
        self.curr_score = arrays["curr_score"]
        self.contribution = arrays["contribution"]
        self.abs_diff = arrays["abs_diff"]
        self.reduction = arrays["reduction"]
        self.released = False

        # Start from the uniform distribution
        self.prev[...] = 1.0 / num_nodes

    @property
    def prev(self) -> Any:
        return self.prev_score[:self.num_nodes]

    @property
    def curr(self) -> Any:
        return self.curr_score[:self.num_nodes]

    @property
    def contrib(self) -> Any:
        return self.contribution[:self.num_nodes]

    @property
    def diff(self) -> Any:
        return self.abs_diff[:self.num_nodes]

    def release(self) -> None:
        """Give all arrays back to the device allocator."""
        if self.released:
            return
        for name in self.FIELDS:
            self.device.free(getattr(self, name))
            setattr(self, name, None)
        self.released = True
