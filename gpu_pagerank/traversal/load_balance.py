import logging
from dataclasses import dataclass
from typing import List, Optional

import numpy as np

from ..data_structures.gpu_graph import GPUGraph
from ..errors import ConfigurationError

logger = logging.getLogger(__name__)

# max_degree / mean_degree above which vertex ranges leave some partitions
# holding most of the edges
SKEW_THRESHOLD = 8.0


@dataclass(frozen=True)
class EdgeRange:
    """Half-open range [begin, end) of CSR edge positions."""
    begin: int
    end: int

    def __len__(self) -> int:
        return self.end - self.begin


class LoadBalancingPolicy:
    """Strategy deciding how one edge pass is split into parallel tasks."""

    name = "base"

    def __init__(self, partitions: int = 1):
        if partitions <= 0:
            raise ConfigurationError(f"partitions must be positive, got {partitions}")
        self.partitions = partitions

    def partition(self, graph: GPUGraph) -> List[EdgeRange]:
        raise NotImplementedError

    def __repr__(self) -> str:
        return f"{type(self).__name__}(partitions={self.partitions})"


class VertexBalancedPolicy(LoadBalancingPolicy):
    """
    Give every task the same number of source vertices.

    A task owns whole CSR rows, so its edge count follows the degrees of the
    vertices it got. Works well when degrees are roughly uniform.
    """

    name = "vertex"

    def partition(self, graph: GPUGraph) -> List[EdgeRange]:
        offsets = graph.device.to_host(graph.row_offsets)
        bounds = np.linspace(0, graph.num_nodes, self.partitions + 1).astype(np.int64)
        ranges = []
        for lo, hi in zip(bounds[:-1], bounds[1:]):
            edge_range = EdgeRange(int(offsets[lo]), int(offsets[hi]))
            if len(edge_range):
                ranges.append(edge_range)
        return ranges


class EdgeBalancedPolicy(LoadBalancingPolicy):
    """
    Give every task the same number of edges.

    Rows of high-degree vertices are split across tasks, which keeps the
    work even on power-law graphs.
    """

    name = "edge"

    def partition(self, graph: GPUGraph) -> List[EdgeRange]:
        bounds = np.linspace(0, graph.num_edges, self.partitions + 1).astype(np.int64)
        return [
            EdgeRange(int(lo), int(hi))
            for lo, hi in zip(bounds[:-1], bounds[1:])
            if hi > lo
        ]


def degree_skew(graph: GPUGraph) -> float:
    """Ratio of the largest out-degree to the mean out-degree."""
    if graph.num_nodes == 0 or graph.num_edges == 0:
        return 0.0
    mean_degree = float(graph.out_degrees.mean())
    return graph.max_degree / mean_degree


def select_policy(graph: GPUGraph,
                  partitions: int = 1,
                  name: Optional[str] = "auto") -> LoadBalancingPolicy:
    """
    Pick a load-balancing policy for a graph.

    Args:
        graph: Graph the edge passes will run over
        partitions: Number of tasks per edge pass
        name: "vertex", "edge" or "auto" to decide from the degree skew

    Returns:
        LoadBalancingPolicy instance
    """
    if name in (None, "auto"):
        skew = degree_skew(graph)
        name = "edge" if skew > SKEW_THRESHOLD else "vertex"
        logger.debug("degree skew %.2f -> %s-balanced partitions", skew, name)
    if name == "vertex":
        return VertexBalancedPolicy(partitions)
    if name == "edge":
        return EdgeBalancedPolicy(partitions)
    raise ConfigurationError(f"unknown load-balancing policy {name!r}")
