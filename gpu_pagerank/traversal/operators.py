import logging
import os
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, List, Optional

from ..data_structures.gpu_graph import GPUGraph
from .load_balance import EdgeRange, LoadBalancingPolicy

logger = logging.getLogger(__name__)

VertexFunctor = Callable[[Any], None]
EdgeFunctor = Callable[[Any, Any], None]


def default_workers() -> int:
    return min(32, (os.cpu_count() or 4) + 4)


class GraphTraversal:
    """
    Bulk-synchronous vertex and edge passes over a GPUGraph.

    Each call applies a functor to every vertex or every edge and returns
    only once all of it finished, so consecutive calls are separated by a
    full barrier. Nothing is promised about the order in which vertices or
    edges are visited inside one call.

    On the host, edge partitions run on a thread pool. On the GPU they are
    launched one after another on the default stream and the functor is
    expected to enqueue a kernel.
    """

    def __init__(self, graph: GPUGraph, workers: Optional[int] = None):
        """
        Args:
            graph: Graph to traverse
            workers: Host threads used for edge passes
        """
        self.graph = graph
        self.device = graph.device
        self.workers = workers or default_workers()
        self._vertex_ids = None
        self._partition_cache = {}
        self._pool = None

    @property
    def vertex_count(self) -> int:
        return self.graph.num_nodes

    @property
    def vertex_ids(self) -> Any:
        if self._vertex_ids is None:
            xp = self.device.xp
            self._vertex_ids = xp.arange(self.graph.num_nodes, dtype=xp.int32)
        return self._vertex_ids

    def for_each_vertex(self, fn: VertexFunctor) -> None:
        """
        Apply ``fn`` to every vertex id in [0, N).

        ``fn`` receives the whole id range at once and must treat it as a set
        of independent elements.
        """
        fn(self.vertex_ids)

    def partitions(self, policy: LoadBalancingPolicy) -> List[EdgeRange]:
        key = (type(policy), policy.partitions)
        if key not in self._partition_cache:
            self._partition_cache[key] = policy.partition(self.graph)
            logger.debug("%r split %d edges into %d tasks",
                         policy, self.graph.num_edges, len(self._partition_cache[key]))
        return self._partition_cache[key]

    def for_each_edge(self, fn: EdgeFunctor, policy: LoadBalancingPolicy) -> None:
        """
        Apply ``fn`` to every stored edge (u, v).

        The edges are split by ``policy`` and ``fn(sources, destinations)`` is
        invoked once per partition with the endpoint arrays of that slice.

        Args:
            fn: Edge functor
            policy: Load-balancing policy for this pass
        """
        ranges = self.partitions(policy)
        sources = self.graph.row_indices
        destinations = self.graph.column_indices

        def task(edge_range: EdgeRange) -> None:
            fn(sources[edge_range.begin:edge_range.end],
               destinations[edge_range.begin:edge_range.end])

        if self.device.is_gpu or len(ranges) <= 1 or self.workers == 1:
            for edge_range in ranges:
                task(edge_range)
            return

        if self._pool is None:
            self._pool = ThreadPoolExecutor(max_workers=self.workers)
        # list() re-raises the first failing task
        list(self._pool.map(task, ranges))

    def close(self) -> None:
        """Shut down the host thread pool."""
        if self._pool is not None:
            self._pool.shutdown(wait=True)
            self._pool = None
