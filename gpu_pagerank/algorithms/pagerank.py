import contextlib
import dataclasses
import enum
import logging
import numpy as np
from typing import List, Optional, Tuple

from .pagerank_kernels import make_kernels
from .pagerank_state import PageRankState
from .ranking import RankingExtractor
from ..config import PageRankConfig
from ..data_structures.gpu_graph import GPUGraph
from ..errors import ConfigurationError
from ..profiling.performance_profiler import PerformanceProfiler
from ..traversal.load_balance import select_policy
from ..traversal.operators import GraphTraversal

logger = logging.getLogger(__name__)


class SolverStatus(enum.Enum):
    INITIALIZING = "initializing"
    ITERATING = "iterating"
    CONVERGED = "converged"
    EXHAUSTED = "exhausted"


class PageRank:
    """
    Iterative PageRank solver over a GPUGraph.

    Every pass runs reset, contribution compute, contribution scatter,
    damp-and-diff and convergence reduce, then reads the summed absolute
    change back to the host to decide whether to continue. The solver owns
    its per-vertex arrays; several solvers can run side by side.

    Dangling vertices (out-degree 0) keep their mass to themselves: it is
    not spread over the graph, so scores of graphs with dangling vertices
    sum to less than one.
    """

    def __init__(self,
                 graph: GPUGraph,
                 iteration_max: Optional[int] = None,
                 threshold: Optional[float] = None,
                 damping: Optional[float] = None,
                 config: Optional[PageRankConfig] = None,
                 profiler: Optional[PerformanceProfiler] = None,
                 **options):
        """
        Initialize the solver and run the first reset.

        Args:
            graph: Input graph
            iteration_max: Maximum number of passes (default 100)
            threshold: Convergence cutoff on the summed absolute change (default 1e-6)
            damping: Damping factor (default 0.85)
            config: Base settings; explicit arguments above and in options override it
            profiler: Optional profiler wrapped around every stage
            **options: Further PageRankConfig fields (dtype, device, ...)

        Raises:
            ConfigurationError: If a setting or the graph is unusable
            ResourceExhaustionError: If the state arrays cannot be allocated
        """
        overrides = {
            name: value
            for name, value in (('iteration_max', iteration_max), ('threshold', threshold), ('damping', damping))
            if value is not None
        }
        overrides.update(options)
        unknown = set(overrides) - {f.name for f in dataclasses.fields(PageRankConfig)}
        if unknown:
            raise ConfigurationError(f"unknown settings: {sorted(unknown)}")
        config = dataclasses.replace(config or PageRankConfig(), **overrides)
        if graph.num_nodes <= 0:
            raise ConfigurationError("graph has no vertices")

        self.config = config
        if config.device != "auto":
            graph.to_device(config.device)
        self.graph = graph
        self.device = graph.device
        self.profiler = profiler

        self.num_nodes = graph.num_nodes
        self.normalized_damping = config.normalized_damping(self.num_nodes)
        self.state = PageRankState(self.device, self.num_nodes, np.dtype(config.dtype))

        self.traversal = GraphTraversal(graph, workers=config.workers)
        partitions = config.partitions or (1 if self.device.is_gpu else self.traversal.workers)
        self.policy = select_policy(graph, partitions=partitions, name=config.policy)
        self.kernels = make_kernels(self.traversal, self.state, config.damping,
                                    self.normalized_damping, self.policy)
        self.ranking = RankingExtractor(self.device)

        self.status = SolverStatus.INITIALIZING
        self.iteration_count = 0
        self.residuals: List[float] = []

        dangling = int((graph.out_degrees == 0).sum())
        if dangling:
            logger.warning("%d dangling vertices; their mass is not redistributed", dangling)

        self.kernels.reset()

    def _stage(self, name: str):
        if self.profiler is None:
            return contextlib.nullcontext()
        return self.profiler.profile_kernel(name)

    def _check_live(self) -> None:
        if self.state.released:
            raise RuntimeError("PageRank solver has been released")

    def run(self) -> None:
        """
        Iterate until the summed absolute change drops to the threshold or
        iteration_max passes have run. Exhaustion is reported through
        ``status``, not raised.
        """
        self._check_live()
        config = self.config
        self.status = SolverStatus.INITIALIZING
        self.kernels.reset()
        self.iteration_count = 0
        self.residuals = []

        logger.info("PageRank on %r: damping=%s threshold=%s iteration_max=%d policy=%r",
                    self.graph, config.damping, config.threshold, config.iteration_max, self.policy)

        self.status = SolverStatus.ITERATING
        # at least one pass runs, whatever the threshold
        while True:
            for name, stage in self.kernels.stages():
                with self._stage(name):
                    stage()
            # Blocks until every stage of the pass has finished on the device
            delta = self.device.scalar_to_host(self.state.reduction)
            self.iteration_count += 1
            self.residuals.append(delta)
            logger.debug("iteration %d: delta=%.3e", self.iteration_count, delta)
            if delta <= config.threshold or self.iteration_count >= config.iteration_max:
                break

        if delta <= config.threshold:
            self.status = SolverStatus.CONVERGED
            logger.info("converged after %d iterations (delta=%.3e)", self.iteration_count, delta)
        else:
            self.status = SolverStatus.EXHAUSTED
            logger.warning("no convergence within %d iterations (delta=%.3e > %.3e)",
                           self.iteration_count, delta, config.threshold)

    @property
    def converged(self) -> bool:
        return self.status is SolverStatus.CONVERGED

    def scores(self) -> np.ndarray:
        """
        Get the current score of every vertex.

        Returns:
            Host copy of the scores, indexed by vertex id
        """
        self._check_live()
        return self.device.to_host(self.state.curr)

    def top_ranked(self, k: int) -> List[Tuple[int, float]]:
        """
        Get the k highest-scored vertices.

        Args:
            k: Number of vertices (clamped to the vertex count)

        Returns:
            List of (vertex id, score) pairs, descending by score
        """
        self._check_live()
        return self.ranking.top_ranked(self.state.curr, k)

    def bottom_ranked(self, k: int) -> List[Tuple[int, float]]:
        """Get the k lowest-scored vertices, ascending by score."""
        self._check_live()
        return self.ranking.bottom_ranked(self.state.curr, k)

    def release(self) -> None:
        """Free the per-vertex arrays and the host thread pool."""
        self.traversal.close()
        self.state.release()

    def __enter__(self) -> 'PageRank':
        return self

    def __exit__(self, *exc_info) -> None:
        self.release()

    def __repr__(self) -> str:
        return (f"PageRank({self.graph!r}, status={self.status.value}, "
                f"iterations={self.iteration_count})")
