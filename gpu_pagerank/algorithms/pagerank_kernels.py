import functools
from typing import Any, Callable, Dict, List, Tuple

import numpy as np

from .pagerank_state import PageRankState
from ..errors import KernelLaunchError
from ..traversal.atomics import HostAtomicAccumulator
from ..traversal.load_balance import LoadBalancingPolicy
from ..traversal.operators import GraphTraversal

# CUDA kernels for one PageRank pass; T is typedef'd to the score type
pagerank_kernels_source = r'''
extern "C" __global__
void pagerank_reset(T* curr_score,
                    const T normalized_damping,
                    const int num_nodes) {
    int tid = blockDim.x * blockIdx.x + threadIdx.x;
    if (tid < num_nodes) {
        curr_score[tid] = normalized_damping;
    }
}

extern "C" __global__
void pagerank_contribution(const int* out_degrees,
                           const T* prev_score,
                           T* contribution,
                           const int num_nodes) {
    int tid = blockDim.x * blockIdx.x + threadIdx.x;
    if (tid < num_nodes) {
        int degree = out_degrees[tid];
        contribution[tid] = degree > 0 ? prev_score[tid] / (T)degree : (T)0;
    }
}

extern "C" __global__
void pagerank_scatter(const int* sources,
                      const int* destinations,
                      const T* contribution,
                      T* curr_score,
                      const T damping,
                      const int num_edges,
                      const int undirected) {
    int tid = blockDim.x * blockIdx.x + threadIdx.x;
    if (tid >= num_edges) return;

    int u = sources[tid];
    int v = destinations[tid];
    // Many edges share a destination, so accumulation must be atomic
    atomicAdd(&curr_score[v], damping * contribution[u]);
    if (undirected) {
        atomicAdd(&curr_score[u], damping * contribution[v]);
    }
}

extern "C" __global__
void pagerank_damp_and_diff(T* prev_score,
                            const T* curr_score,
                            T* abs_diff,
                            const int num_nodes) {
    int tid = blockDim.x * blockIdx.x + threadIdx.x;
    if (tid < num_nodes) {
        T curr = curr_score[tid];
        abs_diff[tid] = fabs(curr - prev_score[tid]);
        prev_score[tid] = curr;
    }
}
'''

KERNEL_NAMES = (
    "pagerank_reset",
    "pagerank_contribution",
    "pagerank_scatter",
    "pagerank_damp_and_diff",
)

THREADS_PER_BLOCK = 256


class IterationKernels:
    """
    The five stages of one PageRank pass.

    Stages read and write the solver's PageRankState and go through the
    GraphTraversal for every vertex or edge pass, so each one finishes
    completely before the next one starts.
    """

    def __init__(self,
                 traversal: GraphTraversal,
                 state: PageRankState,
                 damping: float,
                 normalized_damping: float,
                 policy: LoadBalancingPolicy):
        self.traversal = traversal
        self.graph = traversal.graph
        self.state = state
        self.damping = damping
        self.normalized_damping = normalized_damping
        self.policy = policy

    def stages(self) -> List[Tuple[str, Callable[[], None]]]:
        """Stages of a pass in execution order."""
        return [
            ("reset", self.reset),
            ("contribution_compute", self.contribution_compute),
            ("contribution_scatter", self.contribution_scatter),
            ("damp_and_diff", self.damp_and_diff),
            ("convergence_reduce", self.convergence_reduce),
        ]

    def reset(self) -> None:
        raise NotImplementedError

    def contribution_compute(self) -> None:
        raise NotImplementedError

    def contribution_scatter(self) -> None:
        raise NotImplementedError

    def damp_and_diff(self) -> None:
        raise NotImplementedError

    def convergence_reduce(self) -> None:
        """Sum abs_diff into the one-element reduction array, on the device."""
        state = self.state
        state.reduction[:] = state.diff.sum(keepdims=True)


class HostKernels(IterationKernels):
    """Stages as vectorised numpy passes."""

    def reset(self) -> None:
        curr = self.state.curr
        normalized_damping = self.normalized_damping

        def fn(vertices):
            curr[vertices] = normalized_damping

        self.traversal.for_each_vertex(fn)

    def contribution_compute(self) -> None:
        state = self.state
        degrees = self.graph.out_degrees

        def fn(vertices):
            degree = degrees[vertices]
            contribution = np.zeros(len(vertices), dtype=state.dtype)
            np.divide(state.prev[vertices], degree, out=contribution, where=degree > 0)
            state.contrib[vertices] = contribution

        self.traversal.for_each_vertex(fn)

    def contribution_scatter(self) -> None:
        contribution = self.state.contrib
        damping = self.damping
        undirected = not self.graph.directed
        accumulator = HostAtomicAccumulator(self.state.curr)

        def fn(sources, destinations):
            accumulator.add(destinations, damping * contribution[sources])
            if undirected:
                accumulator.add(sources, damping * contribution[destinations])

        self.traversal.for_each_edge(fn, self.policy)
        accumulator.merge()

    def damp_and_diff(self) -> None:
        state = self.state

        def fn(vertices):
            curr = state.curr[vertices]
            # diff before overwriting prev
            state.diff[vertices] = np.abs(curr - state.prev[vertices])
            state.prev[vertices] = curr

        self.traversal.for_each_vertex(fn)


@functools.lru_cache(maxsize=None)
def compile_kernels(ctype: str) -> Dict[str, Any]:
    """
    Build the CUDA stage kernels for one score type.

    Args:
        ctype: "float" or "double"

    Returns:
        Mapping of kernel name to cupy.RawKernel
    """
    import cupy as cp

    code = f"typedef {ctype} T;\n" + pagerank_kernels_source
    return {name: cp.RawKernel(code, name) for name in KERNEL_NAMES}


class DeviceKernels(IterationKernels):
    """Stages as CUDA kernels launched through cupy."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        import cupy as cp

        self._cp = cp
        self._scalar = np.float32 if self.state.dtype == np.float32 else np.float64
        ctype = "float" if self._scalar is np.float32 else "double"
        self._kernels = compile_kernels(ctype)

    def _launch(self, name: str, size: int, args: tuple) -> None:
        blocks = (size + THREADS_PER_BLOCK - 1) // THREADS_PER_BLOCK
        if blocks == 0:
            return
        cp = self._cp
        try:
            self._kernels[name]((blocks,), (THREADS_PER_BLOCK,), args)
        except (cp.cuda.compiler.CompileException,
                cp.cuda.driver.CUDADriverError,
                cp.cuda.runtime.CUDARuntimeError) as exc:
            raise KernelLaunchError(f"{name} failed: {exc}") from exc

    def reset(self) -> None:
        state = self.state

        def fn(vertices):
            self._launch("pagerank_reset", len(vertices), (
                state.curr_score, self._scalar(self.normalized_damping), np.int32(len(vertices))
            ))

        self.traversal.for_each_vertex(fn)

    def contribution_compute(self) -> None:
        state = self.state
        degrees = self.graph.out_degrees

        def fn(vertices):
            self._launch("pagerank_contribution", len(vertices), (
                degrees, state.prev_score, state.contribution, np.int32(len(vertices))
            ))

        self.traversal.for_each_vertex(fn)

    def contribution_scatter(self) -> None:
        state = self.state
        undirected = np.int32(0 if self.graph.directed else 1)

        def fn(sources, destinations):
            self._launch("pagerank_scatter", len(sources), (
                sources, destinations, state.contribution, state.curr_score,
                self._scalar(self.damping), np.int32(len(sources)), undirected
            ))

        self.traversal.for_each_edge(fn, self.policy)

    def damp_and_diff(self) -> None:
        state = self.state

        def fn(vertices):
            self._launch("pagerank_damp_and_diff", len(vertices), (
                state.prev_score, state.curr_score, state.abs_diff, np.int32(len(vertices))
            ))

        self.traversal.for_each_vertex(fn)


def make_kernels(traversal: GraphTraversal,
                 state: PageRankState,
                 damping: float,
                 normalized_damping: float,
                 policy: LoadBalancingPolicy) -> IterationKernels:
    """Pick the kernel set matching the traversal's device."""
    kernels_cls = DeviceKernels if traversal.device.is_gpu else HostKernels
    return kernels_cls(traversal, state, damping, normalized_damping, policy)
