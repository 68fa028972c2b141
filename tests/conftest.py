import numpy as np
import pytest

from gpu_pagerank.data_structures.device import get_device, gpu_available
from gpu_pagerank.data_structures.gpu_graph import GPUGraph

requires_gpu = pytest.mark.skipif(not gpu_available(), reason="CUDA not available")

# 0 -> 1 -> 2 -> {0, 3}; vertex 3 is dangling
SMALL_EDGES = [(0, 1), (1, 2), (2, 0), (2, 3)]


def random_strongly_connected_edges(num_nodes: int, extra_edges: int, seed: int = 0) -> np.ndarray:
    """Directed ring plus random extra edges, so every vertex has out-degree > 0."""
    rng = np.random.default_rng(seed)
    ring = np.stack([np.arange(num_nodes), (np.arange(num_nodes) + 1) % num_nodes], axis=1)
    extra = rng.integers(0, num_nodes, size=(extra_edges, 2))
    return np.concatenate([ring, extra])


def reference_pagerank(edges, num_nodes, damping=0.85, iterations=2000, directed=True):
    """Dense power iteration without dangling redistribution."""
    edges = np.asarray(edges).reshape(-1, 2)
    if not directed:
        edges = np.concatenate([edges, edges[:, ::-1]])
    degree = np.bincount(edges[:, 0], minlength=num_nodes).astype(np.float64)
    x = np.full(num_nodes, 1.0 / num_nodes)
    for _ in range(iterations):
        contribution = np.divide(x, degree, out=np.zeros_like(x), where=degree > 0)
        incoming = np.bincount(edges[:, 1], weights=contribution[edges[:, 0]], minlength=num_nodes)
        x = (1.0 - damping) / num_nodes + damping * incoming
    return x


@pytest.fixture
def cpu():
    return get_device("cpu")


@pytest.fixture
def small_graph(cpu):
    return GPUGraph.from_edge_list(SMALL_EDGES, device=cpu)


@pytest.fixture
def random_graph(cpu):
    edges = random_strongly_connected_edges(200, 1500)
    return GPUGraph.from_edge_list(edges, num_nodes=200, device=cpu)
