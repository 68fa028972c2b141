import argparse
import logging
import time

import numpy as np

from gpu_pagerank.algorithms.pagerank import PageRank
from gpu_pagerank.config import PageRankConfig
from gpu_pagerank.data_structures.gpu_graph import GPUGraph
from gpu_pagerank.profiling.performance_profiler import PerformanceProfiler


def create_random_graph(num_nodes: int, edge_probability: float = 0.1, seed: int = 0) -> np.ndarray:
    """Create a random directed graph for testing."""
    rng = np.random.default_rng(seed)
    mask = rng.random((num_nodes, num_nodes)) < edge_probability
    np.fill_diagonal(mask, False)
    return np.argwhere(mask)


def load_edge_list(path: str) -> np.ndarray:
    """Load a whitespace separated "source destination" file, '#' starts a comment."""
    return np.loadtxt(path, dtype=np.int64, comments="#", ndmin=2)[:, :2]


def parse_args():
    parser = argparse.ArgumentParser(description="Run PageRank on a random or loaded graph")
    parser.add_argument("--edges", help="Edge list file (default: random graph)")
    parser.add_argument("--nodes", type=int, default=1000, help="Vertex count of the random graph")
    parser.add_argument("--edge-probability", type=float, default=0.1)
    parser.add_argument("--undirected", action="store_true")
    parser.add_argument("--iteration-max", type=int, default=100)
    parser.add_argument("--threshold", type=float, default=1e-6)
    parser.add_argument("--damping", type=float, default=0.85)
    parser.add_argument("--dtype", default="float32", choices=["float32", "float64"])
    parser.add_argument("--device", default="auto", choices=["auto", "cpu", "gpu"])
    parser.add_argument("--policy", default="auto", choices=["auto", "vertex", "edge"])
    parser.add_argument("--top", type=int, default=10)
    parser.add_argument("--profile", action="store_true", help="Print a per-stage profile")
    parser.add_argument("--trace", help="Write a Chrome trace of the stages to this file")
    parser.add_argument("-v", "--verbose", action="store_true")
    return parser.parse_args()


def main():
    args = parse_args()
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if args.edges:
        edges = load_edge_list(args.edges)
        num_nodes = None
    else:
        edges = create_random_graph(args.nodes, args.edge_probability)
        num_nodes = args.nodes

    graph = GPUGraph.from_edge_list(edges, num_nodes=num_nodes,
                                    directed=not args.undirected, device=args.device)
    config = PageRankConfig(
        iteration_max=args.iteration_max,
        threshold=args.threshold,
        damping=args.damping,
        dtype=args.dtype,
        device=args.device,
        policy=args.policy,
    )

    profiler = None
    if args.profile or args.trace:
        profiler = PerformanceProfiler(graph.device)
        profiler.start_session()

    with PageRank(graph, config=config, profiler=profiler) as pagerank:
        start_time = time.time()
        pagerank.run()
        elapsed = time.time() - start_time

        print(f"Graph: {graph}")
        print(f"Status: {pagerank.status.value} after {pagerank.iteration_count} iterations")
        print(f"Computation time: {elapsed:.4f} seconds")
        print(f"Score sum: {pagerank.scores().sum():.6f}")

        print(f"\nTop {args.top} nodes by PageRank score:")
        for i, (node, score) in enumerate(pagerank.top_ranked(args.top), 1):
            print(f"{i}. Node {node}: {score:.6f}")

    if profiler is not None:
        profiler.print_summary()
        if args.trace:
            profiler.export_chrome_trace(args.trace)
            print(f"\nProfile trace exported to '{args.trace}'")
        profiler.end_session()


if __name__ == "__main__":
    main()
