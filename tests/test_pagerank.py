import math
import threading

import numpy as np
import pytest

from gpu_pagerank.algorithms.pagerank import PageRank, SolverStatus
from gpu_pagerank.config import PageRankConfig
from gpu_pagerank.data_structures.gpu_graph import GPUGraph

from .conftest import SMALL_EDGES, random_strongly_connected_edges, reference_pagerank


def test_small_graph_converges_before_exhaustion(small_graph):
    with PageRank(small_graph, iteration_max=100, threshold=1e-6, damping=0.85, device="cpu") as pagerank:
        pagerank.run()
        scores = pagerank.scores()
        assert pagerank.status is SolverStatus.CONVERGED
        assert pagerank.converged
        assert pagerank.iteration_count < 100
        assert scores[2] > scores[3]


def test_small_graph_matches_reference(small_graph):
    with PageRank(small_graph, threshold=1e-12, iteration_max=500, dtype="float64", device="cpu") as pagerank:
        pagerank.run()
        np.testing.assert_allclose(pagerank.scores(), reference_pagerank(SMALL_EDGES, 4), atol=1e-10)
        # dangling mass leaks out of the distribution
        assert pagerank.scores().sum() < 1.0


def test_scores_sum_to_one_without_dangling_vertices(random_graph):
    with PageRank(random_graph, threshold=1e-5, device="cpu") as pagerank:
        pagerank.run()
        assert pagerank.scores().sum() == pytest.approx(1.0, abs=1e-4)


def test_random_graph_matches_reference(random_graph):
    host = random_graph.to_host()
    edges = np.stack([host["row_indices"], host["column_indices"]], axis=1)
    with PageRank(random_graph, threshold=1e-12, iteration_max=500, dtype="float64", device="cpu") as pagerank:
        pagerank.run()
        assert pagerank.converged
        np.testing.assert_allclose(pagerank.scores(), reference_pagerank(edges, 200), atol=1e-10)


@pytest.mark.parametrize("num_nodes", [1, 3, 10, 57])
def test_cycle_converges_to_uniform(cpu, num_nodes):
    edges = [(i, (i + 1) % num_nodes) for i in range(num_nodes)]
    graph = GPUGraph.from_edge_list(edges, device=cpu)
    with PageRank(graph, device="cpu") as pagerank:
        pagerank.run()
        np.testing.assert_allclose(pagerank.scores(), 1.0 / num_nodes, rtol=1e-5)
        assert pagerank.converged


def test_iteration_count_within_bounds(random_graph):
    with PageRank(random_graph, iteration_max=30, device="cpu") as pagerank:
        pagerank.run()
        assert 1 <= pagerank.iteration_count <= 30
        assert len(pagerank.residuals) == pagerank.iteration_count


def test_residuals_shrink(random_graph):
    with PageRank(random_graph, threshold=1e-10, iteration_max=500, dtype="float64", device="cpu") as pagerank:
        pagerank.run()
        residuals = pagerank.residuals
        assert residuals[-1] <= 1e-10
        assert residuals[-1] < residuals[0]


def test_exhaustion_is_not_an_error(small_graph):
    with PageRank(small_graph, iteration_max=3, threshold=0.0, device="cpu") as pagerank:
        pagerank.run()
        assert pagerank.status is SolverStatus.EXHAUSTED
        assert not pagerank.converged
        assert pagerank.iteration_count == 3
        assert pagerank.scores().shape == (4,)


@pytest.mark.parametrize("threshold", [1e20, math.inf])
def test_huge_threshold_still_runs_one_pass(small_graph, threshold):
    with PageRank(small_graph, threshold=threshold, dtype="float64", device="cpu") as pagerank:
        pagerank.run()
        assert pagerank.status is SolverStatus.CONVERGED
        assert pagerank.iteration_count == 1
        assert len(pagerank.residuals) == 1
        # one pass from 1/4: teleport 0.0375 plus damped in-links
        np.testing.assert_allclose(pagerank.scores(), [0.14375, 0.25, 0.25, 0.14375])


def test_status_before_run(small_graph):
    with PageRank(small_graph, device="cpu") as pagerank:
        assert pagerank.status is SolverStatus.INITIALIZING
        assert pagerank.iteration_count == 0


def test_second_run_is_idempotent(random_graph):
    threshold = 1e-8
    with PageRank(random_graph, threshold=threshold, iteration_max=500, dtype="float64", device="cpu") as pagerank:
        pagerank.run()
        first = pagerank.scores()
        pagerank.run()
        second = pagerank.scores()
        assert np.abs(second - first).sum() < threshold
        assert pagerank.iteration_count >= 1


def test_undirected_edge_is_symmetric_after_one_iteration(cpu):
    graph = GPUGraph.from_edge_list([(0, 1)], directed=False, device=cpu)
    with PageRank(graph, iteration_max=1, device="cpu") as pagerank:
        pagerank.run()
        scores = pagerank.scores()
        assert pagerank.iteration_count == 1
        assert scores[0] == scores[1]


def test_undirected_graph_matches_reference(cpu):
    edges = [(0, 1), (1, 2), (2, 3), (3, 0), (0, 2), (4, 4), (4, 1)]
    graph = GPUGraph.from_edge_list(edges, directed=False, device=cpu)
    with PageRank(graph, threshold=1e-12, iteration_max=500, dtype="float64", device="cpu") as pagerank:
        pagerank.run()
        expected = reference_pagerank(edges, 5, directed=False)
        np.testing.assert_allclose(pagerank.scores(), expected, atol=1e-10)
        assert pagerank.scores().sum() == pytest.approx(1.0)


@pytest.mark.parametrize("policy,partitions,workers", [
    ("vertex", 1, 1),
    ("vertex", 5, 4),
    ("edge", 7, 4),
    ("edge", 64, 8),
])
def test_policy_and_partitioning_do_not_change_results(random_graph, policy, partitions, workers):
    config = PageRankConfig(threshold=1e-12, iteration_max=500, dtype="float64", device="cpu",
                            policy=policy, partitions=partitions, workers=workers)
    with PageRank(random_graph, config=config) as pagerank:
        pagerank.run()
        scores = pagerank.scores()
    with PageRank(random_graph, threshold=1e-12, iteration_max=500, dtype="float64", device="cpu",
                  policy="edge", partitions=1, workers=1) as baseline:
        baseline.run()
        np.testing.assert_allclose(scores, baseline.scores(), atol=1e-10)


def test_independent_solvers_run_concurrently(cpu):
    graphs = [
        GPUGraph.from_edge_list(random_strongly_connected_edges(100, 400, seed=seed), device=cpu)
        for seed in range(4)
    ]
    solvers = [PageRank(graph, threshold=1e-10, iteration_max=500, dtype="float64", device="cpu")
               for graph in graphs]
    threads = [threading.Thread(target=solver.run) for solver in solvers]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    for graph, solver in zip(graphs, solvers):
        host = graph.to_host()
        edges = np.stack([host["row_indices"], host["column_indices"]], axis=1)
        np.testing.assert_allclose(solver.scores(), reference_pagerank(edges, 100), atol=1e-8)
        solver.release()


def test_released_solver_refuses_access(small_graph):
    pagerank = PageRank(small_graph, device="cpu")
    pagerank.release()
    pagerank.release()
    with pytest.raises(RuntimeError):
        pagerank.scores()
    with pytest.raises(RuntimeError):
        pagerank.run()
    with pytest.raises(RuntimeError):
        pagerank.top_ranked(2)


def test_dangling_vertices_are_logged(small_graph, caplog):
    with caplog.at_level("WARNING", logger="gpu_pagerank.algorithms.pagerank"):
        PageRank(small_graph, device="cpu").release()
    assert "dangling" in caplog.text
