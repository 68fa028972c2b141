import threading

import numpy as np
import pytest

from gpu_pagerank.traversal.load_balance import EdgeBalancedPolicy, VertexBalancedPolicy
from gpu_pagerank.traversal.operators import GraphTraversal


def _visited_edges(traversal, policy):
    seen = []
    threads = set()

    def fn(sources, destinations):
        threads.add(threading.get_ident())
        seen.extend(zip(sources.tolist(), destinations.tolist()))

    traversal.for_each_edge(fn, policy)
    return seen, threads


def test_for_each_vertex_sees_every_id_once(random_graph):
    traversal = GraphTraversal(random_graph)
    calls = []
    traversal.for_each_vertex(calls.append)
    assert len(calls) == 1
    np.testing.assert_array_equal(calls[0], np.arange(random_graph.num_nodes))
    assert traversal.vertex_count == random_graph.num_nodes


def test_for_each_edge_visits_every_edge_once(random_graph):
    host = random_graph.to_host()
    expected = sorted(zip(host["row_indices"].tolist(), host["column_indices"].tolist()))

    traversal = GraphTraversal(random_graph, workers=4)
    try:
        for policy in (EdgeBalancedPolicy(7), VertexBalancedPolicy(5)):
            seen, _ = _visited_edges(traversal, policy)
            assert sorted(seen) == expected
    finally:
        traversal.close()


def test_single_worker_runs_inline(random_graph):
    traversal = GraphTraversal(random_graph, workers=1)
    _, threads = _visited_edges(traversal, EdgeBalancedPolicy(6))
    assert threads == {threading.get_ident()}


def test_partitions_are_cached_per_policy(random_graph):
    traversal = GraphTraversal(random_graph, workers=1)
    first = traversal.partitions(EdgeBalancedPolicy(3))
    assert traversal.partitions(EdgeBalancedPolicy(3)) is first
    assert traversal.partitions(VertexBalancedPolicy(3)) is not first


def test_task_errors_propagate(random_graph):
    traversal = GraphTraversal(random_graph, workers=4)

    def fn(sources, destinations):
        raise RuntimeError("boom")

    try:
        with pytest.raises(RuntimeError, match="boom"):
            traversal.for_each_edge(fn, EdgeBalancedPolicy(4))
    finally:
        traversal.close()
