import numpy as np
from typing import Any, Optional, Union

from .device import Device, get_device
from ..errors import ConfigurationError


class GPUGraph:
    """
    Graph stored in CSR (Compressed Sparse Row) format on a device.

    Besides the usual row offsets and column indices the graph keeps the
    expanded source id of every edge (``row_indices``) so edge-parallel
    passes can read both endpoints of an edge without a search. Undirected
    graphs store every edge once; consumers decide how to visit both ends.
    """

    def __init__(self, num_nodes: int, directed: bool = True, device: Optional[Device] = None):
        """
        Initialize an empty graph with specified number of nodes.

        Args:
            num_nodes: Number of nodes in the graph
            directed: Whether edges are one-way
            device: Device holding the graph arrays (host by default)
        """
        self.num_nodes = int(num_nodes)
        self.directed = directed
        self.device = device if device is not None else get_device("cpu")
        self.row_offsets = None  # CSR row offsets
        self.column_indices = None  # CSR column indices
        self.row_indices = None  # source id of every CSR edge
        self._out_degrees = None

    @classmethod
    def from_edge_list(cls,
                       edges: Any,
                       num_nodes: Optional[int] = None,
                       directed: bool = True,
                       device: Union[str, Device] = "auto") -> 'GPUGraph':
        """
        Create a graph from an edge list.

        Args:
            edges: Ex2 array of edges (source, destination)
            num_nodes: Vertex count; defaults to the largest id plus one
            directed: Whether edges are one-way
            device: Device or device name to place the graph on

        Returns:
            GPUGraph instance
        """
        edges = np.asarray(edges, dtype=np.int64).reshape(-1, 2)
        if num_nodes is None:
            num_nodes = int(edges.max()) + 1 if len(edges) else 0
        if len(edges) and (edges.min() < 0 or edges.max() >= num_nodes):
            raise ConfigurationError(f"edge endpoints must lie in [0, {num_nodes})")
        if isinstance(device, str):
            device = get_device(device)

        graph = cls(num_nodes, directed=directed, device=device)

        # Sort edges by source node for CSR conversion
        sorted_idx = np.argsort(edges[:, 0], kind="stable")
        sorted_edges = edges[sorted_idx]

        counts = np.bincount(sorted_edges[:, 0], minlength=num_nodes)
        row_offsets = np.zeros(num_nodes + 1, dtype=np.int32)
        row_offsets[1:] = np.cumsum(counts)

        graph.row_offsets = device.asarray(row_offsets)
        graph.column_indices = device.asarray(sorted_edges[:, 1].astype(np.int32))
        graph.row_indices = device.asarray(sorted_edges[:, 0].astype(np.int32))
        return graph

    def get_neighbors(self, node: int) -> Any:
        """
        Get the stored successors of a node.

        Args:
            node: Node ID

        Returns:
            Array of neighbor node IDs
        """
        start = int(self.row_offsets[node])
        end = int(self.row_offsets[node + 1])
        return self.column_indices[start:end]

    def get_degree(self, node: int) -> int:
        """
        Get the out-degree of a node.

        For undirected graphs this is the number of incident edges.

        Args:
            node: Node ID

        Returns:
            Number of outgoing edges
        """
        return int(self.out_degrees[node])

    @property
    def out_degrees(self) -> Any:
        """Out-degree of every vertex as a device array."""
        if self._out_degrees is None:
            xp = self.device.xp
            degrees = xp.diff(self.row_offsets).astype(xp.int32)
            if not self.directed:
                # Each stored edge also leaves its destination; a self-loop counts twice.
                degrees = degrees + xp.bincount(
                    self.column_indices, minlength=self.num_nodes
                ).astype(xp.int32)
            self._out_degrees = degrees
        return self._out_degrees

    @property
    def max_degree(self) -> int:
        if self.num_nodes == 0:
            return 0
        return int(self.out_degrees.max())

    @property
    def num_edges(self) -> int:
        """Get the total number of stored edges in the graph."""
        return len(self.column_indices)

    def to_device(self, device: Union[str, Device]) -> 'GPUGraph':
        """Move graph data to another device if not already there."""
        if isinstance(device, str):
            device = get_device(device)
        if device.name == self.device.name:
            return self
        host = self.to_host()
        self.row_offsets = device.asarray(host["row_offsets"])
        self.column_indices = device.asarray(host["column_indices"])
        self.row_indices = device.asarray(host["row_indices"])
        self._out_degrees = None
        self.device = device
        return self

    def to_host(self) -> dict:
        """Copy graph data back to host numpy arrays."""
        return {
            "row_offsets": self.device.to_host(self.row_offsets),
            "column_indices": self.device.to_host(self.column_indices),
            "row_indices": self.device.to_host(self.row_indices),
        }

    def __repr__(self) -> str:
        kind = "directed" if self.directed else "undirected"
        return f"GPUGraph({self.num_nodes} nodes, {self.num_edges} edges, {kind}, {self.device.name})"
