"""
Stream networks extracted from a FlowGraph by an upstream area threshold

Nodes are stored in topological order, every network outlet comes before the
nodes that drain to it, so a node's receiver always has a smaller position.
"""

import numba
import numpy as np
from scipy.spatial import cKDTree as KDTree


class StreamNetwork:
    """Subset of FlowGraph cells forming a channel network.

    Attributes
    ----------
    graph : FlowGraph
        the flow graph the network was extracted from
    ixgrid : numpy.ndarray
        flat grid index of every node
    receiver : numpy.ndarray
        position of the downstream node, -1 for network outlets
    x, y : numpy.ndarray
        node coordinates
    distance : numpy.ndarray
        flow distance from the network outlet
    """

    def __init__(self, graph, ixgrid):
        self.graph = graph
        in_network = np.zeros(graph.size, dtype=bool)
        in_network[np.asarray(ixgrid, dtype=np.int64)] = True
        ordered = graph.order[in_network[graph.order]]

        receiver = _node_receivers(ordered, graph.receivers, graph.size)
        # isolated cells (no edge in the network) are not part of a network
        ndonors = np.bincount(receiver[receiver >= 0], minlength=ordered.size)
        connected = (receiver >= 0) | (ndonors > 0)
        if not np.all(connected):
            ordered = ordered[connected]
            receiver = _node_receivers(ordered, graph.receivers, graph.size)

        self.ixgrid = ordered
        self.receiver = receiver
        self.x, self.y = graph.index_to_xy(ordered)
        steps = graph.step_lengths()[ordered]
        steps[receiver < 0] = 0.0
        self.step = steps
        self.distance = integrate_upstream(receiver, steps)

    @classmethod
    def from_flow_graph(cls, graph, threshold_area, outlets=None):
        """Cells whose upstream area reaches threshold_area (map units squared).

        When outlets (flat grid indices) are given, only cells draining to them
        are kept and each outlet becomes a network outlet.
        """
        area = graph.drainage_area()
        keep = graph.valid & (area >= threshold_area)
        if outlets is not None:
            keep &= graph.drainage_basins(outlets) > 0
        return cls(graph, np.flatnonzero(keep))

    def __len__(self):
        return self.ixgrid.size

    def __repr__(self):
        return f"StreamNetwork(nodes={len(self)}, outlets={self.outlets().size})"

    @property
    def n_edges(self):
        return int(np.count_nonzero(self.receiver >= 0))

    @property
    def is_empty(self):
        return self.n_edges == 0

    def donor_counts(self):
        return np.bincount(self.receiver[self.receiver >= 0], minlength=len(self))

    def channel_heads(self):
        return np.flatnonzero(self.donor_counts() == 0)

    def confluences(self):
        return np.flatnonzero(self.donor_counts() >= 2)

    def b_confluences(self):
        """Nodes draining directly into a confluence (last node of a tributary)."""
        ndonors = self.donor_counts()
        has_receiver = self.receiver >= 0
        into_confluence = np.zeros(len(self), dtype=bool)
        into_confluence[has_receiver] = ndonors[self.receiver[has_receiver]] >= 2
        return np.flatnonzero(into_confluence)

    def outlets(self):
        return np.flatnonzero(self.receiver < 0)

    def ordered_chains(self):
        """Node position lists running downstream from every channel head.

        Heads are visited from the most distant one, each chain stops at the
        outlet or at the first node already listed by a previous chain (that
        node is included, so a tributary chain ends on its confluence).
        """
        heads = self.channel_heads()
        heads = heads[np.lexsort((self.ixgrid[heads], -self.distance[heads]))]
        visited = np.zeros(len(self), dtype=bool)
        chains = []
        for head in heads:
            chain = [head]
            visited[head] = True
            node = head
            while self.receiver[node] >= 0:
                node = self.receiver[node]
                chain.append(node)
                if visited[node]:
                    break
                visited[node] = True
            chains.append(np.asarray(chain, dtype=np.int64))
        return chains

    def subnetwork(self, outlet_ix):
        """Nodes draining to the cell outlet_ix, which becomes the outlet."""
        basins = self.graph.drainage_basins([outlet_ix])
        return self.subset(basins[self.ixgrid] > 0)

    def subset(self, keep):
        return StreamNetwork(self.graph, self.ixgrid[np.asarray(keep, dtype=bool)])

    def component_labels(self):
        """Position of the outlet each node drains to."""
        labels = np.arange(len(self))
        for i in range(len(self)):
            if self.receiver[i] >= 0:
                labels[i] = labels[self.receiver[i]]
        return labels

    def largest_component(self):
        labels = self.component_labels()
        counts = np.bincount(labels, minlength=len(self))
        return self.subset(labels == np.argmax(counts))

    def snap(self, x, y):
        """Coordinates and grid index of the node nearest to (x, y)."""
        tree = KDTree(np.column_stack([self.x, self.y]))
        _, index = tree.query([x, y])
        return float(self.x[index]), float(self.y[index]), int(self.ixgrid[index])

    def get_node_values(self, values):
        """Values of a grid (or flat per-cell array) at the network nodes."""
        values = getattr(values, "values", values)
        return np.asarray(values, dtype=np.float64).ravel()[self.ixgrid]

    def crossings(self, z, elevation):
        """Nodes at or above elevation whose downstream node lies below it."""
        has_receiver = self.receiver >= 0
        below = np.zeros(len(self), dtype=bool)
        below[has_receiver] = z[self.receiver[has_receiver]] < elevation
        return np.flatnonzero((z >= elevation) & below)


def _node_receivers(ordered, grid_receivers, size):
    position = np.full(size, -1, dtype=np.int64)
    position[ordered] = np.arange(ordered.size)
    receiver = position[grid_receivers[ordered]]
    receiver[grid_receivers[ordered] == ordered] = -1
    return receiver


@numba.njit
def integrate_upstream(receiver, increments):
    """Cumulative sum of increments from the network outlets upstream."""
    out = np.zeros(receiver.size)
    for i in range(receiver.size):
        r = receiver[i]
        if r >= 0:
            out[i] = out[r] + increments[i]
    return out
