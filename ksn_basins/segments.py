"""
Code for decomposing a stream network into non-overlapping segments bounded
by channel heads, confluences, b-confluences and outlets
"""

from dataclasses import dataclass

import numpy as np
from loguru import logger

from ksn_basins.grid import cellsize


@dataclass(frozen=True)
class Segments:
    """Segments of a StreamNetwork.

    downstream / upstream hold node positions in the network of the
    b-confluence or outlet and of the channel head or confluence bounding each
    segment; the *_ix arrays hold the same landmarks as flat grid indices.
    """

    downstream: np.ndarray
    upstream: np.ndarray
    downstream_ix: np.ndarray
    upstream_ix: np.ndarray
    flow_length: np.ndarray

    def __len__(self):
        return self.downstream.size

    @classmethod
    def empty(cls):
        none = np.zeros(0, dtype=np.int64)
        return cls(none, none, none, none, np.zeros(0))

    def nodes(self, network, i):
        """Node positions of segment i, upstream to downstream."""
        node = self.upstream[i]
        nodes = [node]
        while node != self.downstream[i]:
            node = network.receiver[node]
            nodes.append(node)
        return np.asarray(nodes, dtype=np.int64)


def segment_network(dem, graph, network):
    """
    Split a stream network into segments between topological landmarks.

    Every node is labelled with the drainage basin of the nearest downstream
    b-confluence or outlet; a head or confluence and a b-confluence or outlet
    sharing a label bound one segment. Segments shorter than two cell widths
    are discarded.

    Parameters
    ----------
    dem : xarray.DataArray
        elevation grid the network lives on, provides the cell size
    graph : FlowGraph
        flow graph the network was extracted from
    network : StreamNetwork

    Returns
    -------
    Segments
    """
    heads = network.channel_heads()
    confluences = network.confluences()
    b_confluences = network.b_confluences()
    outlets = network.outlets()

    n_landmarks = np.unique(
        np.concatenate([heads, confluences, b_confluences, outlets])
    ).size
    if n_landmarks < 2:
        logger.debug(f"network has {n_landmarks} landmark(s), no segments")
        return Segments.empty()

    seeds = np.concatenate([b_confluences, outlets])
    basins = graph.drainage_basins(network.ixgrid[seeds])[network.ixgrid]

    pairs = [
        _link(b_confluences, heads, basins),
        _link(b_confluences, confluences, basins),
        _link(outlets, heads, basins),
        _link(outlets, confluences, basins),
    ]
    downstream = np.concatenate([p[0] for p in pairs])
    upstream = np.concatenate([p[1] for p in pairs])

    distance = graph.flow_distance()
    downstream_ix = network.ixgrid[downstream]
    upstream_ix = network.ixgrid[upstream]
    flow_length = np.abs(distance[downstream_ix] - distance[upstream_ix])

    keep = flow_length >= 2 * cellsize(dem)
    logger.debug(
        f"{keep.sum()} segments kept, {(~keep).sum()} shorter than two cells dropped"
    )
    return Segments(
        downstream=downstream[keep],
        upstream=upstream[keep],
        downstream_ix=downstream_ix[keep],
        upstream_ix=upstream_ix[keep],
        flow_length=flow_length[keep],
    )


def _link(lower, upper, basins):
    # landmarks sharing a basin label are the two ends of one segment
    _, lower_i, upper_i = np.intersect1d(
        basins[lower], basins[upper], assume_unique=False, return_indices=True
    )
    return lower[lower_i].astype(np.int64), upper[upper_i].astype(np.int64)
