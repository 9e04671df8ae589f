import numpy as np
import pytest

from ksn_basins.segments import Segments
from ksn_basins.segments import segment_network

from conftest import CELL


def ix(row, col, ncols=5):
    return row * ncols + col


class TestSegmentNetwork:
    @pytest.fixture
    def segments(self, y_dem, y_graph, y_network):
        return segment_network(y_dem, y_graph, y_network)

    def test_segment_landmarks(self, segments):
        pairs = sorted(zip(segments.upstream_ix.tolist(), segments.downstream_ix.tolist()))
        assert pairs == [
            (ix(0, 0), ix(3, 1)),
            (ix(0, 2), ix(3, 2)),
            (ix(4, 2), ix(8, 2)),
        ]

    def test_flow_lengths(self, segments):
        lengths = dict(zip(segments.upstream_ix.tolist(), segments.flow_length))
        assert lengths[ix(0, 2)] == pytest.approx(30)
        assert lengths[ix(4, 2)] == pytest.approx(40)
        assert lengths[ix(0, 0)] == pytest.approx(20 + np.sqrt(2) * CELL)

    def test_segments_cover_every_node_once(self, segments, y_network):
        covered = np.concatenate(
            [segments.nodes(y_network, i) for i in range(len(segments))]
        )
        assert covered.size == len(y_network)
        assert np.unique(covered).size == len(y_network)

    def test_segments_are_at_least_two_cells_long(self, segments):
        assert np.all(segments.flow_length >= 2 * CELL)

    def test_short_segments_are_dropped(self, y_dem, y_graph, y_network):
        # cutting the tributary below (1, 0) leaves a one step reach above (3, 1)
        keep = ~np.isin(y_network.ixgrid, [ix(0, 0), ix(1, 0)])
        network = y_network.subset(keep)
        segments = segment_network(y_dem, y_graph, network)
        assert len(segments) == 2
        assert ix(2, 0) not in segments.upstream_ix
        covered = np.concatenate(
            [segments.nodes(network, i) for i in range(len(segments))]
        )
        assert covered.size == len(network) - 2

    def test_two_node_network_has_no_segments(self, chain_factory):
        dem, graph, network = chain_factory(2)
        assert len(network) == 2
        segments = segment_network(dem, graph, network)
        assert len(segments) == 0

    def test_empty(self):
        assert len(Segments.empty()) == 0
