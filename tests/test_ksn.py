import numpy as np
import pytest
from shapely.geometry import LineString

from ksn_basins.flow import FlowGraph
from ksn_basins.grid import nodes_to_grid
from ksn_basins.ksn import KSN_COLUMNS
from ksn_basins.ksn import chi_z_spline
from ksn_basins.ksn import ksn_quick
from ksn_basins.ksn import ksn_trib
from ksn_basins.ksn import records_to_frame
from ksn_basins.segments import segment_network
from ksn_basins.stream import StreamNetwork

from conftest import CELL
from conftest import make_grid
from conftest import pointer_from_paths


class TestChiZSpline:
    def test_linear_relation(self):
        chi = np.array([0.0, 1.0, 2.0, 3.0, 4.0])
        assert chi_z_spline(chi, 2.5 * chi) == pytest.approx(2.5)

    def test_invariant_to_offsets(self):
        chi = np.array([0.3, 0.9, 1.4, 2.2, 3.1])
        z = np.array([10.0, 11.2, 12.1, 14.0, 15.5])
        ksn = chi_z_spline(chi, z)
        assert chi_z_spline(chi + 7.0, z) == pytest.approx(ksn)
        assert chi_z_spline(chi, z + 250.0) == pytest.approx(ksn)

    def test_order_and_duplicates_do_not_matter(self):
        chi = np.array([2.0, 0.0, 1.0, 1.0, 3.0])
        z = 4.0 * chi
        assert chi_z_spline(chi, z) == pytest.approx(4.0)

    def test_degenerate_bins(self):
        assert np.isnan(chi_z_spline([1.0], [2.0]))
        assert np.isnan(chi_z_spline([1.0, 1.0, 1.0], [2.0, 3.0, 4.0]))
        assert np.isnan(chi_z_spline([np.nan, 1.0], [2.0, np.nan]))


class TestRecordsToFrame:
    def test_empty_frame_has_columns(self):
        frame = records_to_frame([])
        assert len(frame) == 0
        for column in KSN_COLUMNS:
            assert column in frame.columns


class TestKsnQuick:
    def test_constant_ksn_for_power_law_profile(self, chain_factory):
        # gradient proportional to area ** -0.5 with area doubling downstream
        n = 4
        area_along = 100.0 * 2.0 ** np.arange(n)
        gradient_along = 0.01 * (area_along / area_along[0]) ** -0.5
        z_along = np.zeros(n)
        for c in range(n - 2, -1, -1):
            z_along[c] = z_along[c + 1] + gradient_along[c] * CELL
        dem, graph, network = chain_factory(n, elevations=z_along)
        area = np.full((3, n), np.nan)
        area[1] = area_along

        frame, node_ksn = ksn_quick(dem, dem, area, network, 0.5, 1000)
        upstream_of_outlet = network.receiver >= 0
        assert node_ksn[upstream_of_outlet] == pytest.approx(0.01 * 10.0)
        assert len(frame) == 1

    def test_uniform_gradient_and_area(self, chain_factory):
        dem, graph, network = chain_factory(5, elevations=[0.4, 0.3, 0.2, 0.1, 0.0])
        area = np.full((3, 5), 400.0)
        frame, node_ksn = ksn_quick(dem, dem, area, network, 0.5, 1000)
        upstream_of_outlet = network.receiver >= 0
        assert node_ksn[upstream_of_outlet] == pytest.approx(0.01 * 20.0)

    def test_windows_follow_segment_length(self, y_dem, y_graph, y_network):
        area = y_graph.drainage_area()
        frame, node_ksn = ksn_quick(y_dem, y_dem, area, y_network, 0.5, 30)
        assert node_ksn.shape == (len(y_network),)
        # 9 node main chain spans 88 m (3 windows), tributary chain 40 m (2)
        assert len(frame) == 5
        assert set(KSN_COLUMNS) <= set(frame.columns)
        assert all(isinstance(g, LineString) for g in frame.geometry)
        assert np.all(frame["cut_fill"] == 0)


class TestKsnTrib:
    def test_one_record_per_segment_with_long_bins(self, y_dem, y_graph, y_network):
        segments = segment_network(y_dem, y_graph, y_network)
        area = y_graph.drainage_area()
        frame, node_ksn = ksn_trib(
            y_dem, y_dem, area, y_network, segments, 0.5, 1000
        )
        assert len(frame) == 3
        assert np.all(frame["ksn"] > 0)
        assert np.all(node_ksn > 0)

    def test_bins_with_two_points_are_skipped(self, y_dem, y_graph, y_network):
        segments = segment_network(y_dem, y_graph, y_network)
        area = y_graph.drainage_area()
        frame, node_ksn = ksn_trib(
            y_dem, y_dem, area, y_network, segments, 0.5, CELL
        )
        assert len(frame) == 0
        assert np.all(node_ksn == 0)

    def test_cut_fill_from_conditioned_grid(self, y_dem, y_graph, y_network):
        segments = segment_network(y_dem, y_graph, y_network)
        z = y_network.get_node_values(y_dem) + 2.0
        conditioned = nodes_to_grid(y_dem, y_network.ixgrid, z)
        frame, _ = ksn_trib(
            y_dem, conditioned, y_graph.drainage_area(), y_network, segments, 0.5, 1000
        )
        assert frame["cut_fill"].to_numpy() == pytest.approx(2.0)

    def test_downstream_landmark_opens_first_bin(self, chain_factory):
        dem, graph, network = chain_factory(6)
        segments = segment_network(dem, graph, network)
        assert len(segments) == 1
        frame, node_ksn = ksn_trib(
            dem, dem, graph.drainage_area(), network, segments, 0.5, 3 * CELL
        )
        # [0, 30] holds the outlet and the next three nodes, (30, 50] only two
        (chain,) = network.ordered_chains()
        assert len(frame) == 1
        assert len(frame.geometry.iloc[0].coords) == 4
        assert np.all(node_ksn[chain[2:]] == frame["ksn"].iloc[0])
        assert np.all(node_ksn[chain[:2]] == 0)

    def test_every_segment_of_a_comb_is_fitted(self):
        # main stem along the bottom row with a three cell tooth joining
        # every third column
        n_teeth = 20
        width = 3 * n_teeth + 3
        main = [(3, c) for c in range(width)]
        teeth = [[(r, c) for r in range(4)] for c in range(3, 3 * n_teeth + 1, 3)]
        pointer = pointer_from_paths((4, width), [main, *teeth])
        z = np.full((4, width), np.nan)
        z[3] = width - np.arange(width)
        for tooth in teeth:
            for r, c in tooth[:-1]:
                z[r, c] = width - c + 3 - r
        dem = make_grid(z)
        graph = FlowGraph.from_pointer(pointer)
        network = StreamNetwork.from_flow_graph(graph, CELL * CELL)
        segments = segment_network(dem, graph, network)
        assert len(segments) == 2 * n_teeth + 1

        frame, node_ksn = ksn_trib(
            dem, dem, graph.drainage_area(), network, segments, 0.5, 1000
        )
        assert len(frame) == len(segments)
        assert np.all(node_ksn > 0)
